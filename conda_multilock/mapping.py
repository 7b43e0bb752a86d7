"""Conda-to-PyPI name reconciliation.

A conda package that is also published on PyPI (``boltons``,
``requests``, ...) is recognised as the same thing by attaching a
``pkg:pypi/<name>@<version>`` package-url to its solved record.  The
PyPI name comes from two layers:

1. a best-effort bulk lookup (:class:`NameLookup`) keyed by conda
   package name, memoised per resolution pass by :class:`LookupCache`;
2. a compressed override table ``{conda_name: pypi_name}`` that always
   wins when it has an entry.  A ``None`` value marks a package known to
   have no PyPI counterpart.

Names found in neither layer are left without a package-url.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from pathlib import Path
from typing import TYPE_CHECKING

from conda.common.serialize.json import loads as json_loads
from packageurl import PackageURL
from packaging.utils import canonicalize_name

from .exceptions import NameLookupError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from typing import Any

    from .records import SolvedRecord

log = logging.getLogger(__name__)

#: ``{conda_name: pypi_name}``; ``None`` means "not a PyPI package".
CompressedMapping = dict[str, "str | None"]


class NameLookup(ABC):
    """Bulk conda-name to PyPI-name lookup capability."""

    @abstractmethod
    def lookup(self, names: Sequence[str], auth: Any = None) -> dict[str, str]:
        """Return the PyPI names known for *names*.

        Names without a known PyPI counterpart are simply absent from
        the result.  Transport or authentication problems raise
        ``NameLookupError``.
        """


class StaticLookup(NameLookup):
    """Lookup backed by an in-memory table."""

    def __init__(self, mapping: Mapping[str, str] | None = None) -> None:
        self._mapping = dict(mapping or {})

    def lookup(self, names: Sequence[str], auth: Any = None) -> dict[str, str]:
        return {name: self._mapping[name] for name in names if name in self._mapping}


class RemoteMappingLookup(NameLookup):
    """Lookup backed by a JSON ``{conda_name: pypi_name}`` document.

    The document is fetched once per instance through conda's session,
    which applies the channel authentication configured in conda.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self._document: dict[str, str] | None = None
        self._lock = threading.Lock()

    def _fetch(self, auth: Any) -> dict[str, str]:
        from conda.base.context import context
        from conda.gateways.connection.session import get_session
        from requests.exceptions import RequestException

        log.debug("Fetching conda-pypi name mapping from %s", self.url)
        session = get_session(self.url)
        try:
            response = session.get(
                self.url,
                auth=auth,
                timeout=(
                    context.remote_connect_timeout_secs,
                    context.remote_read_timeout_secs,
                ),
            )
            response.raise_for_status()
            document = response.json()
        except (RequestException, ValueError) as exc:
            raise NameLookupError(f"{self.url}: {exc}") from exc
        if not isinstance(document, dict):
            raise NameLookupError(f"{self.url}: expected a JSON object")
        return {str(k): str(v) for k, v in document.items() if v}

    def lookup(self, names: Sequence[str], auth: Any = None) -> dict[str, str]:
        with self._lock:
            if self._document is None:
                self._document = self._fetch(auth)
            document = self._document
        return {name: document[name] for name in names if name in document}


class LookupCache:
    """Per-pass memo in front of a :class:`NameLookup`.

    Each package name is looked up at most once, even when several
    threads ask for it concurrently: the first caller issues the lookup
    and the others wait on its result.  A failed lookup is remembered
    too, so the failure is reported to every unit that needs the name.
    """

    def __init__(self, lookup: NameLookup | None, auth: Any = None) -> None:
        self._lookup = lookup
        self._auth = auth
        self._lock = threading.Lock()
        self._futures: dict[str, Future[str | None]] = {}
        self.calls = 0

    def resolve(self, names: Iterable[str]) -> dict[str, str]:
        """Return the bulk-layer PyPI names for *names*."""
        owned: list[str] = []
        waiting: dict[str, Future[str | None]] = {}
        with self._lock:
            for name in names:
                future = self._futures.get(name)
                if future is None:
                    future = self._futures[name] = Future()
                    owned.append(name)
                waiting[name] = future

        if owned:
            self._fill(owned, waiting)

        result: dict[str, str] = {}
        for name, future in waiting.items():
            value = future.result()
            if value is not None:
                result[name] = value
        return result

    def _fill(self, owned: list[str], futures: dict[str, Future[str | None]]) -> None:
        if self._lookup is None:
            for name in owned:
                futures[name].set_result(None)
            return

        with self._lock:
            self.calls += 1
        log.debug("Looking up PyPI names for %d package(s)", len(owned))
        try:
            found = self._lookup.lookup(owned, self._auth)
        except Exception as exc:
            for name in owned:
                futures[name].set_exception(exc)
            raise
        for name in owned:
            futures[name].set_result(found.get(name))


def build_purl(pypi_name: str, version: str) -> str:
    """Return the ``pkg:pypi`` package-url string for *pypi_name*."""
    return PackageURL(
        type="pypi", name=canonicalize_name(pypi_name), version=version
    ).to_string()


def pypi_names(record: SolvedRecord) -> list[str]:
    """Return the PyPI names carried by *record*'s package-urls."""
    names = []
    for purl in sorted(record.purls):
        parsed = PackageURL.from_string(purl)
        if parsed.type == "pypi":
            names.append(canonicalize_name(parsed.name))
    return names


def resolve_pypi_name(
    name: str,
    conda_mapping: Mapping[str, str],
    compressed_mapping: Mapping[str, str | None],
) -> str | None:
    """Return the PyPI name for conda package *name*.

    The override table is consulted first; the bulk mapping is only
    used for names the override table does not mention.
    """
    if name in compressed_mapping:
        return compressed_mapping[name]
    return conda_mapping.get(name)


def amend_purls(
    record: SolvedRecord,
    conda_mapping: Mapping[str, str],
    compressed_mapping: Mapping[str, str | None],
) -> bool:
    """Attach the PyPI package-url of *record*, if it has one.

    A record that already carries the matching purl is left alone, so
    amending twice is the same as amending once.  Returns True if
    *record* changed.
    """
    pypi_name = resolve_pypi_name(record.name, conda_mapping, compressed_mapping)
    if pypi_name is None:
        return False

    purl = build_purl(pypi_name, record.version)
    if purl in record.purls:
        return False

    stale = {p for p in record.purls if p.startswith("pkg:pypi/")}
    record.purls.difference_update(stale)
    record.purls.add(purl)
    return True


def reconcile_records(
    records: Iterable[SolvedRecord],
    cache: LookupCache,
    compressed_mapping: Mapping[str, str | None] | None = None,
) -> int:
    """Amend the package-urls of *records* in place.

    Only names missing from the override table reach the bulk lookup.
    Returns the number of records that changed.
    """
    records = list(records)
    compressed_mapping = compressed_mapping or {}
    names = sorted({r.name for r in records if r.name not in compressed_mapping})
    conda_mapping = cache.resolve(names) if names else {}
    amended = sum(
        amend_purls(record, conda_mapping, compressed_mapping) for record in records
    )
    log.debug("Amended package-urls of %d of %d record(s)", amended, len(records))
    return amended


def load_compressed_mapping(path: str | Path) -> CompressedMapping:
    """Read an override table from a JSON file.

    The file holds a single object mapping conda names to PyPI names
    (or ``null`` for packages that have no PyPI counterpart).
    """
    path = Path(path)
    try:
        data = json_loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise NameLookupError(f"cannot read mapping file '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise NameLookupError(f"mapping file '{path}' must contain a JSON object")
    mapping: CompressedMapping = {}
    for conda_name, pypi_name in data.items():
        if pypi_name is not None and not isinstance(pypi_name, str):
            raise NameLookupError(
                f"mapping file '{path}': value for '{conda_name}' must be a "
                "string or null"
            )
        mapping[str(conda_name)] = pypi_name
    return mapping
