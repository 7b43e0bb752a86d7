"""Solved package records and the package database they come from.

:class:`SolvedRecord` is the conda-side lock entry, :class:`PypiLockedPackage`
the PyPI-side one.  :class:`PackageDatabase` is a read-only view of
channel contents (conda ``PackageRecord`` objects) that solvers consume.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from conda.common.serialize.json import loads as json_loads
from conda.common.url import join_url
from conda.models.channel import Channel
from conda.models.match_spec import MatchSpec
from conda.models.records import PackageRecord
from packaging.requirements import Requirement
from packaging.utils import canonicalize_name

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from typing import Any


@dataclass
class SolvedRecord:
    """A conda package chosen by the solver.

    *purls* starts out empty and is filled by the name reconciler with
    package-url strings (``pkg:pypi/<name>@<version>``) when the package
    is known under a PyPI name as well.
    """

    name: str
    version: str
    build: str
    build_number: int
    channel: str
    subdir: str
    url: str
    file_name: str
    depends: tuple[str, ...] = ()
    constrains: tuple[str, ...] = ()
    md5: str | None = None
    sha256: str | None = None
    purls: set[str] = field(default_factory=set)

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.name, self.version, self.build, self.channel)

    @property
    def dependency_names(self) -> list[str]:
        return [MatchSpec(dep).name for dep in self.depends]

    @classmethod
    def from_package_record(cls, prec: PackageRecord) -> SolvedRecord:
        channel = prec.channel.canonical_name if prec.channel else ""
        url = prec.url or join_url(channel, prec.subdir, prec.fn)
        return cls(
            name=prec.name,
            version=prec.version,
            build=prec.build,
            build_number=prec.build_number,
            channel=channel,
            subdir=prec.subdir,
            url=url,
            file_name=prec.fn,
            depends=tuple(prec.depends),
            constrains=tuple(prec.constrains),
            md5=prec.md5,
            sha256=prec.sha256,
        )

    def to_package_record(self) -> PackageRecord:
        return PackageRecord(
            name=self.name,
            version=self.version,
            build=self.build,
            build_number=self.build_number,
            channel=Channel(self.channel),
            subdir=self.subdir,
            fn=self.file_name,
            url=self.url,
            depends=list(self.depends),
            constrains=list(self.constrains),
            md5=self.md5,
            sha256=self.sha256,
        )

    def matches(self, spec: str | MatchSpec) -> bool:
        """Return True if this record satisfies the conda *spec*."""
        return MatchSpec(spec).match(self.to_package_record())


@dataclass(frozen=True)
class PypiLockedPackage:
    """A PyPI package chosen by the PyPI solver.

    *source* is the registry file URL or the direct URL the package is
    installed from.  *name* is normalised to its canonical PyPI form.
    """

    name: str
    version: str
    source: str
    editable: bool = False
    extras: tuple[str, ...] = ()
    requires_dist: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", canonicalize_name(self.name))

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.name, self.version, self.source)

    @property
    def requirements(self) -> list[Requirement]:
        return [Requirement(req) for req in self.requires_dist]

    @property
    def dependency_names(self) -> list[str]:
        return [canonicalize_name(req.name) for req in self.requirements]


class PackageDatabase:
    """Immutable collection of conda package records across channels."""

    def __init__(self, records: Iterable[PackageRecord] = ()) -> None:
        self._records: tuple[PackageRecord, ...] = tuple(records)

    def __iter__(self) -> Iterator[PackageRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __add__(self, other: PackageDatabase) -> PackageDatabase:
        return PackageDatabase((*self._records, *other._records))

    @property
    def channels(self) -> list[str]:
        """Canonical names of all channels with records, in first-seen order."""
        seen: dict[str, None] = {}
        for prec in self._records:
            seen.setdefault(prec.channel.canonical_name, None)
        return list(seen)

    def for_platform(
        self,
        platform: str,
        channels: Iterable[str] | None = None,
    ) -> tuple[PackageRecord, ...]:
        """Return records usable on *platform* (its subdir plus ``noarch``).

        When *channels* is given, only records from those channels (by
        canonical name) are returned.
        """
        allowed = set(channels) if channels is not None else None
        return tuple(
            prec
            for prec in self._records
            if prec.subdir in (platform, "noarch")
            and (allowed is None or prec.channel.canonical_name in allowed)
        )

    @classmethod
    def from_repodata(
        cls,
        channel: str | Channel,
        repodata: dict[str, Any],
    ) -> PackageDatabase:
        """Build a database from one parsed ``repodata.json`` document."""
        if not isinstance(channel, Channel):
            channel = Channel(channel)
        default_subdir = repodata.get("info", {}).get("subdir")
        records: list[PackageRecord] = []
        for key in ("packages", "packages.conda"):
            for fn, info in repodata.get(key, {}).items():
                info = dict(info)
                subdir = info.pop("subdir", None) or default_subdir
                info.update(
                    fn=fn,
                    subdir=subdir,
                    channel=channel,
                    url=join_url(channel.base_url, subdir, fn),
                )
                records.append(PackageRecord(**info))
        return cls(records)

    @classmethod
    def from_channel_dir(cls, path: str | Path) -> PackageDatabase:
        """Load every ``<subdir>/repodata.json`` of a local channel directory."""
        path = Path(path).resolve()
        channel = Channel(path.as_uri())
        database = cls()
        for repodata_path in sorted(path.glob("*/repodata.json")):
            repodata = json_loads(repodata_path.read_text(encoding="utf-8"))
            repodata.setdefault("info", {}).setdefault(
                "subdir", repodata_path.parent.name
            )
            database = database + cls.from_repodata(channel, repodata)
        return database
