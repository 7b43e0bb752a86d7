"""Lockfile model, persistence and queries.

Produces a single ``conda.lock`` at the project root.  The file
captures all environments and platforms so that installations can be
reproduced exactly, and records the fingerprint of the requirements each
entry was produced from so later runs can tell whether it is still
up to date.

The format is a YAML document with three top-level keys::

    version: 1
    environments:
      <name>:
        channels: [{url: ...}, ...]
        solve-group: <group>          # declared groups only
        fingerprints:
          <platform>: <sha256>
        packages:
          <platform>:
          - conda: <url>
            purls: [...]              # when the record has any
          - pypi: <name>
            version: <version>
            source: <url>
    packages:
      - conda: <url>
        name: ...
        purls: [...]
      - pypi: <name>
        version: ...
        source: ...

Package details are stored once in the top-level ``packages`` list and
referenced from each environment/platform by URL and purls.  The in-memory
:class:`LockFile` is immutable; a resolution pass builds a new one and
``write_lockfile`` replaces the file atomically.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING

from conda.common.serialize import yaml_safe_dump, yaml_safe_load
from conda.models.match_spec import MatchSpec
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion

from .exceptions import LockfileFormatError, LockfileNotFoundError
from .models import Ecosystem
from .records import PypiLockedPackage, SolvedRecord

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from .context import LockContext

#: Lockfile format version.
LOCKFILE_VERSION = 1

#: The canonical lockfile filename.
LOCKFILE_NAME = "conda.lock"


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LockedPlatform:
    """Packages locked for one environment on one platform."""

    fingerprint: str
    conda: tuple[SolvedRecord, ...] = ()
    pypi: tuple[PypiLockedPackage, ...] = ()


@dataclass(frozen=True)
class LockedEnvironment:
    """All locked platforms of one environment."""

    name: str
    channels: tuple[str, ...] = ()
    solve_group: str | None = None
    platforms: dict[str, LockedPlatform] = field(default_factory=dict)


@dataclass(frozen=True)
class LockFile:
    """The complete lock of a project."""

    environments: dict[str, LockedEnvironment] = field(default_factory=dict)
    version: int = LOCKFILE_VERSION

    def get_platform(self, env_name: str, platform: str) -> LockedPlatform | None:
        """Return the entry for *env_name* on *platform*, if locked."""
        env = self.environments.get(env_name)
        if env is None:
            return None
        return env.platforms.get(platform)

    def get_packages(
        self, env_name: str, platform: str
    ) -> tuple[tuple[SolvedRecord, ...], tuple[PypiLockedPackage, ...]]:
        """Return ``(conda, pypi)`` entries for *env_name* on *platform*.

        Raises ``LockfileNotFoundError`` if the pair is not locked.
        """
        entry = self.get_platform(env_name, platform)
        if entry is None:
            raise LockfileNotFoundError(env_name, LOCKFILE_NAME)
        return entry.conda, entry.pypi

    def with_platform(
        self,
        env_name: str,
        platform: str,
        entry: LockedPlatform,
        channels: Iterable[str],
        solve_group: str | None,
    ) -> LockFile:
        """Return a copy with *entry* stored for *env_name* on *platform*."""
        environments = dict(self.environments)
        current = environments.get(env_name) or LockedEnvironment(name=env_name)
        environments[env_name] = replace(
            current,
            channels=tuple(channels),
            solve_group=solve_group,
            platforms={**current.platforms, platform: entry},
        )
        return replace(self, environments=environments)

    def restricted_to(self, env_names: Iterable[str]) -> LockFile:
        """Return a copy without environments not listed in *env_names*."""
        keep = set(env_names)
        return replace(
            self,
            environments={
                name: env for name, env in self.environments.items() if name in keep
            },
        )

    # -- queries ------------------------------------------------------------

    def contains_match_spec(
        self, env_name: str, platform: str, spec: str | MatchSpec
    ) -> bool:
        """Whether a conda entry of *env_name* on *platform* matches *spec*."""
        entry = self.get_platform(env_name, platform)
        if entry is None:
            return False
        match_spec = MatchSpec(spec)
        return any(record.matches(match_spec) for record in entry.conda)

    def contains_pypi_package(
        self, env_name: str, platform: str, name: str, spec: str = ""
    ) -> bool:
        """Whether a PyPI entry of *env_name* on *platform* is *name* within *spec*."""
        entry = self.get_platform(env_name, platform)
        if entry is None:
            return False
        name = canonicalize_name(name)
        try:
            specifier = SpecifierSet(spec)
        except InvalidSpecifier:
            return False
        for pkg in entry.pypi:
            if pkg.name != name:
                continue
            try:
                if specifier.contains(pkg.version, prereleases=True):
                    return True
            except InvalidVersion:
                continue
        return False

    def contains_package(
        self,
        env_name: str,
        platform: str,
        ecosystem: Ecosystem | str,
        name: str,
        constraint: str = "",
    ) -> bool:
        """Whether *env_name* on *platform* holds *name* in *ecosystem*.

        *constraint* is a conda version/build expression for conda
        entries and a PEP 440 specifier for PyPI entries.
        """
        ecosystem = Ecosystem(ecosystem)
        if ecosystem is Ecosystem.CONDA:
            spec = f"{name} {constraint}".strip()
            return self.contains_match_spec(env_name, platform, spec)
        return self.contains_pypi_package(env_name, platform, name, constraint)


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def _record_to_dict(record: SolvedRecord) -> dict[str, Any]:
    data: dict[str, Any] = {
        "conda": record.url,
        "name": record.name,
        "version": record.version,
        "build": record.build,
        "build_number": record.build_number,
        "channel": record.channel,
        "subdir": record.subdir,
        "fn": record.file_name,
    }
    if record.depends:
        data["depends"] = list(record.depends)
    if record.constrains:
        data["constrains"] = list(record.constrains)
    if record.md5:
        data["md5"] = record.md5
    if record.sha256:
        data["sha256"] = record.sha256
    if record.purls:
        data["purls"] = sorted(record.purls)
    return data


def _record_from_dict(data: dict[str, Any]) -> SolvedRecord:
    return SolvedRecord(
        name=data["name"],
        version=str(data["version"]),
        build=str(data["build"]),
        build_number=int(data.get("build_number", 0)),
        channel=data.get("channel", ""),
        subdir=data["subdir"],
        url=data["conda"],
        file_name=data["fn"],
        depends=tuple(data.get("depends", ())),
        constrains=tuple(data.get("constrains", ())),
        md5=data.get("md5"),
        sha256=data.get("sha256"),
        purls=set(data.get("purls", ())),
    )


def _conda_ref(record: SolvedRecord) -> dict[str, Any]:
    # One file can carry different purls in different groups.
    ref: dict[str, Any] = {"conda": record.url}
    if record.purls:
        ref["purls"] = sorted(record.purls)
    return ref


def _conda_key(data: dict[str, Any]) -> tuple[str, ...]:
    return (data["conda"], *sorted(data.get("purls") or ()))


def _pypi_ref(pkg: PypiLockedPackage) -> dict[str, str]:
    return {"pypi": pkg.name, "version": pkg.version, "source": pkg.source}


def _pypi_to_dict(pkg: PypiLockedPackage) -> dict[str, Any]:
    data: dict[str, Any] = _pypi_ref(pkg)
    if pkg.editable:
        data["editable"] = True
    if pkg.extras:
        data["extras"] = list(pkg.extras)
    if pkg.requires_dist:
        data["requires_dist"] = list(pkg.requires_dist)
    return data


def _pypi_from_dict(data: dict[str, Any]) -> PypiLockedPackage:
    return PypiLockedPackage(
        name=data["pypi"],
        version=str(data["version"]),
        source=data["source"],
        editable=bool(data.get("editable", False)),
        extras=tuple(data.get("extras", ())),
        requires_dist=tuple(data.get("requires_dist", ())),
    )


def lockfile_to_dict(lock: LockFile) -> dict[str, Any]:
    """Build the serialisable lockfile dict from *lock*."""
    seen: set[tuple[str, ...]] = set()
    packages: list[dict[str, Any]] = []
    envs_dict: dict[str, dict[str, Any]] = {}

    for env_name, env in sorted(lock.environments.items()):
        env_dict: dict[str, Any] = {"channels": [{"url": ch} for ch in env.channels]}
        if env.solve_group is not None:
            env_dict["solve-group"] = env.solve_group
        env_dict["fingerprints"] = {}
        env_dict["packages"] = {}

        for platform, entry in sorted(env.platforms.items()):
            env_dict["fingerprints"][platform] = entry.fingerprint
            platform_refs: list[dict[str, Any]] = []
            for record in entry.conda:
                platform_refs.append(_conda_ref(record))
                key = ("conda", record.url, *sorted(record.purls))
                if key not in seen:
                    packages.append(_record_to_dict(record))
                    seen.add(key)
            for pkg in entry.pypi:
                platform_refs.append(_pypi_ref(pkg))
                key = ("pypi", *pkg.key)
                if key not in seen:
                    packages.append(_pypi_to_dict(pkg))
                    seen.add(key)
            env_dict["packages"][platform] = platform_refs

        envs_dict[env_name] = env_dict

    return {
        "version": lock.version,
        "environments": envs_dict,
        "packages": packages,
    }


def lockfile_from_dict(data: dict[str, Any], path: str | Path = LOCKFILE_NAME) -> LockFile:
    """Build a :class:`LockFile` from parsed lockfile *data*."""
    if not isinstance(data, dict):
        raise LockfileFormatError(path, "expected a mapping at the top level")
    version = data.get("version")
    if version != LOCKFILE_VERSION:
        raise LockfileFormatError(path, f"unsupported lockfile version {version!r}")

    conda_lookup: dict[tuple[str, ...], SolvedRecord] = {}
    pypi_lookup: dict[tuple[str, str, str], PypiLockedPackage] = {}
    try:
        for pkg in data.get("packages") or []:
            if "conda" in pkg:
                record = _record_from_dict(pkg)
                conda_lookup[_conda_key(pkg)] = record
            elif "pypi" in pkg:
                locked = _pypi_from_dict(pkg)
                pypi_lookup[locked.key] = locked

        environments: dict[str, LockedEnvironment] = {}
        for env_name, env_data in (data.get("environments") or {}).items():
            fingerprints = env_data.get("fingerprints") or {}
            platforms: dict[str, LockedPlatform] = {}
            for platform, refs in (env_data.get("packages") or {}).items():
                conda: list[SolvedRecord] = []
                pypi: list[PypiLockedPackage] = []
                for ref in refs or []:
                    if "conda" in ref:
                        conda.append(conda_lookup[_conda_key(ref)])
                    elif "pypi" in ref:
                        key = (
                            canonicalize_name(ref["pypi"]),
                            str(ref["version"]),
                            ref["source"],
                        )
                        pypi.append(pypi_lookup[key])
                platforms[platform] = LockedPlatform(
                    fingerprint=fingerprints.get(platform, ""),
                    conda=tuple(conda),
                    pypi=tuple(pypi),
                )
            environments[env_name] = LockedEnvironment(
                name=env_name,
                channels=tuple(ch["url"] for ch in env_data.get("channels") or []),
                solve_group=env_data.get("solve-group"),
                platforms=platforms,
            )
    except (KeyError, TypeError, ValueError) as exc:
        raise LockfileFormatError(path, f"malformed entry: {exc}") from exc

    return LockFile(environments=environments, version=version)


# ---------------------------------------------------------------------------
# Reading and writing
# ---------------------------------------------------------------------------


def lockfile_path(ctx: LockContext) -> Path:
    """Return the path to the project lockfile (``<root>/conda.lock``)."""
    return ctx.lockfile_path


def lockfile_exists(ctx: LockContext) -> bool:
    """Check whether a lockfile exists for the project."""
    return lockfile_path(ctx).is_file()


def read_lockfile(path: str | Path) -> LockFile:
    """Parse the lockfile at *path*.

    Raises ``LockfileNotFoundError`` if there is none and
    ``LockfileFormatError`` if it cannot be understood.
    """
    path = Path(path)
    if not path.is_file():
        raise LockfileNotFoundError("(all)", path)
    with path.open(encoding="utf-8") as fh:
        try:
            data = yaml_safe_load(fh)
        except Exception as exc:
            raise LockfileFormatError(path, str(exc)) from exc
    return lockfile_from_dict(data, path)


def write_lockfile(lock: LockFile, path: str | Path) -> Path:
    """Write *lock* to *path*, replacing any previous file atomically.

    The document is written to a temporary file next to *path* and then
    renamed over it, so readers see either the old or the new lockfile.
    """
    path = Path(path)
    data = lockfile_to_dict(lock)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            yaml_safe_dump(data, fh)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path
