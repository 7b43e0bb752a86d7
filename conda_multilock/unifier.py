"""Solve-group unifier.

For one solve group on one platform, merges the requirement specs of
every member environment and runs the solver once.  A package requested
by several members is solved a single time under the combination of
all their constraints, so every member ends up with the same version.
The result is a superset solution that the projector later narrows down
to what each member actually needs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from packaging.version import InvalidVersion

from .exceptions import IncompatibleSpecsError, SolveError, UnsatisfiableSpecsError
from .mapping import LookupCache, pypi_names, reconcile_records
from .models import merge_match_specs, merge_pypi_dependencies
from .records import SolvedRecord

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .models import MatchSpec, PyPIDependency
    from .records import PackageDatabase, PypiLockedPackage
    from .resolver import ResolvedEnvironment, SolveGroup
    from .solver import PypiSolver, Solver

log = logging.getLogger(__name__)


@dataclass
class UnifiedRequirements:
    """Merged requirements of all members of a solve group."""

    conda: dict[str, MatchSpec] = field(default_factory=dict)
    pypi: dict[str, PyPIDependency] = field(default_factory=dict)
    channels: list[str] = field(default_factory=list)
    # package name -> [(environment, spec string)]
    requested_by: dict[str, list[tuple[str, str]]] = field(default_factory=dict)

    def conflicting_specs(self) -> list[str]:
        """Describe the specs that may conflict, naming who asked for them.

        Packages requested by more than one spec come first; if there
        are none, every requested spec is listed.
        """
        shared = {
            name: requests
            for name, requests in self.requested_by.items()
            if len({spec for _, spec in requests}) > 1
        }
        source = shared or self.requested_by
        return [
            f"{spec} (from {env})"
            for name in sorted(source)
            for env, spec in source[name]
        ]


@dataclass(frozen=True)
class GroupSolution:
    """The superset solution of one solve group on one platform.

    Instances are only created once solving (and package-url amendment)
    has finished, so consumers never see a partial solution.
    """

    group: str
    platform: str
    channels: tuple[str, ...]
    conda: tuple[SolvedRecord, ...]
    pypi: tuple[PypiLockedPackage, ...] = ()


def unify_requirements(members: Sequence[ResolvedEnvironment]) -> UnifiedRequirements:
    """Concatenate and merge the requirement specs of *members*.

    Raises ``IncompatibleSpecsError`` if two specs for the same package
    cannot hold at the same time.
    """
    unified = UnifiedRequirements()
    conda_specs: dict[str, list[MatchSpec]] = {}
    pypi_specs: dict[str, list[PyPIDependency]] = {}

    for env in members:
        for channel in env.channel_urls:
            if channel not in unified.channels:
                unified.channels.append(channel)
        for name, spec in env.conda_dependencies.items():
            conda_specs.setdefault(name, []).append(spec)
            unified.requested_by.setdefault(name, []).append((env.name, str(spec)))
        for name, dep in env.pypi_dependencies.items():
            pypi_specs.setdefault(name, []).append(dep)
            unified.requested_by.setdefault(f"pypi:{name}", []).append(
                (env.name, str(dep))
            )

    unified.conda = {
        name: merge_match_specs(name, specs) for name, specs in conda_specs.items()
    }
    unified.pypi = {
        name: merge_pypi_dependencies(name, deps) for name, deps in pypi_specs.items()
    }
    return unified


def _provided_by_conda(dep: PyPIDependency, conda_provided: Mapping[str, str]) -> bool:
    version = conda_provided.get(dep.canonical_name)
    if version is None:
        return False
    if not dep.spec:
        return True
    try:
        return dep.specifier.contains(version, prereleases=True)
    except InvalidVersion:
        return False


def _solve_pypi(
    group: SolveGroup,
    platform: str,
    unified: UnifiedRequirements,
    conda: Sequence[SolvedRecord],
    pypi_solver: PypiSolver | None,
    lookup_cache: LookupCache,
    compressed_mapping: Mapping[str, str | None] | None,
) -> tuple[PypiLockedPackage, ...]:
    reconcile_records(conda, lookup_cache, compressed_mapping)

    conda_provided: dict[str, str] = {}
    for record in conda:
        for name in pypi_names(record):
            conda_provided[name] = record.version

    remaining: list[PyPIDependency] = []
    for name, dep in sorted(unified.pypi.items()):
        if _provided_by_conda(dep, conda_provided):
            log.debug("PyPI requirement %s is provided by conda", dep)
            continue
        if name in conda_provided:
            raise SolveError(
                group.name,
                platform,
                f"PyPI requirement '{dep}' conflicts with conda package "
                f"'{name}' {conda_provided[name]}",
                [f"{spec} (from {env})" for env, spec in unified.requested_by[f"pypi:{name}"]],
            )
        remaining.append(dep)

    if not remaining:
        return ()
    if pypi_solver is None:
        raise SolveError(
            group.name,
            platform,
            "PyPI requirements need a PyPI solver but none is configured",
            [str(dep) for dep in remaining],
        )

    try:
        packages = pypi_solver.solve(platform, remaining, conda_provided)
    except UnsatisfiableSpecsError as exc:
        raise SolveError(
            group.name, platform, exc.reason, [str(dep) for dep in remaining]
        ) from exc

    return tuple(
        sorted(
            (pkg for pkg in packages if pkg.name not in conda_provided),
            key=lambda pkg: pkg.name,
        )
    )


def solve_group(
    group: SolveGroup,
    platform: str,
    members: Sequence[ResolvedEnvironment],
    database: PackageDatabase,
    solver: Solver,
    *,
    pypi_solver: PypiSolver | None = None,
    lookup_cache: LookupCache | None = None,
    compressed_mapping: Mapping[str, str | None] | None = None,
) -> GroupSolution:
    """Solve *group* on *platform* and return its superset solution.

    *members* are the group's environments resolved for *platform*.
    The conda solver is called exactly once.  When the group has PyPI
    requirements, the conda records are first given their PyPI
    package-urls so that PyPI requirements already met by conda
    packages are not installed a second time from PyPI.

    Raises ``SolveError`` if the merged requirements cannot be solved.
    """
    try:
        unified = unify_requirements(members)
    except IncompatibleSpecsError as exc:
        raise SolveError(group.name, platform, str(exc), exc.specs) from exc

    records = database.for_platform(platform, unified.channels)
    log.debug(
        "Solving group '%s' for %s: %d conda spec(s), %d PyPI spec(s)",
        group.name,
        platform,
        len(unified.conda),
        len(unified.pypi),
    )
    try:
        solution = solver.solve(platform, records, list(unified.conda.values()))
    except UnsatisfiableSpecsError as exc:
        raise SolveError(
            group.name, platform, exc.reason, unified.conflicting_specs()
        ) from exc

    conda = tuple(
        sorted(
            (SolvedRecord.from_package_record(prec) for prec in solution),
            key=lambda record: record.name,
        )
    )

    pypi: tuple[PypiLockedPackage, ...] = ()
    if unified.pypi:
        pypi = _solve_pypi(
            group,
            platform,
            unified,
            conda,
            pypi_solver,
            lookup_cache or LookupCache(None),
            compressed_mapping,
        )

    log.debug(
        "Solved group '%s' for %s: %d conda, %d PyPI package(s)",
        group.name,
        platform,
        len(conda),
        len(pypi),
    )
    return GroupSolution(
        group=group.name,
        platform=platform,
        channels=tuple(unified.channels),
        conda=conda,
        pypi=pypi,
    )
