"""Environment projector.

Narrows a solve group's superset solution down to the packages one
environment actually needs: the transitive closure of its own direct
requirements over the solution's dependency edges.  Versions are never
re-chosen, only filtered, so packages shared between group members stay
identical while packages only some members need stay out of the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from packaging.specifiers import SpecifierSet
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion

from .exceptions import InconsistentSolutionError
from .mapping import pypi_names
from .records import PypiLockedPackage, SolvedRecord

if TYPE_CHECKING:
    from packaging.markers import Marker

    from .resolver import ResolvedEnvironment
    from .unifier import GroupSolution

log = logging.getLogger(__name__)

#: PEP 508 marker values of each conda platform family.
_PLATFORM_MARKERS = {
    "linux": {"os_name": "posix", "sys_platform": "linux", "platform_system": "Linux"},
    "osx": {"os_name": "posix", "sys_platform": "darwin", "platform_system": "Darwin"},
    "win": {"os_name": "nt", "sys_platform": "win32", "platform_system": "Windows"},
}

#: ``platform_machine`` for the architecture part of a conda subdir.
_MACHINES = {
    "32": "i686",
    "64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "arm64",
    "armv6l": "armv6l",
    "armv7l": "armv7l",
    "ppc64": "ppc64",
    "ppc64le": "ppc64le",
    "riscv64": "riscv64",
    "s390x": "s390x",
}
_WINDOWS_MACHINES = {"32": "x86", "64": "AMD64", "arm64": "ARM64"}


def marker_environment(
    platform: str, python_version: str | None = None
) -> dict[str, str]:
    """Return the PEP 508 marker values describing *platform*.

    Values that a conda subdir does not determine are left out, so
    marker evaluation falls back to the running interpreter for them.
    """
    family, _, arch = platform.partition("-")
    env = dict(_PLATFORM_MARKERS.get(family, {}))
    machine = (_WINDOWS_MACHINES if family == "win" else _MACHINES).get(arch)
    if machine:
        env["platform_machine"] = machine
    if python_version:
        env["python_version"] = ".".join(python_version.split(".")[:2])
        env["python_full_version"] = python_version
    return env


@dataclass(frozen=True)
class ProjectedEnvironment:
    """The locked packages of one environment on one platform."""

    environment: str
    platform: str
    conda: tuple[SolvedRecord, ...]
    pypi: tuple[PypiLockedPackage, ...]


class _SolutionGraph:
    """Index-based adjacency over the packages of a group solution.

    Nodes ``0..len(conda)-1`` are conda records, the rest PyPI packages.
    PyPI names that a conda record provides (through its package-url)
    point at the conda node.  Each edge carries the marker of the PyPI
    requirement it comes from and the extras that requirement asks for.
    """

    def __init__(self, solution: GroupSolution) -> None:
        self.nodes: list[SolvedRecord | PypiLockedPackage] = [
            *solution.conda,
            *solution.pypi,
        ]
        self.conda_index = {record.name: i for i, record in enumerate(solution.conda)}
        offset = len(solution.conda)
        self.pypi_index = {pkg.name: offset + i for i, pkg in enumerate(solution.pypi)}
        for i, record in enumerate(solution.conda):
            for name in pypi_names(record):
                self.pypi_index.setdefault(name, i)

        self.edges: list[list[tuple[int, Marker | None, frozenset[str]]]] = []
        for record in solution.conda:
            self.edges.append(
                [
                    (self.conda_index[name], None, frozenset())
                    for name in record.dependency_names
                    if name in self.conda_index
                ]
            )
        for pkg in solution.pypi:
            edges = []
            for req in pkg.requirements:
                name = canonicalize_name(req.name)
                if name in self.pypi_index:
                    extras = frozenset(canonicalize_name(e) for e in req.extras)
                    edges.append((self.pypi_index[name], req.marker, extras))
            self.edges.append(edges)

    def reachable(
        self,
        roots: list[tuple[int, frozenset[str]]],
        markers: dict[str, str],
    ) -> list[bool]:
        """Mark the nodes reachable from *roots* on the marker environment.

        A node is visited once per extra it is requested with, since a
        requirement guarded by ``extra == "..."`` only applies then.
        """
        visited = [False] * len(self.nodes)
        seen: set[tuple[int, str]] = set()
        stack: list[tuple[int, str]] = []
        for index, extras in roots:
            stack.append((index, ""))
            stack.extend((index, extra) for extra in extras)
        while stack:
            state = stack.pop()
            if state in seen:
                continue
            seen.add(state)
            index, extra = state
            visited[index] = True
            for dep, marker, extras in self.edges[index]:
                if marker is not None and not marker.evaluate(
                    {**markers, "extra": extra}
                ):
                    continue
                stack.append((dep, ""))
                stack.extend((dep, e) for e in extras)
        return visited


def _pypi_version_matches(pkg: PypiLockedPackage, spec: str) -> bool:
    try:
        return SpecifierSet(spec).contains(pkg.version, prereleases=True)
    except InvalidVersion:
        return False


def project_environment(
    environment: ResolvedEnvironment,
    solution: GroupSolution,
) -> ProjectedEnvironment:
    """Return the part of *solution* that *environment* depends on.

    *environment* must be resolved for the solution's platform.  A
    direct requirement that the solution does not satisfy means the
    unifier and projector disagree and raises
    ``InconsistentSolutionError``.
    """
    graph = _SolutionGraph(solution)
    roots: list[tuple[int, frozenset[str]]] = []

    for name, spec in environment.conda_dependencies.items():
        index = graph.conda_index.get(name)
        if index is None or not solution.conda[index].matches(spec):
            raise InconsistentSolutionError(
                environment.name, solution.platform, str(spec)
            )
        roots.append((index, frozenset()))

    for name, dep in environment.pypi_dependencies.items():
        index = graph.pypi_index.get(name)
        if index is None:
            raise InconsistentSolutionError(
                environment.name, solution.platform, str(dep)
            )
        node = graph.nodes[index]
        if (
            isinstance(node, PypiLockedPackage)
            and dep.spec
            and not _pypi_version_matches(node, dep.spec)
        ):
            raise InconsistentSolutionError(
                environment.name, solution.platform, str(dep)
            )
        roots.append((index, frozenset(canonicalize_name(e) for e in dep.extras)))

    python = graph.conda_index.get("python")
    markers = marker_environment(
        solution.platform,
        solution.conda[python].version if python is not None else None,
    )
    visited = graph.reachable(roots, markers)
    offset = len(solution.conda)
    conda = tuple(r for i, r in enumerate(solution.conda) if visited[i])
    pypi = tuple(p for i, p in enumerate(solution.pypi) if visited[offset + i])

    log.debug(
        "Projected '%s' on %s: %d of %d conda, %d of %d PyPI package(s)",
        environment.name,
        solution.platform,
        len(conda),
        len(solution.conda),
        len(pypi),
        len(solution.pypi),
    )
    return ProjectedEnvironment(
        environment=environment.name,
        platform=solution.platform,
        conda=conda,
        pypi=pypi,
    )
