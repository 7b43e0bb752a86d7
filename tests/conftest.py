"""Shared test fixtures for conda-multilock."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from conda.models.version import VersionOrder
from packaging.requirements import Requirement
from packaging.specifiers import SpecifierSet
from packaging.utils import canonicalize_name

from conda_multilock.exceptions import NameLookupError, UnsatisfiableSpecsError
from conda_multilock.mapping import NameLookup
from conda_multilock.models import (
    Channel,
    Environment,
    Feature,
    MatchSpec,
    Project,
    PyPIDependency,
)
from conda_multilock.records import PackageDatabase, PypiLockedPackage
from conda_multilock.solver import PypiSolver, Solver

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

CHANNEL = "https://conda.example/test-channel"


def make_record(
    name: str,
    version: str,
    depends: Sequence[str] = (),
    *,
    build: str = "0",
    build_number: int = 0,
    subdir: str = "linux-64",
    channel: str = CHANNEL,
):
    """Build a conda ``PackageRecord`` for *name* and *version*."""
    from conda.models.records import PackageRecord

    fn = f"{name}-{version}-{build}.tar.bz2"
    return PackageRecord(
        name=name,
        version=version,
        build=build,
        build_number=build_number,
        channel=Channel(channel),
        subdir=subdir,
        fn=fn,
        url=f"{channel}/{subdir}/{fn}",
        depends=list(depends),
    )


class BacktrackingSolver(Solver):
    """Small deterministic solver: newest candidates first, backtracking."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []

    def solve(self, platform, records, specs):
        self.calls.append((platform, sorted(str(spec) for spec in specs)))
        candidates: dict[str, list] = {}
        for prec in records:
            candidates.setdefault(prec.name, []).append(prec)
        for precs in candidates.values():
            precs.sort(
                key=lambda p: (VersionOrder(p.version), p.build_number), reverse=True
            )

        chosen = self._search([MatchSpec(spec) for spec in specs], {}, candidates)
        if chosen is None:
            raise UnsatisfiableSpecsError(specs, "no combination of packages works")
        return sorted(chosen.values(), key=lambda prec: prec.name)

    def _search(self, pending, chosen, candidates):
        if not pending:
            return chosen
        spec, *rest = pending
        current = chosen.get(spec.name)
        if current is not None:
            return self._search(rest, chosen, candidates) if spec.match(current) else None
        for prec in candidates.get(spec.name, []):
            if not spec.match(prec):
                continue
            result = self._search(
                [*rest, *(MatchSpec(dep) for dep in prec.depends)],
                {**chosen, spec.name: prec},
                candidates,
            )
            if result is not None:
                return result
        return None


class FakePypiSolver(PypiSolver):
    """PyPI solver over an in-memory ``{name: {version: requires_dist}}`` index."""

    def __init__(self, index: Mapping[str, Mapping[str, Sequence[str]]]) -> None:
        self.index = {canonicalize_name(k): dict(v) for k, v in index.items()}
        self.calls: list[tuple[str, list[str], dict[str, str]]] = []

    def solve(self, platform, requirements, conda_provided):
        self.calls.append(
            (platform, sorted(str(req) for req in requirements), dict(conda_provided))
        )
        pending = [(req.canonical_name, req.specifier) for req in requirements]
        chosen: dict[str, PypiLockedPackage] = {}
        while pending:
            name, specifier = pending.pop(0)
            if name in conda_provided:
                continue
            if name in chosen:
                if not specifier.contains(chosen[name].version, prereleases=True):
                    raise UnsatisfiableSpecsError([name], f"{name} conflicts")
                continue
            versions = sorted(
                (v for v in self.index.get(name, {}) if specifier.contains(v)),
                key=VersionOrder,
                reverse=True,
            )
            if not versions:
                raise UnsatisfiableSpecsError([name], f"no version of {name} matches")
            version = versions[0]
            requires = tuple(self.index[name][version])
            chosen[name] = PypiLockedPackage(
                name=name,
                version=version,
                source=f"https://pypi.example/packages/{name}-{version}.tar.gz",
                requires_dist=requires,
            )
            for req in requires:
                parsed = Requirement(req)
                pending.append(
                    (canonicalize_name(parsed.name), SpecifierSet(str(parsed.specifier)))
                )
        return list(chosen.values())


class CountingLookup(NameLookup):
    """Bulk lookup that records every batch of names it is asked for."""

    def __init__(self, mapping: Mapping[str, str] | None = None, fail: bool = False):
        self.mapping = dict(mapping or {})
        self.fail = fail
        self.batches: list[list[str]] = []

    def lookup(self, names, auth=None):
        self.batches.append(list(names))
        if self.fail:
            raise NameLookupError("connection refused")
        return {name: self.mapping[name] for name in names if name in self.mapping}


@pytest.fixture
def scenario_database() -> PackageDatabase:
    """``foo`` 1/2/3 and ``bar`` 1 (which needs ``foo <3``) in one channel."""
    return PackageDatabase(
        [
            make_record("foo", "1"),
            make_record("foo", "2"),
            make_record("foo", "3"),
            make_record("bar", "1", ["foo <3"]),
        ]
    )


@pytest.fixture
def solver() -> BacktrackingSolver:
    return BacktrackingSolver()


@pytest.fixture
def scenario_project(tmp_path) -> Project:
    """``default`` alone; ``prod`` and ``test`` share the ``prod`` group."""
    return Project(
        name="scenario",
        channels=[Channel(CHANNEL)],
        platforms=["linux-64"],
        features={
            "default": Feature(name="default"),
            "base": Feature(
                name="base", conda_dependencies={"foo": MatchSpec("foo")}
            ),
            "test": Feature(
                name="test", conda_dependencies={"bar": MatchSpec("bar")}
            ),
        },
        environments={
            "default": Environment(
                name="default", features=["base"], no_default_feature=True
            ),
            "prod": Environment(name="prod", features=["base"], solve_group="prod"),
            "test": Environment(
                name="test", features=["base", "test"], solve_group="prod"
            ),
        },
        root=str(tmp_path),
        manifest_path=str(tmp_path / "pixi.toml"),
    )


@pytest.fixture
def sample_project() -> Project:
    """A richer project used for model and resolver tests."""
    default_feat = Feature(
        name="default",
        conda_dependencies={
            "python": MatchSpec("python >=3.10"),
            "numpy": MatchSpec("numpy >=1.24"),
        },
        pypi_dependencies={"requests": PyPIDependency("requests", ">=2.30")},
    )
    test_feat = Feature(
        name="test",
        conda_dependencies={
            "pytest": MatchSpec("pytest >=8.0"),
            "numpy": MatchSpec("numpy <2"),
        },
        target_conda_dependencies={"win-64": {"pytest": MatchSpec("pytest >=8.1")}},
    )
    docs_feat = Feature(
        name="docs",
        conda_dependencies={"sphinx": MatchSpec("sphinx >=7.0")},
        channels=[Channel("bioconda")],
        platforms=["linux-64"],
    )
    return Project(
        name="sample",
        version="0.1.0",
        channels=[Channel("conda-forge")],
        platforms=["linux-64", "osx-arm64", "win-64"],
        features={"default": default_feat, "test": test_feat, "docs": docs_feat},
        environments={
            "default": Environment(name="default", solve_group="main"),
            "test": Environment(name="test", features=["test"], solve_group="main"),
            "docs": Environment(name="docs", features=["docs"]),
        },
        root="/tmp/sample",
        manifest_path="/tmp/sample/pixi.toml",
    )


@pytest.fixture
def sample_pixi_toml(tmp_path):
    """Create a minimal pixi.toml in tmp_path and return its path."""
    content = f"""\
[workspace]
name = "test-project"
version = "0.1.0"
channels = ["{CHANNEL}"]
platforms = ["linux-64", "osx-arm64"]

[dependencies]
foo = "*"

[pypi-dependencies]
requests = ">=2.30"

[feature.test.dependencies]
bar = ">=1"

[feature.test.target.osx-arm64.dependencies]
bar = "1.*"

[feature.docs]
platforms = ["linux-64"]

[feature.docs.pypi-dependencies]
sphinx = {{ version = ">=7", extras = ["docs"] }}

[environments]
prod = {{solve-group = "prod"}}
test = {{features = ["test"], solve-group = "prod"}}
docs = ["docs"]
"""
    path = tmp_path / "pixi.toml"
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def record_factory():
    """Return :func:`make_record` for tests that build their own records."""
    return make_record


@pytest.fixture
def lookup_factory():
    """Return :class:`CountingLookup`."""
    return CountingLookup


@pytest.fixture
def pypi_solver_factory():
    """Return :class:`FakePypiSolver`."""
    return FakePypiSolver
