"""Tests for conda_multilock.resolver."""

from __future__ import annotations

import pytest

from conda_multilock.exceptions import (
    EnvironmentNotFoundError,
    IncompatibleSpecsError,
    PlatformError,
    SolveGroupError,
)
from conda_multilock.models import Environment, Feature, MatchSpec, Project
from conda_multilock.resolver import (
    SolveGroup,
    derive_solve_groups,
    group_of,
    resolve_environment,
)


@pytest.mark.parametrize(
    "env_name, expected_deps",
    [
        ("default", ["python", "numpy"]),
        ("test", ["python", "numpy", "pytest"]),
        ("docs", ["python", "numpy", "sphinx"]),
    ],
    ids=["default", "test-inherits-default", "docs-inherits-default"],
)
def test_resolve_dependencies(sample_project, env_name, expected_deps):
    resolved = resolve_environment(sample_project, env_name)
    assert resolved.name == env_name
    assert sorted(resolved.conda_dependencies) == sorted(expected_deps)
    assert list(resolved.pypi_dependencies) == ["requests"]


def test_resolve_merges_specs_across_features(sample_project, record_factory):
    resolved = resolve_environment(sample_project, "test")
    numpy = resolved.conda_dependencies["numpy"]
    assert numpy.match(record_factory("numpy", "1.26"))
    assert not numpy.match(record_factory("numpy", "2.1"))
    assert not numpy.match(record_factory("numpy", "1.20"))


def test_resolve_target_override(sample_project):
    resolved = resolve_environment(sample_project, "test", platform="win-64")
    assert resolved.conda_dependencies["pytest"] == MatchSpec("pytest >=8.1")


def test_resolve_incompatible_specs():
    project = Project(
        features={
            "a": Feature(
                name="a", conda_dependencies={"zlib": MatchSpec("zlib[build=h0]")}
            ),
            "b": Feature(
                name="b", conda_dependencies={"zlib": MatchSpec("zlib[build=h1]")}
            ),
        },
        environments={"ab": Environment(name="ab", features=["a", "b"])},
    )
    with pytest.raises(IncompatibleSpecsError):
        resolve_environment(project, "ab")


def test_resolve_not_found(sample_project):
    with pytest.raises(EnvironmentNotFoundError):
        resolve_environment(sample_project, "nonexistent")


@pytest.mark.parametrize(
    "platform, should_raise",
    [
        ("linux-64", False),
        ("win-64", False),
        ("linux-aarch64", True),
    ],
    ids=["linux-valid", "win-valid", "aarch64-invalid"],
)
def test_resolve_platform_validation(sample_project, platform, should_raise):
    if should_raise:
        with pytest.raises(PlatformError):
            resolve_environment(sample_project, "default", platform=platform)
    else:
        resolved = resolve_environment(sample_project, "default", platform=platform)
        assert resolved.name == "default"


def test_resolve_channels(sample_project):
    resolved = resolve_environment(sample_project, "docs")
    assert resolved.channel_urls == ["conda-forge", "bioconda"]


@pytest.mark.parametrize(
    "env_name, expected_group",
    [
        ("test", "main"),
        ("docs", None),
    ],
    ids=["with-group", "no-group"],
)
def test_resolve_solve_group(sample_project, env_name, expected_group):
    assert resolve_environment(sample_project, env_name).solve_group == expected_group


def test_derive_solve_groups(sample_project):
    groups = derive_solve_groups(sample_project)
    assert sorted(groups) == ["env:docs", "group:main"]
    assert groups["group:main"] == SolveGroup(
        name="main",
        environments=("default", "test"),
        platforms=("linux-64", "osx-arm64", "win-64"),
    )
    assert groups["env:docs"] == SolveGroup.implicit("docs", ["linux-64"])
    assert groups["env:docs"].declared is False


def test_derive_solve_groups_follows_environments(sample_project):
    sample_project.environments["docs"].solve_group = "main"
    with pytest.raises(SolveGroupError) as exc_info:
        derive_solve_groups(sample_project)
    assert exc_info.value.group == "main"
    assert "platforms" in exc_info.value.reason

    sample_project.features["docs"].platforms = []
    groups = derive_solve_groups(sample_project)
    assert groups["group:main"].environments == ("default", "test", "docs")
    assert "env:docs" not in groups


def test_derive_solve_groups_group_named_like_environment():
    project = Project(
        platforms=["linux-64"],
        environments={
            "dev": Environment(name="dev", solve_group="lint"),
            "lint": Environment(name="lint"),
        },
    )
    groups = derive_solve_groups(project)
    assert groups["group:lint"].environments == ("dev",)
    assert groups["env:lint"].environments == ("lint",)
    assert group_of(groups, "lint").declared is False


def test_derive_solve_groups_ignores_unmergeable_specs():
    project = Project(
        platforms=["linux-64"],
        features={
            "a": Feature(
                name="a", conda_dependencies={"zlib": MatchSpec("zlib[build=h0]")}
            ),
            "b": Feature(
                name="b", conda_dependencies={"zlib": MatchSpec("zlib[build=h1]")}
            ),
        },
        environments={"ab": Environment(name="ab", features=["a", "b"])},
    )
    groups = derive_solve_groups(project)
    assert groups["env:ab"].platforms == ("linux-64",)


def test_derive_solve_groups_missing_feature():
    project = Project(
        platforms=["linux-64"],
        environments={"broken": Environment(name="broken", features=["ghost"])},
    )
    assert derive_solve_groups(project)["env:broken"].platforms == ("linux-64",)


def test_group_of(sample_project):
    groups = derive_solve_groups(sample_project)
    assert group_of(groups, "test").name == "main"
    assert group_of(groups, "docs").name == "docs"
    with pytest.raises(KeyError):
        group_of(groups, "missing")
