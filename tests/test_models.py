"""Tests for conda_multilock.models."""

from __future__ import annotations

import pytest

from conda_multilock.exceptions import (
    EnvironmentNotFoundError,
    FeatureNotFoundError,
    IncompatibleSpecsError,
    PlatformError,
)
from conda_multilock.models import (
    Channel,
    Ecosystem,
    Environment,
    Feature,
    MatchSpec,
    Project,
    PyPIDependency,
    merge_match_specs,
    merge_pypi_dependencies,
)


@pytest.mark.parametrize(
    "name, spec, extras, expected",
    [
        ("requests", ">=2.28", (), "requests>=2.28"),
        ("requests", "", (), "requests"),
        ("flask", ">=2.0,<3", (), "flask>=2.0,<3"),
        ("sphinx", ">=7", ("docs", "test"), "sphinx[docs,test]>=7"),
    ],
    ids=["with-spec", "no-spec", "compound-spec", "extras"],
)
def test_pypi_dep_str(name, spec, extras, expected):
    dep = PyPIDependency(name=name, spec=spec, extras=extras)
    assert str(dep) == expected


def test_pypi_dep_canonical_name():
    assert PyPIDependency("Foo_Bar.baz").canonical_name == "foo-bar-baz"


def test_ecosystem_values():
    assert Ecosystem("conda") is Ecosystem.CONDA
    assert Ecosystem("pypi") is Ecosystem.PYPI


def test_merge_match_specs_single_passthrough():
    spec = MatchSpec("numpy >=1.24")
    assert merge_match_specs("numpy", [spec]) is spec


def test_merge_match_specs_all_constraints_hold(record_factory):
    merged = merge_match_specs(
        "numpy", [MatchSpec("numpy >=1.24"), MatchSpec("numpy <2")]
    )
    assert merged.name == "numpy"
    assert merged.match(record_factory("numpy", "1.26"))
    assert not merged.match(record_factory("numpy", "2.0"))
    assert not merged.match(record_factory("numpy", "1.20"))


def test_merge_match_specs_incompatible():
    with pytest.raises(IncompatibleSpecsError) as exc_info:
        merge_match_specs(
            "numpy",
            [MatchSpec("numpy[build=py_0]"), MatchSpec("numpy[build=py_1]")],
        )
    assert exc_info.value.name == "numpy"
    assert len(exc_info.value.specs) == 2


def test_merge_pypi_dependencies():
    merged = merge_pypi_dependencies(
        "requests",
        [
            PyPIDependency("requests", ">=2.0", extras=("socks",)),
            PyPIDependency("requests", "<3", extras=("security",), editable=True),
        ],
    )
    assert merged.specifier.contains("2.31")
    assert not merged.specifier.contains("3.0")
    assert merged.extras == ("security", "socks")
    assert merged.editable is True


def test_merge_pypi_dependencies_invalid_specifier():
    with pytest.raises(IncompatibleSpecsError):
        merge_pypi_dependencies(
            "requests",
            [PyPIDependency("requests", ">=2"), PyPIDependency("requests", "~~2")],
        )


@pytest.mark.parametrize(
    "name, expected_default",
    [
        ("default", True),
        ("test", False),
    ],
    ids=["default", "test"],
)
def test_feature_is_default(name, expected_default):
    assert Feature(name=name).is_default is expected_default


@pytest.mark.parametrize(
    "platform, expected",
    [
        (None, "pytest >=8.0"),
        ("linux-64", "pytest >=8.0"),
        ("win-64", "pytest >=8.1"),
    ],
    ids=["no-platform", "no-override", "target-override"],
)
def test_feature_target_overrides(sample_project, platform, expected):
    feature = sample_project.features["test"]
    deps = feature.conda_dependencies_for(platform)
    assert deps["pytest"] == MatchSpec(expected)
    assert "numpy" in deps


def test_project_post_init_creates_defaults():
    project = Project()
    assert Feature.DEFAULT_NAME in project.features
    assert Environment.DEFAULT_NAME in project.environments


def test_project_rejects_unknown_platform():
    with pytest.raises(PlatformError):
        Project(platforms=["linux-64", "amiga-68k"])


def test_get_environment(sample_project):
    env = sample_project.get_environment("test")
    assert env.name == "test"
    assert env.solve_group == "main"


def test_get_environment_not_found(sample_project):
    with pytest.raises(EnvironmentNotFoundError) as exc_info:
        sample_project.get_environment("nonexistent")
    assert "docs" in str(exc_info.value)


@pytest.mark.parametrize(
    "env_name, expected_names",
    [
        ("default", ["default"]),
        ("test", ["default", "test"]),
        ("docs", ["default", "docs"]),
    ],
    ids=["default-only", "test-inherits-default", "docs-inherits-default"],
)
def test_resolve_features(sample_project, env_name, expected_names):
    env = sample_project.environments[env_name]
    assert [f.name for f in sample_project.resolve_features(env)] == expected_names


def test_resolve_features_no_default():
    project = Project(
        features={"standalone": Feature(name="standalone")},
        environments={
            "isolated": Environment(
                name="isolated", features=["standalone"], no_default_feature=True
            ),
        },
    )
    env = project.environments["isolated"]
    assert [f.name for f in project.resolve_features(env)] == ["standalone"]


def test_resolve_features_missing():
    project = Project(
        environments={"broken": Environment(name="broken", features=["ghost"])},
    )
    with pytest.raises(FeatureNotFoundError) as exc_info:
        project.resolve_features(project.environments["broken"])
    assert exc_info.value.feature == "ghost"
    assert exc_info.value.environment == "broken"


@pytest.mark.parametrize(
    "env_name, expected",
    [
        ("default", ["linux-64", "osx-arm64", "win-64"]),
        ("docs", ["linux-64"]),
    ],
    ids=["project-platforms", "feature-restricted"],
)
def test_environment_platforms(sample_project, env_name, expected):
    env = sample_project.environments[env_name]
    assert sample_project.environment_platforms(env) == expected


def test_environment_platforms_intersection():
    project = Project(
        platforms=["linux-64", "osx-arm64", "win-64"],
        features={
            "a": Feature(name="a", platforms=["linux-64", "osx-arm64"]),
            "b": Feature(name="b", platforms=["osx-arm64", "win-64"]),
        },
        environments={"both": Environment(name="both", features=["a", "b"])},
    )
    env = project.environments["both"]
    assert project.environment_platforms(env) == ["osx-arm64"]


def test_environment_platforms_limited_to_project():
    project = Project(
        platforms=["linux-64", "osx-arm64"],
        features={"gpu": Feature(name="gpu", platforms=["linux-64", "win-64"])},
        environments={"cuda": Environment(name="cuda", features=["gpu"])},
    )
    env = project.environments["cuda"]
    assert project.environment_platforms(env) == ["linux-64"]


def test_merged_channels(sample_project):
    env = sample_project.environments["docs"]
    names = [ch.canonical_name for ch in sample_project.merged_channels(env)]
    assert names == ["conda-forge", "bioconda"]


def test_merged_channels_deduplicates():
    project = Project(
        channels=[Channel("conda-forge")],
        features={"extra": Feature(name="extra", channels=[Channel("conda-forge")])},
        environments={"env": Environment(name="env", features=["extra"])},
    )
    channels = project.merged_channels(project.environments["env"])
    assert [ch.canonical_name for ch in channels] == ["conda-forge"]
