"""Data models for the requirement side of a lock resolution.

These dataclasses describe a project in a format-agnostic way: the
features it defines, the environments composed from them, and the
channels and platforms it targets.  The manifest adapter (or any other
caller) builds them once; the resolution engine only reads them.

Conda dependencies use :class:`~conda.models.match_spec.MatchSpec`
directly, and channels use :class:`~conda.models.channel.Channel`,
so the lock engine benefits from conda's own validation, URL
resolution, and spec parsing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, ClassVar

from conda.base.constants import KNOWN_SUBDIRS
from conda.models.channel import Channel  # noqa: TC002
from conda.models.match_spec import MatchSpec
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.utils import canonicalize_name

from .exceptions import (
    EnvironmentNotFoundError,
    FeatureNotFoundError,
    IncompatibleSpecsError,
    PlatformError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable


class Ecosystem(str, Enum):
    """The package ecosystem a requirement or locked entry belongs to."""

    CONDA = "conda"
    PYPI = "pypi"


@dataclass(frozen=True)
class PyPIDependency:
    """A PyPI dependency (name plus PEP 440 specifier).

    Stored separately from conda deps because they are solved by a
    different solver and end up as separate lock entries.
    """

    name: str
    spec: str = ""
    extras: tuple[str, ...] = ()
    editable: bool = False

    @property
    def canonical_name(self) -> str:
        return canonicalize_name(self.name)

    @property
    def specifier(self) -> SpecifierSet:
        return SpecifierSet(self.spec)

    def __str__(self) -> str:
        name = self.name
        if self.extras:
            name = f"{name}[{','.join(self.extras)}]"
        if self.spec:
            return f"{name}{self.spec}"
        return name


def merge_match_specs(name: str, specs: Iterable[MatchSpec]) -> MatchSpec:
    """Combine conda specs for *name* so that all constraints hold at once."""
    specs = list(specs)
    if len(specs) == 1:
        return specs[0]
    try:
        merged = MatchSpec.merge(specs)
    except ValueError as exc:
        raise IncompatibleSpecsError(name, specs) from exc
    if len(merged) != 1:
        raise IncompatibleSpecsError(name, specs)
    return merged[0]


def merge_pypi_dependencies(
    name: str, deps: Iterable[PyPIDependency]
) -> PyPIDependency:
    """Combine PyPI requirements for *name* into one requirement.

    Specifiers are intersected, extras are unioned and the result is
    editable if any input was.
    """
    deps = list(deps)
    if len(deps) == 1:
        return deps[0]
    try:
        specifier = SpecifierSet()
        for dep in deps:
            specifier &= dep.specifier
    except InvalidSpecifier as exc:
        raise IncompatibleSpecsError(name, deps) from exc
    extras = sorted({extra for dep in deps for extra in dep.extras})
    return PyPIDependency(
        name=deps[0].name,
        spec=str(specifier),
        extras=tuple(extras),
        editable=any(dep.editable for dep in deps),
    )


@dataclass
class Feature:
    """A composable group of dependencies and settings.

    Features map directly to ``[feature.<name>]`` tables in a manifest.
    They provide conda dependencies, PyPI dependencies, channel
    additions and platform restrictions.  Environments reference
    features by name; features are never copied into environments.

    The special feature named ``"default"`` corresponds to the top-level
    project dependencies.
    """

    DEFAULT_NAME: ClassVar[str] = "default"

    name: str
    conda_dependencies: dict[str, MatchSpec] = field(default_factory=dict)
    pypi_dependencies: dict[str, PyPIDependency] = field(default_factory=dict)
    channels: list[Channel] = field(default_factory=list)
    platforms: list[str] = field(default_factory=list)

    # Per-platform overrides: platform -> deps
    target_conda_dependencies: dict[str, dict[str, MatchSpec]] = field(
        default_factory=dict
    )
    target_pypi_dependencies: dict[str, dict[str, PyPIDependency]] = field(
        default_factory=dict
    )

    @property
    def is_default(self) -> bool:
        return self.name == self.DEFAULT_NAME

    def conda_dependencies_for(self, platform: str | None) -> dict[str, MatchSpec]:
        """Return conda deps with *platform* target overrides applied."""
        deps = dict(self.conda_dependencies)
        if platform and platform in self.target_conda_dependencies:
            deps.update(self.target_conda_dependencies[platform])
        return deps

    def pypi_dependencies_for(
        self, platform: str | None
    ) -> dict[str, PyPIDependency]:
        """Return PyPI deps with *platform* target overrides applied."""
        deps = dict(self.pypi_dependencies)
        if platform and platform in self.target_pypi_dependencies:
            deps.update(self.target_pypi_dependencies[platform])
        return deps


@dataclass
class Environment:
    """A named environment composed from one or more features.

    An environment inherits the ``default`` feature plus any additional
    features listed in *features*.

    *solve_group* links environments so they share a single solver
    solution (ensuring package-version consistency across environments).
    An environment without one is solved on its own.
    """

    DEFAULT_NAME: ClassVar[str] = "default"

    name: str
    features: list[str] = field(default_factory=list)
    solve_group: str | None = None
    no_default_feature: bool = False

    @property
    def is_default(self) -> bool:
        return self.name == self.DEFAULT_NAME


@dataclass
class Project:
    """Complete requirement model of a project.

    Contains all channels, platforms, features, and environments the
    lock engine resolves.  *manifest_path* points to the file the model
    was read from, if any (for messages only).
    """

    name: str | None = None
    version: str | None = None
    description: str | None = None

    channels: list[Channel] = field(default_factory=list)
    platforms: list[str] = field(default_factory=list)

    # Features keyed by name; always includes "default"
    features: dict[str, Feature] = field(default_factory=dict)

    # Environments keyed by name; always includes "default"
    environments: dict[str, Environment] = field(default_factory=dict)

    root: str = ""
    manifest_path: str = ""

    def __post_init__(self) -> None:
        """Ensure the default feature and environment always exist.

        Also validates that all declared platforms are recognised
        conda subdirs (e.g. ``linux-64``, ``osx-arm64``).
        """
        if Feature.DEFAULT_NAME not in self.features:
            self.features[Feature.DEFAULT_NAME] = Feature(name=Feature.DEFAULT_NAME)
        if Environment.DEFAULT_NAME not in self.environments:
            self.environments[Environment.DEFAULT_NAME] = Environment(
                name=Environment.DEFAULT_NAME
            )

        invalid = [p for p in self.platforms if p not in KNOWN_SUBDIRS]
        if invalid:
            raise PlatformError(
                ", ".join(invalid),
                sorted(KNOWN_SUBDIRS),
            )

    def get_environment(self, name: str) -> Environment:
        """Return the environment with *name*, raising if not found."""
        if name not in self.environments:
            raise EnvironmentNotFoundError(name, list(self.environments.keys()))
        return self.environments[name]

    def resolve_features(self, environment: Environment) -> list[Feature]:
        """Return the ordered list of features for *environment*.

        By default, the ``default`` feature is prepended unless the
        environment sets ``no_default_feature``.
        """
        result: list[Feature] = []
        if not environment.no_default_feature:
            result.append(self.features[Feature.DEFAULT_NAME])

        for fname in environment.features:
            if fname not in self.features:
                raise FeatureNotFoundError(fname, environment.name)
            feat = self.features[fname]
            if feat not in result:
                result.append(feat)

        return result

    def environment_platforms(self, environment: Environment) -> list[str]:
        """Return the platforms *environment* is locked for.

        Feature platforms are intersected with each other and with the
        project platforms; when no feature restricts platforms the
        project platforms are used.
        """
        feature_platforms: set[str] | None = None
        for feat in self.resolve_features(environment):
            if feat.platforms:
                if feature_platforms is None:
                    feature_platforms = set(feat.platforms)
                else:
                    feature_platforms &= set(feat.platforms)

        if feature_platforms is None:
            return list(self.platforms)
        if self.platforms:
            feature_platforms &= set(self.platforms)
        return sorted(feature_platforms)

    def merged_channels(self, environment: Environment) -> list[Channel]:
        """Merge channels across features for *environment*.

        Feature-specific channels are appended after the project-level
        channels, preserving priority order.  Duplicates are removed.
        """
        seen: set[str] = set()
        result: list[Channel] = []
        for ch in self.channels:
            if ch.canonical_name not in seen:
                seen.add(ch.canonical_name)
                result.append(ch)
        for feature in self.resolve_features(environment):
            for ch in feature.channels:
                if ch.canonical_name not in seen:
                    seen.add(ch.canonical_name)
                    result.append(ch)
        return result
