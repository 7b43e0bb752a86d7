"""Feature-to-environment resolver.

Takes a ``Project`` and resolves which conda/PyPI requirement specs an
environment asks for by composing its constituent features.  Also
derives the solve groups that coordinate solving across environments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .exceptions import FeatureNotFoundError, PlatformError, SolveGroupError
from .models import merge_match_specs, merge_pypi_dependencies

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .models import Channel, Environment, MatchSpec, Project, PyPIDependency


@dataclass
class ResolvedEnvironment:
    """The fully resolved requirement set of a single environment.

    *conda_dependencies* and *pypi_dependencies* hold one merged spec per
    package name, combining the specs of every activated feature.
    """

    name: str
    conda_dependencies: dict[str, MatchSpec] = field(default_factory=dict)
    pypi_dependencies: dict[str, PyPIDependency] = field(default_factory=dict)
    channels: list[Channel] = field(default_factory=list)
    platforms: list[str] = field(default_factory=list)
    solve_group: str | None = None

    @property
    def channel_urls(self) -> list[str]:
        return [ch.canonical_name for ch in self.channels]


@dataclass(frozen=True)
class SolveGroup:
    """A set of environments solved together for version consistency.

    Solve groups are derived from the environments on every resolution
    pass and never stored.  An environment that declares no group forms
    an implicit singleton group named after the environment.
    """

    name: str
    environments: tuple[str, ...]
    platforms: tuple[str, ...]
    declared: bool = True

    @property
    def key(self) -> str:
        """Identifier of the group within a pass.

        Declared group names and environment names are separate
        namespaces, so the two kinds of group are keyed apart.
        """
        return f"group:{self.name}" if self.declared else f"env:{self.name}"

    @classmethod
    def implicit(cls, env_name: str, platforms: Iterable[str]) -> SolveGroup:
        return cls(
            name=env_name,
            environments=(env_name,),
            platforms=tuple(platforms),
            declared=False,
        )


def resolve_environment(
    project: Project,
    env_name: str,
    platform: str | None = None,
) -> ResolvedEnvironment:
    """Resolve an environment by composing its features.

    Specs for the same package coming from different features are
    merged so that all of them hold.  If *platform* is given,
    target-specific overrides are included and platform support is
    validated.
    """
    env = project.get_environment(env_name)

    if platform and project.platforms and platform not in project.platforms:
        raise PlatformError(platform, project.platforms)

    features = project.resolve_features(env)

    conda_specs: dict[str, list[MatchSpec]] = {}
    pypi_specs: dict[str, list[PyPIDependency]] = {}
    for feat in features:
        for name, spec in feat.conda_dependencies_for(platform).items():
            conda_specs.setdefault(name, []).append(spec)
        for dep in feat.pypi_dependencies_for(platform).values():
            pypi_specs.setdefault(dep.canonical_name, []).append(dep)

    return ResolvedEnvironment(
        name=env_name,
        conda_dependencies={
            name: merge_match_specs(name, specs)
            for name, specs in conda_specs.items()
        },
        pypi_dependencies={
            name: merge_pypi_dependencies(name, deps)
            for name, deps in pypi_specs.items()
        },
        channels=project.merged_channels(env),
        platforms=project.environment_platforms(env),
        solve_group=env.solve_group,
    )


def _environment_platforms(project: Project, env: Environment) -> tuple[str, ...]:
    try:
        return tuple(project.environment_platforms(env))
    except FeatureNotFoundError:
        # Reported as that environment's failure once it is resolved.
        return tuple(project.platforms)


def derive_solve_groups(project: Project) -> dict[str, SolveGroup]:
    """Compute the solve groups of *project* from its environments.

    Only membership and platforms are looked at, so an environment
    whose requirements cannot be merged still gets a group (and fails
    on its own when that group is solved).  Every member of a declared
    group must target the same platforms.  Environments without a
    declared group become singleton groups named after the environment.

    The result is keyed by :attr:`SolveGroup.key`, which keeps declared
    and implicit groups apart even when their names are equal.
    """
    declared: dict[str, list[Environment]] = {}
    groups: dict[str, SolveGroup] = {}

    for env in project.environments.values():
        if env.solve_group is None:
            group = SolveGroup.implicit(env.name, _environment_platforms(project, env))
            groups[group.key] = group
        else:
            declared.setdefault(env.solve_group, []).append(env)

    for group_name, members in declared.items():
        platforms = {env.name: _environment_platforms(project, env) for env in members}
        platform_sets = {tuple(sorted(p)) for p in platforms.values()}
        if len(platform_sets) > 1:
            detail = ", ".join(
                f"{name}: [{', '.join(sorted(p))}]" for name, p in platforms.items()
            )
            raise SolveGroupError(
                group_name, f"members target different platforms ({detail})"
            )
        group = SolveGroup(
            name=group_name,
            environments=tuple(platforms),
            platforms=platform_sets.pop(),
        )
        groups[group.key] = group

    return groups


def group_of(groups: dict[str, SolveGroup], env_name: str) -> SolveGroup:
    """Return the solve group containing *env_name*."""
    for group in groups.values():
        if env_name in group.environments:
            return group
    raise KeyError(env_name)
