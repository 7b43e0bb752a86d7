"""Lock freshness validation.

Decides whether a previously written lock still matches the project.
Each ``(environment, platform)`` entry stores a fingerprint of the
requirements it was solved from; comparing it with the fingerprint of
the current requirements classifies the entry as up to date, stale or
missing.  Any non-up-to-date member forces its whole solve group to be
solved again on that platform.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from conda.common.serialize.json import dumps as json_dumps
from conda.exceptions import CondaError
from conda.models.channel import Channel
from conda.models.match_spec import MatchSpec

from .exceptions import PlatformError
from .resolver import derive_solve_groups, group_of, resolve_environment

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .lockfile import LockFile
    from .models import Project
    from .resolver import ResolvedEnvironment, SolveGroup

log = logging.getLogger(__name__)


class Freshness(str, Enum):
    """Classification of one locked environment/platform pair."""

    UP_TO_DATE = "up-to-date"
    STALE = "stale"
    MISSING = "missing"


def _spec_fields(spec: MatchSpec) -> dict[str, str]:
    """Return the constraints of *spec* independent of how conda renders it."""
    fields: dict[str, str] = {}
    for key in MatchSpec.FIELD_NAMES:
        value = spec.get_raw_value(key)
        if value is None:
            continue
        if isinstance(value, Channel):
            value = value.canonical_name
        elif isinstance(value, (set, frozenset)):
            value = " ".join(sorted(value))
        fields[key] = str(value)
    return fields


def fingerprint(
    environment: ResolvedEnvironment,
    platform: str,
    group: SolveGroup,
) -> str:
    """Return the requirement fingerprint of *environment* on *platform*.

    Covers the merged conda and PyPI specs, the channel list, the
    platform and, for declared solve groups, the group name and its
    members.  *environment* must be resolved for *platform*.
    """
    payload = {
        "platform": platform,
        "channels": environment.channel_urls,
        "conda": [
            _spec_fields(spec)
            for _, spec in sorted(environment.conda_dependencies.items())
        ],
        "pypi": sorted(
            f"{dep} editable" if dep.editable else str(dep)
            for dep in environment.pypi_dependencies.values()
        ),
        "solve-group": (
            {"name": group.name, "environments": sorted(group.environments)}
            if group.declared
            else None
        ),
    }
    encoded = json_dumps(payload, sort_keys=True).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def classify(
    lock: LockFile | None,
    project: Project,
    env_name: str,
    platform: str,
    *,
    groups: dict[str, SolveGroup] | None = None,
) -> Freshness:
    """Classify the lock entry of *env_name* on *platform*.

    An environment whose requirements cannot be resolved is stale, so
    that its group is scheduled and the error is reported for it.
    """
    if groups is None:
        groups = derive_solve_groups(project)
    group = group_of(groups, env_name)
    if platform not in group.platforms:
        raise PlatformError(platform, list(group.platforms))

    entry = lock.get_platform(env_name, platform) if lock is not None else None
    if entry is None:
        return Freshness.MISSING

    try:
        resolved = resolve_environment(project, env_name, platform)
    except CondaError as exc:
        log.debug("Cannot resolve %s for %s: %s", env_name, platform, exc)
        return Freshness.STALE

    if entry.fingerprint != fingerprint(resolved, platform, group):
        return Freshness.STALE
    return Freshness.UP_TO_DATE


@dataclass
class RelockPlan:
    """What a resolution pass has to do.

    *statuses* classifies every ``(environment, platform)`` pair of the
    project; *units* lists the ``(group, platform)`` pairs to solve.
    """

    groups: dict[str, SolveGroup] = field(default_factory=dict)
    statuses: dict[tuple[str, str], Freshness] = field(default_factory=dict)
    units: list[tuple[str, str]] = field(default_factory=list)

    @property
    def up_to_date(self) -> bool:
        return not self.units

    def pairs_to_solve(self) -> list[tuple[str, str]]:
        """Return the ``(environment, platform)`` pairs covered by *units*."""
        return [
            (env_name, platform)
            for group_name, platform in self.units
            for env_name in self.groups[group_name].environments
        ]

    def reusable(self) -> list[tuple[str, str]]:
        """Return the pairs whose lock entry is kept as it is."""
        solving = set(self.pairs_to_solve())
        return [
            pair
            for pair, status in sorted(self.statuses.items())
            if status is Freshness.UP_TO_DATE and pair not in solving
        ]


def plan_relock(
    lock: LockFile | None,
    project: Project,
    environments: Iterable[str] | None = None,
    *,
    force: bool = False,
) -> RelockPlan:
    """Decide which solve groups must be solved again.

    A group is solved on a platform when any of its members is stale or
    missing there (or always, with *force*).  With *environments*, only
    groups containing one of them are considered.
    """
    groups = derive_solve_groups(project)
    plan = RelockPlan(groups=groups)

    for group in groups.values():
        for platform in group.platforms:
            for env_name in group.environments:
                plan.statuses[(env_name, platform)] = classify(
                    lock, project, env_name, platform, groups=groups
                )

    if environments is None:
        requested = set(project.environments)
    else:
        requested = {project.get_environment(name).name for name in environments}

    for group_name, group in sorted(groups.items()):
        if not requested.intersection(group.environments):
            continue
        for platform in group.platforms:
            statuses = [plan.statuses[(env, platform)] for env in group.environments]
            if force or any(s is not Freshness.UP_TO_DATE for s in statuses):
                plan.units.append((group_name, platform))

    log.debug(
        "Relock plan: %d unit(s) to solve, %d pair(s) reusable",
        len(plan.units),
        len(plan.reusable()),
    )
    return plan
