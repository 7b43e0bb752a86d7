"""Resolution pass: bring a lock up to date with the project.

The pass runs in two phases on a thread pool:

1. one solve task per ``(solve group, platform)`` unit that the
   freshness plan marks for solving;
2. as soon as a unit's solution is available, one projection task per
   member environment.

Failures are collected per unit and per pair instead of aborting the
pass.  The fan-in step then builds a new :class:`LockFile` from the
entries that can be reused and the units that completed; pairs of
failed units keep whatever the previous lock had for them, so they are
reported again on the next pass.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

from conda.exceptions import CondaError

from .exceptions import IncompatibleSpecsError, SolveError
from .freshness import fingerprint, plan_relock
from .lockfile import (
    LockedPlatform,
    LockFile,
    lockfile_to_dict,
    read_lockfile,
    write_lockfile,
)
from .mapping import LookupCache
from .projector import project_environment
from .resolver import resolve_environment
from .unifier import solve_group

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from concurrent.futures import Future
    from typing import Any

    from .context import LockContext
    from .freshness import RelockPlan
    from .mapping import NameLookup
    from .models import Project
    from .projector import ProjectedEnvironment
    from .records import PackageDatabase
    from .resolver import ResolvedEnvironment, SolveGroup
    from .solver import PypiSolver, Solver
    from .unifier import GroupSolution

log = logging.getLogger(__name__)

#: Errors that fail a single unit of work instead of the whole pass.
UNIT_ERRORS = (CondaError, OSError)


class OutcomeStatus(str, Enum):
    """What happened to one environment/platform pair during a pass."""

    REUSED = "reused"
    SOLVED = "solved"
    FAILED = "failed"


@dataclass(frozen=True)
class PairOutcome:
    """Result of a pass for one environment on one platform."""

    environment: str
    platform: str
    status: OutcomeStatus
    error: Exception | None = None
    conda_count: int = 0
    pypi_count: int = 0

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    def summary(self) -> str:
        if self.failed:
            return f"{self.environment} [{self.platform}]: failed: {self.error}"
        return (
            f"{self.environment} [{self.platform}]: {self.status.value}, "
            f"{self.conda_count} conda, {self.pypi_count} pypi package(s)"
        )


@dataclass
class LockResult:
    """Outcome of a resolution pass."""

    lock_file: LockFile
    plan: RelockPlan
    outcomes: dict[tuple[str, str], PairOutcome] = field(default_factory=dict)
    changed: bool = False

    @property
    def failures(self) -> dict[tuple[str, str], PairOutcome]:
        return {pair: o for pair, o in self.outcomes.items() if o.failed}

    @property
    def ok(self) -> bool:
        return not self.failures


def _prune(lock: LockFile, project: Project, groups: dict[str, SolveGroup]) -> LockFile:
    """Drop environments and platforms the project no longer has."""
    platforms_by_env = {
        env_name: set(group.platforms)
        for group in groups.values()
        for env_name in group.environments
    }
    environments = {}
    for env_name, env in lock.restricted_to(project.environments).environments.items():
        keep = platforms_by_env.get(env_name, set())
        environments[env_name] = replace(
            env,
            platforms={p: e for p, e in env.platforms.items() if p in keep},
        )
    return replace(lock, environments=environments)


def update_lockfile(
    project: Project,
    database: PackageDatabase,
    solver: Solver,
    *,
    lock: LockFile | None = None,
    pypi_solver: PypiSolver | None = None,
    lookup: NameLookup | None = None,
    auth: Any = None,
    compressed_mapping: Mapping[str, str | None] | None = None,
    environments: Iterable[str] | None = None,
    force: bool = False,
    max_workers: int | None = None,
) -> LockResult:
    """Run one resolution pass and return the new lock.

    Only the solve groups whose members are stale or missing in *lock*
    (or every group, with *force*) are solved; with *environments*, only
    groups containing one of those environments are.  Nothing is
    written to disk; see :func:`up_to_date_lockfile`.
    """
    plan = plan_relock(lock, project, environments, force=force)
    previous = lock or LockFile()
    outcomes: dict[tuple[str, str], PairOutcome] = {}

    for env_name, platform in plan.reusable():
        entry = previous.get_platform(env_name, platform)
        outcomes[(env_name, platform)] = PairOutcome(
            env_name,
            platform,
            OutcomeStatus.REUSED,
            conda_count=len(entry.conda) if entry else 0,
            pypi_count=len(entry.pypi) if entry else 0,
        )

    lookup_cache = LookupCache(lookup, auth)
    members: dict[tuple[str, str], list[ResolvedEnvironment]] = {}
    unit_errors: dict[tuple[str, str], Exception] = {}
    for unit in plan.units:
        group_name, platform = unit
        group = plan.groups[group_name]
        try:
            members[unit] = [
                resolve_environment(project, env_name, platform)
                for env_name in group.environments
            ]
        except IncompatibleSpecsError as exc:
            log.warning("Resolving %s for %s failed: %s", group.name, platform, exc)
            unit_errors[unit] = SolveError(group.name, platform, str(exc), exc.specs)
        except UNIT_ERRORS as exc:
            log.warning("Resolving %s for %s failed: %s", group.name, platform, exc)
            unit_errors[unit] = exc

    solutions: dict[tuple[str, str], GroupSolution] = {}
    projections: dict[tuple[str, str], list[ProjectedEnvironment]] = {}

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        solve_futures: dict[Future[GroupSolution], tuple[str, str]] = {
            executor.submit(
                solve_group,
                plan.groups[unit[0]],
                unit[1],
                unit_members,
                database,
                solver,
                pypi_solver=pypi_solver,
                lookup_cache=lookup_cache,
                compressed_mapping=compressed_mapping,
            ): unit
            for unit, unit_members in members.items()
        }
        project_futures: dict[Future[ProjectedEnvironment], tuple[str, str]] = {}

        for future in as_completed(solve_futures):
            unit = solve_futures[future]
            try:
                solution = future.result()
            except UNIT_ERRORS as exc:
                log.warning(
                    "Solving %s for %s failed: %s",
                    plan.groups[unit[0]].name,
                    unit[1],
                    exc,
                )
                unit_errors[unit] = exc
                continue
            solutions[unit] = solution
            for env in members[unit]:
                project_futures[executor.submit(project_environment, env, solution)] = unit

        for future in as_completed(project_futures):
            unit = project_futures[future]
            try:
                projections.setdefault(unit, []).append(future.result())
            except UNIT_ERRORS as exc:
                log.warning(
                    "Projecting solve group %s for %s failed: %s",
                    plan.groups[unit[0]].name,
                    unit[1],
                    exc,
                )
                unit_errors.setdefault(unit, exc)

    new_lock = _prune(previous, project, plan.groups)
    for unit in plan.units:
        group_name, platform = unit
        group = plan.groups[group_name]
        error = unit_errors.get(unit)
        if error is not None:
            for env_name in group.environments:
                outcomes[(env_name, platform)] = PairOutcome(
                    env_name, platform, OutcomeStatus.FAILED, error=error
                )
            continue

        resolved = {env.name: env for env in members[unit]}
        for projected in sorted(projections[unit], key=lambda p: p.environment):
            env = resolved[projected.environment]
            entry = LockedPlatform(
                fingerprint=fingerprint(env, platform, group),
                conda=projected.conda,
                pypi=projected.pypi,
            )
            new_lock = new_lock.with_platform(
                env.name,
                platform,
                entry,
                channels=env.channel_urls,
                solve_group=group.name if group.declared else None,
            )
            outcomes[(env.name, platform)] = PairOutcome(
                env.name,
                platform,
                OutcomeStatus.SOLVED,
                conda_count=len(projected.conda),
                pypi_count=len(projected.pypi),
            )

    changed = lock is None or lockfile_to_dict(new_lock) != lockfile_to_dict(lock)
    result = LockResult(
        lock_file=new_lock,
        plan=plan,
        outcomes=dict(sorted(outcomes.items())),
        changed=changed,
    )
    log.info(
        "Resolution pass: %d unit(s) solved, %d pair(s) reused, %d pair(s) failed",
        len(solutions),
        len(plan.reusable()),
        len(result.failures),
    )
    return result


def up_to_date_lockfile(
    ctx: LockContext,
    database: PackageDatabase,
    solver: Solver,
    **kwargs: Any,
) -> LockResult:
    """Load the project lock, bring it up to date and write it back.

    The lockfile is only rewritten when the pass changed something.
    Pairs that failed are left out of the update and reported in the
    returned :class:`LockResult`.
    """
    path = ctx.lockfile_path
    lock = read_lockfile(path) if path.is_file() else None

    kwargs.setdefault("compressed_mapping", ctx.compressed_mapping)
    kwargs.setdefault("max_workers", ctx.max_workers)
    result = update_lockfile(ctx.project, database, solver, lock=lock, **kwargs)

    if result.changed:
        write_lockfile(result.lock_file, path)
        log.info("Lockfile written to %s", path)
    for outcome in result.failures.values():
        log.warning(outcome.summary())
    return result
