"""Solver capabilities consumed by the solve-group unifier.

The constraint-satisfaction algorithms live outside this package; these
interfaces describe what the engine needs from them.  ``ClassicSolver``
adapts conda's own SAT-based :class:`~conda.resolve.Resolve` so an
in-memory package database can be solved for any platform without
touching a prefix.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from conda.exceptions import (
    PackagesNotFoundError,
    ResolvePackageNotFound,
    UnsatisfiableError,
)
from conda.models.match_spec import MatchSpec

from .exceptions import UnsatisfiableSpecsError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from conda.models.records import PackageRecord

    from .models import PyPIDependency
    from .records import PypiLockedPackage

log = logging.getLogger(__name__)


class Solver(ABC):
    """Interface of a conda solver."""

    @abstractmethod
    def solve(
        self,
        platform: str,
        records: Sequence[PackageRecord],
        specs: Sequence[MatchSpec],
    ) -> list[PackageRecord]:
        """Return the records that satisfy *specs* on *platform*.

        *records* is the package database restricted to the platform and
        the channels in use.  Raises ``UnsatisfiableSpecsError`` when
        no solution exists.
        """


class PypiSolver(ABC):
    """Interface of a PyPI solver."""

    @abstractmethod
    def solve(
        self,
        platform: str,
        requirements: Sequence[PyPIDependency],
        conda_provided: Mapping[str, str],
    ) -> list[PypiLockedPackage]:
        """Return the PyPI packages that satisfy *requirements*.

        *conda_provided* maps canonical PyPI names to the versions the
        conda solution already provides; the solver must treat them as
        installed.  Raises ``UnsatisfiableSpecsError`` when no solution
        exists.
        """


class ClassicSolver(Solver):
    """Solve with conda's classic SAT resolver over an in-memory index."""

    def solve(
        self,
        platform: str,
        records: Sequence[PackageRecord],
        specs: Sequence[MatchSpec],
    ) -> list[PackageRecord]:
        from conda.resolve import Resolve

        index = {prec: prec for prec in records}
        log.debug(
            "Solving %d spec(s) for %s against %d record(s)",
            len(specs),
            platform,
            len(index),
        )
        resolve = Resolve(index)
        try:
            solution = resolve.install([MatchSpec(spec) for spec in specs])
        except (
            UnsatisfiableError,
            ResolvePackageNotFound,
            PackagesNotFoundError,
            SystemExit,
        ) as exc:
            raise UnsatisfiableSpecsError(specs, str(exc)) from exc
        return list(solution)
