"""Exception hierarchy for conda-multilock."""

from __future__ import annotations

from typing import TYPE_CHECKING

from conda.exceptions import CondaError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path


class CondaMultilockError(CondaError):
    """Base exception for all conda-multilock errors."""


class ManifestParseError(CondaMultilockError):
    """The project manifest could not be parsed."""

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to parse project manifest '{path}': {reason}")


class EnvironmentNotFoundError(CondaMultilockError):
    """The requested environment is not defined in the project."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        hint = ""
        if available:
            hint = f"\nAvailable environments: {', '.join(sorted(available))}"
        super().__init__(f"Environment '{name}' is not defined in the project.{hint}")


class FeatureNotFoundError(CondaMultilockError):
    """A feature referenced by an environment does not exist."""

    def __init__(self, feature: str, environment: str) -> None:
        self.feature = feature
        self.environment = environment
        super().__init__(
            f"Feature '{feature}' referenced by environment '{environment}' "
            "is not defined in the project."
        )


class PlatformError(CondaMultilockError):
    """Platform configuration error."""

    def __init__(self, platform: str, available: list[str]) -> None:
        self.platform = platform
        self.available = available
        super().__init__(
            f"Platform '{platform}' is not supported by this project.\n"
            f"Supported platforms: {', '.join(sorted(available))}"
        )


class SolveGroupError(CondaMultilockError):
    """The members of a solve group cannot be solved together."""

    def __init__(self, group: str, reason: str) -> None:
        self.group = group
        self.reason = reason
        super().__init__(f"Invalid solve group '{group}': {reason}")


class IncompatibleSpecsError(CondaMultilockError):
    """Requirement specs for the same package cannot be combined."""

    def __init__(self, name: str, specs: Iterable[str]) -> None:
        self.name = name
        self.specs = tuple(str(spec) for spec in specs)
        listing = "\n".join(f"  - {spec}" for spec in self.specs)
        super().__init__(
            f"Incompatible requirements for package '{name}':\n{listing}"
        )


class UnsatisfiableSpecsError(CondaMultilockError):
    """A solver found no solution for a set of requirement specs."""

    def __init__(self, specs: Iterable[str], reason: str) -> None:
        self.specs = tuple(str(spec) for spec in specs)
        self.reason = reason
        super().__init__(f"Requirements could not be satisfied: {reason}")


class SolveError(CondaMultilockError):
    """Dependency solving failed for a solve group on one platform."""

    def __init__(
        self,
        group: str,
        platform: str,
        reason: str,
        specs: Iterable[str] = (),
    ) -> None:
        self.group = group
        self.platform = platform
        self.reason = reason
        self.specs = tuple(str(spec) for spec in specs)
        message = f"Failed to solve group '{group}' for {platform}: {reason}"
        if self.specs:
            listing = "\n".join(f"  - {spec}" for spec in self.specs)
            message += f"\nConflicting requirements:\n{listing}"
        super().__init__(message)


class InconsistentSolutionError(CondaMultilockError):
    """A direct requirement is missing from its solve group's solution.

    This indicates a defect in the unifier/projector contract, not a
    problem with the user's requirements.
    """

    def __init__(self, environment: str, platform: str, requirement: str) -> None:
        self.environment = environment
        self.platform = platform
        self.requirement = requirement
        super().__init__(
            f"Internal error: requirement '{requirement}' of environment "
            f"'{environment}' is not satisfied by the solve group solution "
            f"for {platform}."
        )


class NameLookupError(CondaMultilockError):
    """The conda-to-PyPI name lookup could not be performed."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to look up PyPI names: {reason}")


class LockfileNotFoundError(CondaMultilockError):
    """No lockfile or lockfile entry exists for the requested environment."""

    def __init__(self, environment: str, path: str | Path) -> None:
        self.environment = environment
        self.path = path
        super().__init__(
            f"No lockfile entry found for environment '{environment}' "
            f"in {path}.\n"
            f"Run a lock update to generate one."
        )


class LockfileFormatError(CondaMultilockError):
    """The lockfile exists but cannot be read."""

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to read lockfile '{path}': {reason}")
