"""Lock context: lazy properties for conda & project state.

Provides a namespace of lazily-evaluated properties that downstream
code can use without importing conda's global context at module level.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .mapping import CompressedMapping
    from .models import Project


class LockContext:
    """Lazy-evaluated settings for locking one project.

    Properties are resolved on first access and cached.  *project* may
    be omitted when a manifest path is given; it is parsed on first use.
    """

    def __init__(
        self,
        project: Project | None = None,
        *,
        manifest_path: str | Path | None = None,
        mapping_path: str | Path | None = None,
    ) -> None:
        self._project = project
        self._manifest_path = Path(manifest_path) if manifest_path else None
        self._mapping_path = Path(mapping_path) if mapping_path else None
        self._cache: dict[str, object] = {}

    @property
    def project(self) -> Project:
        """The requirement model of the project."""
        if self._project is None:
            from .manifest import parse_manifest

            if self._manifest_path is None:
                raise ValueError("LockContext needs a project or a manifest path")
            self._project = parse_manifest(self._manifest_path)
        return self._project

    @property
    def root(self) -> Path:
        """Project root directory."""
        if self.project.root:
            return Path(self.project.root)
        if self._manifest_path is not None:
            return self._manifest_path.parent
        return Path.cwd()

    @property
    def lockfile_path(self) -> Path:
        """Path of the project lockfile."""
        from .lockfile import LOCKFILE_NAME

        return self.root / LOCKFILE_NAME

    @property
    def platform(self) -> str:
        """Current conda subdir (e.g. ``osx-arm64``)."""
        if "platform" not in self._cache:
            from conda.base.context import context

            self._cache["platform"] = context.subdir
        return self._cache["platform"]  # type: ignore[return-value]

    @property
    def max_workers(self) -> int | None:
        """Thread count for solving, from conda's ``default_threads``."""
        if "max_workers" not in self._cache:
            from conda.base.context import context

            self._cache["max_workers"] = context.default_threads
        return self._cache["max_workers"]  # type: ignore[return-value]

    @property
    def compressed_mapping(self) -> CompressedMapping:
        """The conda-to-PyPI override table, empty if none is configured."""
        if "compressed_mapping" not in self._cache:
            from .mapping import load_compressed_mapping

            mapping: CompressedMapping = {}
            if self._mapping_path is not None:
                mapping = load_compressed_mapping(self._mapping_path)
            self._cache["compressed_mapping"] = mapping
        return self._cache["compressed_mapping"]  # type: ignore[return-value]

    @property
    def is_platform_supported(self) -> bool:
        """Whether the current platform is in the project's platform list."""
        if not self.project.platforms:
            return True
        return self.platform in self.project.platforms
