"""Build a :class:`~conda_multilock.models.Project` from a TOML manifest.

Reads the pixi-style tables ``[workspace]`` (or legacy ``[project]``),
``[dependencies]``, ``[pypi-dependencies]``, ``[feature.*]``,
``[target.*]`` and ``[environments]``.  Only what the lock engine needs
is read; tasks, activation and system requirements are ignored.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import tomlkit

from .exceptions import ManifestParseError
from .models import (
    Channel,
    Environment,
    Feature,
    MatchSpec,
    Project,
    PyPIDependency,
)

if TYPE_CHECKING:
    from typing import Any


def _parse_channels(raw: list[Any]) -> list[Channel]:
    """Parse a channels list, handling both strings and dicts."""
    channels: list[Channel] = []
    for item in raw:
        if isinstance(item, str):
            channels.append(Channel(str(item)))
        elif isinstance(item, dict):
            channels.append(Channel(str(item["channel"])))
    return channels


def _parse_conda_deps(raw: dict[str, Any]) -> dict[str, MatchSpec]:
    """Parse conda dependency specs into MatchSpec objects."""
    deps: dict[str, MatchSpec] = {}
    for name, spec in raw.items():
        name = str(name)
        if isinstance(spec, str):
            deps[name] = MatchSpec(f"{name} {spec}".strip())
        elif isinstance(spec, dict):
            parts = [name]
            version = spec.get("version", "")
            build = spec.get("build", "")
            if version:
                parts.append(str(version))
            if build:
                parts.append(str(build))
            channel = spec.get("channel")
            spec_str = " ".join(parts)
            if channel:
                spec_str = f"{channel}::{spec_str}"
            deps[name] = MatchSpec(spec_str)
        else:
            deps[name] = MatchSpec(f"{name} {spec}")
    return deps


def _parse_pypi_deps(raw: dict[str, Any]) -> dict[str, PyPIDependency]:
    """Parse PyPI dependency specs."""
    deps: dict[str, PyPIDependency] = {}
    for name, spec in raw.items():
        name = str(name)
        if isinstance(spec, str):
            version = "" if str(spec) == "*" else str(spec)
            deps[name] = PyPIDependency(name=name, spec=version)
        elif isinstance(spec, dict):
            version = str(spec.get("version", ""))
            deps[name] = PyPIDependency(
                name=name,
                spec="" if version == "*" else version,
                extras=tuple(str(extra) for extra in spec.get("extras", [])),
                editable=bool(spec.get("editable", False)),
            )
        else:
            deps[name] = PyPIDependency(name=name, spec=str(spec))
    return deps


def _parse_environment(name: str, raw: Any) -> Environment:
    """Parse a single environment entry.

    Environments can be specified as:
    - A list of feature names: ``env = ["feat1", "feat2"]``
    - A dict with keys: ``env = {features = [...], solve-group = "..."}``
    """
    if isinstance(raw, list):
        return Environment(name=name, features=[str(f) for f in raw])
    if isinstance(raw, dict):
        solve_group = raw.get("solve-group")
        return Environment(
            name=name,
            features=[str(f) for f in raw.get("features", [])],
            solve_group=str(solve_group) if solve_group is not None else None,
            no_default_feature=bool(raw.get("no-default-feature", False)),
        )
    return Environment(name=name)


def _parse_target_overrides(target_data: dict[str, Any], feature: Feature) -> None:
    """Parse ``[target.<platform>]`` dep overrides into a feature."""
    for platform, tdata in target_data.items():
        conda = _parse_conda_deps(tdata.get("dependencies", {}))
        if conda:
            feature.target_conda_dependencies[str(platform)] = conda

        pypi = _parse_pypi_deps(tdata.get("pypi-dependencies", {}))
        if pypi:
            feature.target_pypi_dependencies[str(platform)] = pypi


def _parse_feature(name: str, data: dict[str, Any]) -> Feature:
    feature = Feature(name=name)
    feature.conda_dependencies = _parse_conda_deps(data.get("dependencies", {}))
    feature.pypi_dependencies = _parse_pypi_deps(data.get("pypi-dependencies", {}))
    feature.channels = _parse_channels(data.get("channels", []))
    feature.platforms = [str(p) for p in data.get("platforms", [])]
    _parse_target_overrides(data.get("target", {}), feature)
    return feature


def parse_manifest_text(text: str, path: str | Path = "pixi.toml") -> Project:
    """Parse manifest *text*; *path* is used for messages and the root."""
    path = Path(path)
    try:
        data = tomlkit.loads(text).unwrap()
    except Exception as exc:
        raise ManifestParseError(path, str(exc)) from exc

    # workspace table (pixi v0.23+) or legacy project table
    ws = data.get("workspace", data.get("project", {}))
    if not ws:
        raise ManifestParseError(path, "No [workspace] or [project] table found")

    features = {Feature.DEFAULT_NAME: _parse_feature(Feature.DEFAULT_NAME, data)}
    for feat_name, feat_data in data.get("feature", {}).items():
        features[feat_name] = _parse_feature(feat_name, feat_data)

    environments = {
        env_name: _parse_environment(env_name, env_val)
        for env_name, env_val in data.get("environments", {}).items()
    }

    try:
        return Project(
            name=ws.get("name"),
            version=ws.get("version"),
            description=ws.get("description"),
            channels=_parse_channels(ws.get("channels", [])),
            platforms=[str(p) for p in ws.get("platforms", [])],
            features=features,
            environments=environments,
            root=str(path.parent),
            manifest_path=str(path),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ManifestParseError(path, str(exc)) from exc


def parse_manifest(path: str | Path) -> Project:
    """Read and parse the manifest at *path*."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestParseError(path, str(exc)) from exc
    return parse_manifest_text(text, path)
