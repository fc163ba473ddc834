"""Configuration loading for Stagehand.

Settings live in ``stagehand.yaml`` at the project root. Values are merged
over DEFAULT_CONFIG and parsed into a frozen SiteConfig; relative paths are
resolved against the project root so every later stage works with absolute
paths.

Key functions:
- load_config: Read and validate the config file.
- load_data: Read template globals from ``data/*.yaml``.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

CONFIG_FILENAME = "stagehand.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "title": "",
    "url": "",
    "description": "",
    "license": "",
    "content_dir": "site",
    "output_dir": "output",
    "templates_dir": "site/_layouts",
    "assets_dir": "assets",
    "data_dir": "data",
    "glob_patterns": ["**/*.md"],
    "cache_dir": ".stagehand",
    "external_cache_dirs": [".stagehand/external"],
    "concurrency": 4,
    "port": 4000,
    "host": "localhost",
    "fast_mode": False,
    "build_cache": {"enabled": True},
    "feeds": {"rss": True, "sitemap": True, "search_index": True},
}

_PATH_KEYS = ("content_dir", "output_dir", "templates_dir", "assets_dir", "data_dir", "cache_dir")


class ConfigError(Exception):
    """Raised when configuration is missing required values or is malformed."""


@dataclass(frozen=True)
class BuildCacheConfig:
    enabled: bool = True


@dataclass(frozen=True)
class FeedsConfig:
    rss: bool = True
    sitemap: bool = True
    search_index: bool = True


@dataclass(frozen=True)
class SiteConfig:
    """Resolved site configuration.

    Attributes:
        project_root: Absolute project directory.
        title: Site title used by layouts and feeds.
        url: Public base URL; feeds are skipped when empty.
        description: Site description used by feeds.
        license: License name. An empty value triggers a warning in ``serve``.
        content_dir: Directory scanned for content files.
        output_dir: Directory the site is written to.
        templates_dir: Directory holding Jinja2 layouts.
        assets_dir: Directory copied verbatim to ``output/assets``.
        data_dir: Directory of YAML files exposed to templates.
        glob_patterns: Patterns, relative to ``content_dir``, selecting content.
        cache_dir: Directory for the persisted build cache.
        external_cache_dirs: Directories holding expensive fetched data.
        concurrency: Worker count for per-post processing.
        port: Dev server port.
        host: Dev server bind address.
        fast_mode: Skip optional expensive plugins.
        build_cache: Settings for the build_cache plugin.
        feeds: Settings for the feeds plugin.
        extra: Unrecognised keys, left for third-party plugins.
    """

    project_root: Path
    title: str = ""
    url: str = ""
    description: str = ""
    license: str = ""
    content_dir: Path = Path("site")
    output_dir: Path = Path("output")
    templates_dir: Path = Path("site/_layouts")
    assets_dir: Path = Path("assets")
    data_dir: Path = Path("data")
    glob_patterns: tuple[str, ...] = ("**/*.md",)
    cache_dir: Path = Path(".stagehand")
    external_cache_dirs: tuple[Path, ...] = (Path(".stagehand/external"),)
    concurrency: int = 4
    port: int = 4000
    host: str = "localhost"
    fast_mode: bool = False
    build_cache: BuildCacheConfig = field(default_factory=BuildCacheConfig)
    feeds: FeedsConfig = field(default_factory=FeedsConfig)
    extra: Mapping[str, Any] = field(default_factory=dict)

    def with_overrides(self, **changes: Any) -> SiteConfig:
        """Return a copy with ``changes`` applied (paths resolved)."""
        for key in _PATH_KEYS:
            if key in changes and changes[key] is not None:
                changes[key] = _resolve(self.project_root, changes[key])
        return replace(self, **changes)

    @property
    def primary_external_dir(self) -> Path | None:
        return self.external_cache_dirs[0] if self.external_cache_dirs else None


def load_config(project_root: Path, config_path: Path | None = None) -> SiteConfig:
    """Load site configuration from stagehand.yaml.

    Args:
        project_root: Root directory of the project.
        config_path: Explicit config file. Must exist when given.

    Returns:
        SiteConfig with defaults applied and paths resolved.

    Raises:
        ConfigError: The file is unreadable, not a mapping, or holds values of
            the wrong type.
    """
    project_root = Path(project_root).resolve()
    explicit = config_path is not None
    path = Path(config_path) if explicit else project_root / CONFIG_FILENAME
    if explicit and not path.is_absolute():
        path = project_root / path
    raw = copy.deepcopy(DEFAULT_CONFIG)
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
        except OSError as exc:
            raise ConfigError(f"{path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"{path}: expected a mapping at the top level")
        for key in ("build_cache", "feeds"):
            if key in loaded and loaded[key] is not None and not isinstance(loaded[key], dict):
                raise ConfigError(f"{path}: '{key}' must be a mapping")
            raw[key].update(loaded.pop(key, None) or {})
        raw.update(loaded)
    elif explicit:
        raise ConfigError(f"config file not found: {path}")
    return parse_config(project_root, raw)


def parse_config(project_root: Path, raw: dict[str, Any]) -> SiteConfig:
    """Validate a merged config mapping and build a SiteConfig."""
    known = set(DEFAULT_CONFIG)
    extra = {k: v for k, v in raw.items() if k not in known}
    try:
        kwargs: dict[str, Any] = {
            "title": _str(raw, "title"),
            "url": _str(raw, "url"),
            "description": _str(raw, "description"),
            "license": _str(raw, "license"),
            "glob_patterns": tuple(_str_list(raw, "glob_patterns")),
            "external_cache_dirs": tuple(
                _resolve(project_root, p) for p in _str_list(raw, "external_cache_dirs")
            ),
            "concurrency": _int(raw, "concurrency"),
            "port": _int(raw, "port"),
            "host": _str(raw, "host"),
            "fast_mode": _bool(raw, "fast_mode"),
            "build_cache": BuildCacheConfig(enabled=_bool(raw["build_cache"], "enabled")),
            "feeds": FeedsConfig(
                rss=_bool(raw["feeds"], "rss"),
                sitemap=_bool(raw["feeds"], "sitemap"),
                search_index=_bool(raw["feeds"], "search_index"),
            ),
        }
        for key in _PATH_KEYS:
            kwargs[key] = _resolve(project_root, _str(raw, key))
    except (KeyError, TypeError) as exc:
        raise ConfigError(str(exc)) from exc
    if not kwargs["glob_patterns"]:
        raise ConfigError("glob_patterns must contain at least one pattern")
    if not 0 < kwargs["port"] < 65536:
        raise ConfigError(f"port out of range: {kwargs['port']}")
    return SiteConfig(project_root=project_root, extra=MappingProxyType(extra), **kwargs)


def load_data(data_dir: Path) -> dict[str, Any]:
    """Load site data from YAML files in the data directory.

    ``site.yaml`` is merged at the top level; any other file is exposed under
    its stem.

    Args:
        data_dir: Directory holding the YAML files.

    Returns:
        Dictionary containing merged data from all YAML files.
    """
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return data
    for path in sorted(data_dir.glob("*.yaml")):
        with open(path, encoding="utf-8") as f:
            try:
                payload = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
        if not isinstance(payload, dict):
            continue
        if path.name == "site.yaml":
            data.update(payload)
        else:
            data[path.stem] = payload
    return data


def _resolve(root: Path, value: str | Path) -> Path:
    path = Path(value)
    return path if path.is_absolute() else (root / path).resolve()


def _str(raw: Mapping[str, Any], key: str) -> str:
    value = raw[key]
    if value is None:
        return ""
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise TypeError(f"'{key}' must be a string, got {type(value).__name__}")
    return str(value)


def _str_list(raw: Mapping[str, Any], key: str) -> list[str]:
    value = raw[key]
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise TypeError(f"'{key}' must be a list of strings")
    return list(value)


def _int(raw: Mapping[str, Any], key: str) -> int:
    value = raw[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"'{key}' must be an integer, got {type(value).__name__}")
    return value


def _bool(raw: Mapping[str, Any], key: str) -> bool:
    value = raw.get(key, True)
    if not isinstance(value, bool):
        raise TypeError(f"'{key}' must be true or false, got {value!r}")
    return value
