"""Build cache for Stagehand.

Two tiers share one key space:

- In-memory entries live as long as the BuildCache (one Manager).
- External entries are JSON files under a configured directory. They survive
  across Managers and processes and are only removed by ``clean --all``.

Keys are plain strings. Plugins namespace their keys with a ``prefix:``
convention; ``BuildCache.scoped`` returns a view that applies it.
"""

from __future__ import annotations

import hashlib
import json
import shutil
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .config import SiteConfig


class BuildCache:
    """Thread-safe key/value store with an optional disk-backed tier.

    The default plugins only use the memory tier. The external tier is for
    plugins registered with ``register_plugin`` that fetch data too expensive
    to redo on every build.

    Args:
        external_dir: Directory for external entries. When None, ``set`` with
            ``external=True`` keeps the value in memory only.
    """

    def __init__(self, external_dir: Path | None = None):
        self._lock = threading.Lock()
        self._memory: dict[str, Any] = {}
        self._external_dir = Path(external_dir) if external_dir else None

    @property
    def external_dir(self) -> Path | None:
        return self._external_dir

    def get(self, key: str) -> tuple[Any, bool]:
        """Return ``(value, found)`` for ``key``.

        Memory is checked first, then the external tier. An external hit is
        promoted into memory.
        """
        with self._lock:
            if key in self._memory:
                return self._memory[key], True
        path = self._external_path(key)
        if path is None or not path.is_file():
            return None, False
        try:
            value = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None, False
        with self._lock:
            self._memory.setdefault(key, value)
        return value, True

    def set(self, key: str, value: Any, external: bool = False) -> None:
        """Store ``value``. External values must be JSON serialisable."""
        with self._lock:
            self._memory[key] = value
        if not external:
            return
        path = self._external_path(key)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.part")
        tmp.write_text(json.dumps(value), encoding="utf-8")
        tmp.replace(path)

    def delete(self, key: str) -> None:
        with self._lock:
            self._memory.pop(key, None)
        path = self._external_path(key)
        if path is not None and path.is_file():
            path.unlink()

    def clear(self) -> None:
        """Drop in-memory entries. External files are kept."""
        with self._lock:
            self._memory.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._memory)

    def __len__(self) -> int:
        with self._lock:
            return len(self._memory)

    def __contains__(self, key: str) -> bool:
        return self.get(key)[1]

    def scoped(self, prefix: str) -> ScopedCache:
        return ScopedCache(self, prefix)

    def _external_path(self, key: str) -> Path | None:
        if self._external_dir is None:
            return None
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._external_dir / f"{digest}.json"


class ScopedCache:
    """View of a BuildCache whose keys are prefixed with ``prefix:``."""

    def __init__(self, cache: BuildCache, prefix: str):
        self._cache = cache
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> tuple[Any, bool]:
        return self._cache.get(self._key(key))

    def set(self, key: str, value: Any, external: bool = False) -> None:
        self._cache.set(self._key(key), value, external=external)

    def delete(self, key: str) -> None:
        self._cache.delete(self._key(key))

    def keys(self) -> list[str]:
        start = f"{self.prefix}:"
        return [key[len(start):] for key in self._cache.keys() if key.startswith(start)]


def clean_build_dirs(config: SiteConfig, include_external: bool = False) -> list[Path]:
    """Remove build artifacts.

    The cheap tier removes the output directory and the cache directory. When
    an external cache directory lives inside the cache directory it is kept
    unless ``include_external`` is set, in which case every configured
    external directory is removed too.

    Args:
        config: Site configuration with resolved directories.
        include_external: Also purge external (expensive) cache directories.

    Returns:
        The paths that were removed.
    """
    removed: list[Path] = []
    external = [Path(p).resolve() for p in config.external_cache_dirs]

    output_dir = Path(config.output_dir).resolve()
    if output_dir.exists():
        shutil.rmtree(output_dir)
        removed.append(output_dir)

    cache_dir = Path(config.cache_dir).resolve()
    if cache_dir.exists():
        keep = [] if include_external else [p for p in external if _is_within(p, cache_dir)]
        if keep:
            for child in cache_dir.iterdir():
                resolved = child.resolve()
                if any(resolved == k or _is_within(k, resolved) for k in keep):
                    continue
                _remove(child)
                removed.append(resolved)
        else:
            shutil.rmtree(cache_dir)
            removed.append(cache_dir)

    if include_external:
        for path in external:
            if path.exists():
                _remove(path)
                removed.append(path)
    return removed


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return path != root
