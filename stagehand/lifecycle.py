"""Build lifecycle for Stagehand.

A build is a fixed sequence of stages. Plugins register callbacks (hooks)
keyed by stage, and the Manager runs every hook of a stage in registration
order before moving to the next stage.

Key classes:
- Stage: The ordered stages of a build.
- Plugin: Immutable name plus stage-to-hook mapping.
- Manager: Owns pipeline state and drives resumable stage execution.

Errors:
- StageError: A hook failed; the remaining stages of the call are skipped.
- HookWarning: Raised by a hook to record a non-fatal warning.
- PipelineError: The Manager was used incorrectly.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .cache import BuildCache

if TYPE_CHECKING:
    from .config import SiteConfig
    from .content import Post
    from .feeds import Feed


class Stage(Enum):
    """Build stages, listed in execution order."""

    CONFIGURE = "configure"
    VALIDATE = "validate"
    GLOB = "glob"
    LOAD = "load"
    TRANSFORM = "transform"
    RENDER = "render"
    COLLECT = "collect"
    WRITE = "write"
    CLEANUP = "cleanup"

    @property
    def index(self) -> int:
        return STAGE_ORDER.index(self)

    @classmethod
    def parse(cls, name: str | Stage) -> Stage:
        """Return the stage for a name such as ``"collect"``."""
        if isinstance(name, Stage):
            return name
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise PipelineError(f"invalid stage: {name}") from None

    def __str__(self) -> str:
        return self.value


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


def stages_up_to(stage: Stage) -> tuple[Stage, ...]:
    """Return every stage from the first up to and including ``stage``."""
    return STAGE_ORDER[: Stage.parse(stage).index + 1]


Hook = Callable[["Manager"], None]


class PipelineError(Exception):
    """Raised when the Manager is used out of order."""


class HookWarning(Exception):
    """Raised by a hook to report a problem that must not stop the build."""


class StageError(Exception):
    """A hook failed while running a stage.

    Attributes:
        stage: Stage that was running.
        plugin: Name of the plugin whose hook failed.
        cause: The original exception.
    """

    def __init__(self, stage: Stage, plugin: str, cause: BaseException):
        self.stage = stage
        self.plugin = plugin
        self.cause = cause
        super().__init__(f"stage {stage}: plugin {plugin!r}: {cause}")


@dataclass(frozen=True)
class BuildWarning:
    """A non-fatal problem recorded during a build."""

    stage: Stage | None
    plugin: str
    message: str

    def __str__(self) -> str:
        where = f"{self.stage} " if self.stage else ""
        return f"[warning] {where}plugin {self.plugin!r}: {self.message}"


@dataclass(frozen=True)
class Plugin:
    """A named set of stage hooks.

    Attributes:
        name: Unique plugin name.
        hooks: Read-only mapping of stage to callback.
    """

    name: str
    hooks: Mapping[Stage, Hook] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "hooks", MappingProxyType(dict(self.hooks)))

    @classmethod
    def create(cls, name: str, **hooks: Hook) -> Plugin:
        """Build a plugin from keyword hooks, e.g. ``create("x", write=fn)``."""
        return cls(name, {Stage.parse(key): fn for key, fn in hooks.items()})

    def hook_for(self, stage: Stage) -> Hook | None:
        return self.hooks.get(stage)


class Manager:
    """Drives the build lifecycle.

    A Manager owns the state of one build: configuration snapshot, discovered
    files, posts, feeds, warnings and a BuildCache. Stages mutate that state
    through the methods below. ``run_to`` is resumable: stages that already
    completed are skipped, so ``run_to(Stage.COLLECT)`` followed by
    ``run_to(Stage.CLEANUP)`` is equivalent to a single ``run()``.

    A Manager must not be driven from two threads at once. Accessors are safe
    to call from other threads between ``run_to`` calls.
    """

    DEFAULT_CONCURRENCY = 4

    def __init__(self, config: SiteConfig, cache: BuildCache | None = None):
        self._lock = threading.RLock()
        self._config = config
        self._cache = cache if cache is not None else BuildCache()
        self._plugins: list[Plugin] = []
        self._files: list[str] = []
        self._posts: list[Post] = []
        self._feeds: list[Feed] = []
        self._warnings: list[BuildWarning] = []
        self._stages_run: set[Stage] = set()
        self._current_stage: Stage | None = None
        self._concurrency = self.DEFAULT_CONCURRENCY

    # -- plugins -----------------------------------------------------------

    def register_plugins(self, *plugins: Plugin | Iterable[Plugin]) -> None:
        """Register plugins; hooks run in the order plugins are registered."""
        flat: list[Plugin] = []
        for item in plugins:
            if isinstance(item, Plugin):
                flat.append(item)
            else:
                flat.extend(item)
        with self._lock:
            if self._stages_run or self._current_stage is not None:
                raise PipelineError("plugins must be registered before the first stage runs")
            self._plugins.extend(flat)

    @property
    def plugins(self) -> tuple[Plugin, ...]:
        with self._lock:
            return tuple(self._plugins)

    # -- state accessors ---------------------------------------------------

    @property
    def config(self) -> SiteConfig:
        with self._lock:
            return self._config

    def set_config(self, config: SiteConfig) -> None:
        with self._lock:
            self._config = config

    @property
    def cache(self) -> BuildCache:
        return self._cache

    @property
    def files(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._files)

    def set_files(self, files: Iterable[str]) -> None:
        with self._lock:
            self._files = list(files)

    def add_file(self, file: str) -> None:
        with self._lock:
            self._files.append(file)

    @property
    def posts(self) -> tuple[Post, ...]:
        with self._lock:
            return tuple(self._posts)

    def set_posts(self, posts: Iterable[Post]) -> None:
        with self._lock:
            self._posts = list(posts)

    def add_post(self, post: Post) -> None:
        with self._lock:
            self._posts.append(post)

    @property
    def feeds(self) -> tuple[Feed, ...]:
        with self._lock:
            return tuple(self._feeds)

    def set_feeds(self, feeds: Iterable[Feed]) -> None:
        with self._lock:
            self._feeds = list(feeds)

    def add_feed(self, feed: Feed) -> None:
        with self._lock:
            self._feeds.append(feed)

    @property
    def warnings(self) -> tuple[BuildWarning, ...]:
        with self._lock:
            return tuple(self._warnings)

    def warn(self, plugin: str, message: str) -> None:
        """Record a non-fatal warning for the current stage."""
        with self._lock:
            self._warnings.append(BuildWarning(self._current_stage, plugin, message))

    @property
    def current_stage(self) -> Stage | None:
        with self._lock:
            return self._current_stage

    def has_run(self, stage: Stage) -> bool:
        with self._lock:
            return Stage.parse(stage) in self._stages_run

    @property
    def concurrency(self) -> int:
        with self._lock:
            return self._concurrency

    def set_concurrency(self, n: int) -> None:
        """Bound parallel per-post work; ``n <= 0`` means serial."""
        with self._lock:
            self._concurrency = max(int(n), 1)

    # -- execution ---------------------------------------------------------

    def run(self) -> None:
        """Run every stage."""
        self.run_to(Stage.CLEANUP)

    def run_to(self, stage: Stage | str) -> None:
        """Run every stage that has not completed yet, up to ``stage``.

        Raises:
            StageError: A hook failed. The failing stage is not marked as
                complete and later stages are not run. State changed before the
                failure is kept.
        """
        for current in stages_up_to(Stage.parse(stage)):
            if self.has_run(current):
                continue
            self._run_stage(current)

    def _run_stage(self, stage: Stage) -> None:
        with self._lock:
            self._current_stage = stage
            plugins = list(self._plugins)
        for plugin in plugins:
            hook = plugin.hook_for(stage)
            if hook is None:
                continue
            try:
                hook(self)
            except HookWarning as exc:
                self.warn(plugin.name, str(exc))
            except Exception as exc:
                raise StageError(stage, plugin.name, exc) from exc
        with self._lock:
            self._stages_run.add(stage)

    def reset(self) -> None:
        """Clear build state so every stage can run again."""
        with self._lock:
            self._files = []
            self._posts = []
            self._feeds = []
            self._warnings = []
            self._stages_run = set()
            self._current_stage = None
        self._cache.clear()

    # -- helpers for hooks -------------------------------------------------

    def process_posts(self, fn: Callable[[Post], Any]) -> None:
        """Apply ``fn`` to every post, at most ``concurrency`` at a time.

        Every post is attempted; failures are collected and reported together.

        Raises:
            RuntimeError: One or more posts failed.
        """
        posts = self.posts
        if not posts:
            return
        failures: list[tuple[Post, BaseException]] = []
        if self.concurrency <= 1:
            for post in posts:
                try:
                    fn(post)
                except Exception as exc:
                    failures.append((post, exc))
        else:
            with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
                futures = [(post, pool.submit(fn, post)) for post in posts]
                for post, future in futures:
                    exc = future.exception()
                    if exc is not None:
                        failures.append((post, exc))
        if failures:
            post, first = failures[0]
            raise RuntimeError(
                f"{len(failures)} post(s) failed to process; first error: {post.path}: {first}"
            ) from first
