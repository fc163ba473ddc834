"""Change-driven rebuilds for the Stagehand dev server.

Filesystem events flow from a watchdog observer, through _ChangeHandler
(filtering) into RebuildCoordinator (debouncing and single-flight).

The coordinator is a single thread blocked on a queue. Each wait ends at the
earliest of: a new event, the debounce deadline, or stop. A new event pushes
the deadline back; when it passes, one rebuild runs. Events that arrive while
a rebuild is running only set a pending flag, and a pending flag schedules
exactly one follow-up rebuild as soon as the current one finishes.

Key classes:
- WatchEvent: A filtered filesystem change.
- RebuildCoordinator: Debounced, single-flight rebuild loop.
- _ChangeHandler: watchdog handler feeding the coordinator.
"""

from __future__ import annotations

import os
import queue
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler

DEBOUNCE_SECONDS = 0.3
IGNORED_SUFFIXES = (".swp", ".swo", ".tmp")
IGNORED_PARTS = ("node_modules", ".git")
TRIGGER_EVENTS = ("created", "modified", "deleted", "moved")

RebuildFn = Callable[[threading.Event], None]

_STOP = object()
_NOW = object()
_CHANGE = object()


@dataclass(frozen=True)
class WatchEvent:
    path: Path
    kind: str


def should_ignore(path: Path, ignored_dirs: Iterable[Path] = ()) -> bool:
    """True for paths that must never trigger a rebuild.

    That covers anything under ``ignored_dirs`` (output, staging and cache
    directories), hidden files, editor backups ending in ``~`` and swap or
    temp files.
    """
    name = path.name
    if name.startswith(".") or name.endswith("~") or name.endswith(IGNORED_SUFFIXES):
        return True
    if any(part in IGNORED_PARTS for part in path.parts):
        return True
    for ignored in ignored_dirs:
        if path == ignored:
            return True
        try:
            path.relative_to(ignored)
            return True
        except ValueError:
            continue
    return False


class RebuildCoordinator:
    """Debounces change notifications and runs one rebuild at a time.

    Args:
        rebuild: Called on the coordinator thread with the stop event. It
            should check the event at safe points and return early once set.
        debounce: Quiet period, in seconds, before a rebuild starts.
        verbose: Print every accepted event.
    """

    def __init__(self, rebuild: RebuildFn, debounce: float = DEBOUNCE_SECONDS, verbose: bool = False):
        self._rebuild = rebuild
        self.debounce = debounce
        self.verbose = verbose
        self._events: queue.Queue = queue.Queue()
        self._stop = threading.Event()
        self._state_lock = threading.Lock()
        self._building = False
        self._pending = False
        self._thread: threading.Thread | None = None
        self.rebuilds = 0

    @property
    def building(self) -> bool:
        with self._state_lock:
            return self._building

    @property
    def pending(self) -> bool:
        with self._state_lock:
            return self._pending

    @property
    def stopping(self) -> threading.Event:
        return self._stop

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="stagehand-rebuild", daemon=True)
        self._thread.start()

    def notify(self, event: WatchEvent | None = None) -> None:
        """Record a change. Never blocks."""
        if self._stop.is_set():
            return
        if self.verbose and event is not None:
            print(f"  {event.kind}: {event.path}")
        with self._state_lock:
            if self._building:
                self._pending = True
                return
        self._events.put(_CHANGE)

    def request_rebuild(self, immediate: bool = True) -> None:
        """Ask for a rebuild, skipping the debounce window when ``immediate``."""
        if not immediate:
            self.notify()
            return
        if self._stop.is_set():
            return
        with self._state_lock:
            if self._building:
                self._pending = True
                return
        self._events.put(_NOW)

    def stop(self, timeout: float | None = 1.0) -> bool:
        """Stop the loop and wait up to ``timeout`` seconds for it.

        Returns:
            True if the thread finished, False if a rebuild is still running.
        """
        self._stop.set()
        self._events.put(_STOP)
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        deadline: float | None = None
        while not self._stop.is_set():
            timeout = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            try:
                item = self._events.get(timeout=timeout)
            except queue.Empty:
                item = None
            if item is _STOP or self._stop.is_set():
                return
            if item is _CHANGE:
                deadline = time.monotonic() + self.debounce
                continue
            deadline = None
            self._execute()

    def _try_begin(self) -> bool:
        with self._state_lock:
            if self._building:
                return False
            self._building = True
            self._pending = False
            return True

    def _execute(self) -> None:
        if not self._try_begin():
            return
        try:
            self._rebuild(self._stop)
        except Exception as exc:
            print(f"Rebuild failed: {exc}")
        finally:
            with self._state_lock:
                self._building = False
                follow_up = self._pending
                self._pending = False
                self.rebuilds += 1
        if follow_up and not self._stop.is_set():
            self._events.put(_NOW)


class _ChangeHandler(FileSystemEventHandler):
    """Turns watchdog events into coordinator notifications.

    Attributes:
        coordinator: Receives accepted events.
        ignored_dirs: Directories whose events are dropped.
        observer: Observer used to watch newly created directories.
        recursive_roots: Directories already watched recursively.
    """

    def __init__(
        self,
        coordinator: RebuildCoordinator,
        ignored_dirs: Iterable[Path],
        observer=None,
        recursive_roots: Iterable[Path] = (),
    ):
        super().__init__()
        self.coordinator = coordinator
        self.ignored_dirs = [Path(p) for p in ignored_dirs]
        self.observer = observer
        self.recursive_roots = [Path(p) for p in recursive_roots]

    def on_any_event(self, event: FileSystemEvent) -> None:
        try:
            self._handle(event)
        except Exception as exc:
            print(f"Watcher error: {exc}")

    def _handle(self, event: FileSystemEvent) -> None:
        if event.event_type not in TRIGGER_EVENTS:
            return
        if event.is_directory and event.event_type == "modified":
            return
        candidates = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            candidates.append(dest)
        paths = [Path(os.fsdecode(p)) for p in candidates]
        relevant = [p for p in paths if not should_ignore(p, self.ignored_dirs)]
        if not relevant:
            return
        target = relevant[-1]
        if event.is_directory and event.event_type in ("created", "moved"):
            self._watch_directory(target)
        self.coordinator.notify(WatchEvent(target, event.event_type))

    def _watch_directory(self, path: Path) -> None:
        if self.observer is None or not path.is_dir():
            return
        for root in self.recursive_roots:
            if path == root or root in path.parents:
                return
        self.observer.schedule(self, str(path), recursive=True)
        self.recursive_roots.append(path)
