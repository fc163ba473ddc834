"""Build status broadcasting for the Stagehand dev server.

The broadcaster holds the single current BuildStatus and fans messages out to
one Subscriber per connected browser tab. Publishing never blocks: a
subscriber whose queue is full simply misses the message.

Key classes:
- BuildStatus: Immutable status value with its wire payload.
- Subscriber: Bounded per-connection message queue.
- StatusBroadcaster: Current status plus the subscriber set.
"""

from __future__ import annotations

import json
import queue
import threading
from dataclasses import dataclass

BUILDING = "building"
SUCCESS = "success"
ERROR = "error"

CONNECTED_MESSAGE = "connected"
RELOAD_MESSAGE = "reload"
STATUS_PREFIX = "status:"


class SubscriptionClosed(Exception):
    """Raised by Subscriber.next_message once the subscriber is closed."""


@dataclass(frozen=True)
class BuildStatus:
    """The state of the most recent build.

    Attributes:
        status: One of ``building``, ``success`` or ``error``.
        message: Error text, or a short note.
        warning: A standing warning (for example a missing license).
    """

    status: str
    message: str = ""
    warning: str = ""

    @classmethod
    def building(cls, warning: str = "") -> BuildStatus:
        return cls(BUILDING, warning=warning)

    @classmethod
    def success(cls, message: str = "", warning: str = "") -> BuildStatus:
        return cls(SUCCESS, message, warning)

    @classmethod
    def error(cls, message: str, warning: str = "") -> BuildStatus:
        return cls(ERROR, message, warning)

    def to_dict(self) -> dict[str, str]:
        data = {"status": self.status}
        if self.message:
            data["message"] = self.message
        if self.warning:
            data["license_warning"] = self.warning
        return data

    def payload(self) -> str:
        """Compact JSON as sent to browsers."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def message_text(self) -> str:
        return f"{STATUS_PREFIX}{self.payload()}"


_CLOSED = object()


class Subscriber:
    """Message queue for one connection.

    Args:
        maxsize: Messages buffered before new ones are dropped.
    """

    def __init__(self, maxsize: int = 16):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, message: str) -> bool:
        """Queue ``message`` without blocking. Returns False if it was dropped."""
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            return False
        return True

    def next_message(self, timeout: float | None = None) -> str | None:
        """Block for the next message.

        Returns:
            The message, or None when ``timeout`` elapsed first.

        Raises:
            SubscriptionClosed: The subscriber was closed.
        """
        if self._closed.is_set() and self._queue.empty():
            raise SubscriptionClosed()
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            if self._closed.is_set():
                raise SubscriptionClosed() from None
            return None
        if item is _CLOSED:
            raise SubscriptionClosed()
        return item

    def close(self) -> None:
        """Close the queue and wake any waiting reader."""
        if self._closed.is_set():
            return
        self._closed.set()
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass


class StatusBroadcaster:
    """Current build status and the set of subscribers.

    Status is replaced as a whole under a lock, so readers never see a
    half-updated value.
    """

    def __init__(self, initial: BuildStatus | None = None):
        self._lock = threading.Lock()
        self._status = initial or BuildStatus.building()
        self._subscribers: set[Subscriber] = set()
        self._closed = False

    @property
    def status(self) -> BuildStatus:
        with self._lock:
            return self._status

    def publish(self, status: BuildStatus) -> None:
        """Store ``status`` and send it to every subscriber."""
        with self._lock:
            self._status = status
            subscribers = list(self._subscribers)
        message = status.message_text()
        for subscriber in subscribers:
            subscriber.offer(message)

    def notify_reload(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            subscriber.offer(RELOAD_MESSAGE)

    def subscribe(self) -> Subscriber:
        """Register a subscriber; its first message is the current status.

        After shutdown the returned subscriber is already closed.
        """
        subscriber = Subscriber()
        with self._lock:
            if self._closed:
                subscriber.close()
                return subscriber
            subscriber.offer(self._status.message_text())
            self._subscribers.add(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.discard(subscriber)
        subscriber.close()

    def shutdown(self) -> None:
        """Close every subscriber so stream handlers return immediately."""
        with self._lock:
            self._closed = True
            subscribers = list(self._subscribers)
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
