"""
live.py: live view binder.

Views subscribe to a topic and receive an immutable snapshot every time the
underlying data changes. The aggregation engine is a pure function, so a view
re-derives its figures by calling it on each snapshot; nothing mutable is
shared between the publisher and the callback.

Topics:
  project:<project_id>          ProjectSnapshot (project + expenses, newest first)
  notifications:<user_id>       NotificationsSnapshot (newest first)

No Flask imports and no database access. Routes build snapshots through the
services after a successful commit and hand them to ChangeFeed.publish().
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)


def project_topic(project_id: str) -> str:
    return f"project:{project_id}"


def notifications_topic(user_id: str) -> str:
    return f"notifications:{user_id}"


def _freeze(row: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(row))


# ── Snapshots ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProjectSnapshot:
    """State of one project after a change. `project` is None once deleted."""

    project_id: str
    project: Mapping[str, Any] | None
    expenses: tuple[Mapping[str, Any], ...] = ()

    @classmethod
    def build(cls, project_id: str, project: dict | None, expenses: list[dict]) -> "ProjectSnapshot":
        return cls(
            project_id=project_id,
            project=_freeze(project) if project is not None else None,
            expenses=tuple(_freeze(e) for e in expenses),
        )

    @property
    def deleted(self) -> bool:
        return self.project is None


@dataclass(frozen=True)
class NotificationsSnapshot:
    """A recipient's full notification list, newest first."""

    recipient_id: str
    notifications: tuple[Mapping[str, Any], ...] = ()

    @classmethod
    def build(cls, recipient_id: str, notifications: list[dict]) -> "NotificationsSnapshot":
        return cls(
            recipient_id=recipient_id,
            notifications=tuple(_freeze(n) for n in notifications),
        )

    @property
    def unread_count(self) -> int:
        return len(self.notifications)


# ── Subscriptions ──────────────────────────────────────────────────────────

@dataclass(eq=False)
class Subscription:
    """Cancellation handle returned by ChangeFeed.subscribe()."""

    feed: "ChangeFeed"
    topic: str
    token: int
    _active: bool = field(default=True, repr=False)

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stops delivery. Safe to call more than once."""
        if self._active:
            self._active = False
            self.feed._remove(self.topic, self.token)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()


class ChangeFeed:
    """Thread-safe topic based publish/subscribe hub."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, dict[int, Callable[[Any], None]]] = {}
        self._counter = itertools.count(1)

    def subscribe(self, topic: str, callback: Callable[[Any], None]) -> Subscription:
        with self._lock:
            token = next(self._counter)
            self._subscribers.setdefault(topic, {})[token] = callback
        return Subscription(feed=self, topic=topic, token=token)

    def has_subscribers(self, topic: str) -> bool:
        with self._lock:
            return bool(self._subscribers.get(topic))

    def publish(self, topic: str, snapshot: Any) -> int:
        """
        Delivers `snapshot` to every current subscriber of `topic`.

        Callbacks run synchronously on the publishing thread. A failing
        callback is logged and does not prevent delivery to the others.
        Returns the number of callbacks invoked.
        """
        with self._lock:
            callbacks = list(self._subscribers.get(topic, {}).values())

        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Live subscriber for %s failed", topic)
        return len(callbacks)

    def _remove(self, topic: str, token: int) -> None:
        with self._lock:
            callbacks = self._subscribers.get(topic)
            if callbacks is None:
                return
            callbacks.pop(token, None)
            if not callbacks:
                del self._subscribers[topic]


# ── Notification alerts ────────────────────────────────────────────────────

class NotificationAlertTracker:
    """
    Decides when the newest notification should raise a transient alert.

    The newest notification (by created_at; ties broken by list order) alerts
    exactly once: the first time a snapshot containing it is observed.
    An empty list never alerts.
    """

    def __init__(self) -> None:
        self._last_seen_id: str | None = None

    def observe(self, snapshot: NotificationsSnapshot) -> Mapping[str, Any] | None:
        if not snapshot.notifications:
            return None

        newest = max(
            snapshot.notifications,
            key=lambda n: n.get("created_at") or "",
        )
        if newest["id"] == self._last_seen_id:
            return None

        self._last_seen_id = newest["id"]
        return newest
