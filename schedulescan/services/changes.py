"""Row-change notifications for the documents and events tables.

Writes go through SQLModel sessions; the hooks installed here record which
tables a flush touched and publish one notification per table once the
transaction commits. Rolled-back work never notifies. Notifications carry no
row content, subscribers are expected to re-query.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from threading import Lock
from typing import AsyncIterator, Callable, Dict, Iterable

from sqlalchemy import event
from sqlmodel import Session

LOGGER = logging.getLogger(__name__)

WATCHED_TABLES = frozenset({"documents", "events"})
_PENDING_KEY = "schedulescan.changed_tables"


@dataclass(frozen=True)
class ChangeNotification:
    table: str
    sequence: int

    def to_dict(self) -> dict[str, object]:
        return {"table": self.table, "sequence": self.sequence}


Subscriber = Callable[[ChangeNotification], None]


class ChangeFeed:
    """Thread-safe fan-out of change notifications to subscribers."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._subscribers: Dict[int, Subscriber] = {}
        self._tokens = itertools.count(1)
        self._sequence = 0

    def subscribe(self, callback: Subscriber) -> int:
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, tables: Iterable[str]) -> list[ChangeNotification]:
        notifications: list[ChangeNotification] = []
        with self._lock:
            for table in sorted(set(tables)):
                self._sequence += 1
                notifications.append(ChangeNotification(table, self._sequence))
            subscribers = list(self._subscribers.values())

        for notification in notifications:
            for callback in subscribers:
                try:
                    callback(notification)
                except Exception:
                    LOGGER.exception(
                        "Change subscriber failed for table=%s", notification.table
                    )
        return notifications

    async def stream(
        self, heartbeat: float | None = None
    ) -> AsyncIterator[ChangeNotification | None]:
        """Yield notifications on the running event loop until closed.

        With ``heartbeat`` set, ``None`` is yielded whenever that many seconds
        pass without a notification.
        """

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[ChangeNotification] = asyncio.Queue()

        def _enqueue(notification: ChangeNotification) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, notification)

        token = self.subscribe(_enqueue)
        try:
            while True:
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    yield None
        finally:
            self.unsubscribe(token)


change_feed = ChangeFeed()
_hooks_installed = False


def _record_flush(session: Session, flush_context) -> None:  # noqa: ANN001
    pending = session.info.setdefault(_PENDING_KEY, set())
    for obj in itertools.chain(session.new, session.dirty, session.deleted):
        table = getattr(obj, "__tablename__", None)
        if table in WATCHED_TABLES:
            pending.add(table)


def mark_changed(session: Session, *tables: str) -> None:
    """Record writes made outside the unit of work (bulk UPDATE/DELETE)."""

    pending = session.info.setdefault(_PENDING_KEY, set())
    pending.update(table for table in tables if table in WATCHED_TABLES)


def _publish_commit(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if pending:
        change_feed.publish(pending)


def _discard_rollback(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)


def install_session_hooks() -> None:
    """Attach commit/rollback listeners to SQLModel sessions (idempotent)."""

    global _hooks_installed
    if _hooks_installed:
        return
    event.listen(Session, "after_flush", _record_flush)
    event.listen(Session, "after_commit", _publish_commit)
    event.listen(Session, "after_rollback", _discard_rollback)
    _hooks_installed = True


__all__ = [
    "ChangeFeed",
    "ChangeNotification",
    "WATCHED_TABLES",
    "change_feed",
    "install_session_hooks",
    "mark_changed",
]
