"""Append-only event log keyed by session.

Appends are serialized per session. Each event gets a per-session ``seq``
and a timestamp that never goes backwards within its session, so events are
totally ordered by ``(timestamp, seq)`` and "after" reads are a plain
greater-than on ``seq``.
"""

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from npc_chat.database import get_connection, immediate_transaction
from npc_chat.domain import Event, EventDraft, now_ms

logger = logging.getLogger(__name__)


class UnknownEventError(LookupError):
    """The read marker is not an event of the requested session."""


def generate_event_id(timestamp: int) -> str:
    return f"event_{timestamp}_{secrets.token_hex(4)}"


class EventStore(ABC):
    """Durable, ordered, append-only storage of session events."""

    @abstractmethod
    def append(self, draft: EventDraft) -> Event:
        """Store a new event and return it with its id, seq and timestamp."""

    @abstractmethod
    def read_since(self, session_id: str, after_id: str | None = None) -> list[Event]:
        """Events strictly after ``after_id`` in ascending order (all events if None)."""

    @abstractmethod
    def read_all(self, session_id: str) -> list[Event]:
        """Every event of the session in ascending order."""

    @abstractmethod
    def read_recent(self, session_id: str, limit: int) -> list[Event]:
        """The last ``limit`` events of the session in ascending order."""

    @abstractmethod
    def get_event(self, event_id: str) -> Event | None:
        """Look up a single event by id."""


class InMemoryEventStore(EventStore):
    """Event store held in process memory; used by tests and local runs."""

    def __init__(self, clock: Callable[[], int] = now_ms):
        self._clock = clock
        self._events: dict[str, list[Event]] = {}
        self._by_id: dict[str, Event] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _session_lock(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(session_id, threading.Lock())

    def append(self, draft: EventDraft) -> Event:
        with self._session_lock(draft.session_id):
            timeline = self._events.setdefault(draft.session_id, [])
            last = timeline[-1] if timeline else None
            timestamp = max(self._clock(), last.timestamp) if last else self._clock()
            event = Event(
                id=generate_event_id(timestamp),
                session_id=draft.session_id,
                seq=last.seq + 1 if last else 1,
                from_type=draft.from_type,
                to_type=draft.to_type,
                content=draft.content,
                timestamp=timestamp,
                status=draft.status,
                error_code=draft.error_code,
            )
            timeline.append(event)
            self._by_id[event.id] = event
        return event

    def _snapshot(self, session_id: str) -> list[Event]:
        with self._session_lock(session_id):
            return list(self._events.get(session_id, []))

    def read_since(self, session_id: str, after_id: str | None = None) -> list[Event]:
        timeline = self._snapshot(session_id)
        if after_id is None:
            return timeline
        marker = self._by_id.get(after_id)
        if marker is None or marker.session_id != session_id:
            raise UnknownEventError(after_id)
        # seq starts at 1, so the marker sits at index seq - 1
        return timeline[marker.seq:]

    def read_all(self, session_id: str) -> list[Event]:
        return self._snapshot(session_id)

    def read_recent(self, session_id: str, limit: int) -> list[Event]:
        if limit <= 0:
            return []
        return self._snapshot(session_id)[-limit:]

    def get_event(self, event_id: str) -> Event | None:
        return self._by_id.get(event_id)


def _row_to_event(row) -> Event:
    return Event(
        id=row["id"],
        session_id=row["session_id"],
        seq=row["seq"],
        from_type=row["from_type"],
        to_type=row["to_type"],
        content=row["content"],
        timestamp=row["timestamp"],
        status=row["status"],
        error_code=row["error_code"],
    )


class SqliteEventStore(EventStore):
    """Event store backed by the ``events`` table."""

    def __init__(self, path: Path | str | None = None, clock: Callable[[], int] = now_ms):
        self.path = path
        self._clock = clock

    def append(self, draft: EventDraft) -> Event:
        with get_connection(self.path) as conn, immediate_transaction(conn):
            last = conn.execute(
                "SELECT seq, timestamp FROM events WHERE session_id = ? ORDER BY seq DESC LIMIT 1",
                (draft.session_id,),
            ).fetchone()
            now = self._clock()
            timestamp = max(now, last["timestamp"]) if last else now
            event = Event(
                id=generate_event_id(timestamp),
                session_id=draft.session_id,
                seq=last["seq"] + 1 if last else 1,
                from_type=draft.from_type,
                to_type=draft.to_type,
                content=draft.content,
                timestamp=timestamp,
                status=draft.status,
                error_code=draft.error_code,
            )
            conn.execute(
                """
                INSERT INTO events (
                    id, session_id, seq, from_type, to_type, content, timestamp, status, error_code
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.session_id,
                    event.seq,
                    event.from_type,
                    event.to_type,
                    event.content,
                    event.timestamp,
                    event.status,
                    event.error_code,
                ),
            )
        logger.debug(f"[STORE] Appended {event.id} (seq {event.seq}) to {event.session_id}")
        return event

    def read_since(self, session_id: str, after_id: str | None = None) -> list[Event]:
        if after_id is None:
            return self.read_all(session_id)
        with get_connection(self.path) as conn:
            marker = conn.execute(
                "SELECT seq FROM events WHERE id = ? AND session_id = ?",
                (after_id, session_id),
            ).fetchone()
            if marker is None:
                raise UnknownEventError(after_id)
            rows = conn.execute(
                "SELECT * FROM events WHERE session_id = ? AND seq > ? ORDER BY timestamp, seq",
                (session_id, marker["seq"]),
            ).fetchall()
        return [_row_to_event(row) for row in rows]

    def read_all(self, session_id: str) -> list[Event]:
        with get_connection(self.path) as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE session_id = ? ORDER BY timestamp, seq",
                (session_id,),
            ).fetchall()
        return [_row_to_event(row) for row in rows]

    def read_recent(self, session_id: str, limit: int) -> list[Event]:
        if limit <= 0:
            return []
        with get_connection(self.path) as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE session_id = ? ORDER BY seq DESC LIMIT ?",
                (session_id, limit),
            ).fetchall()
        return [_row_to_event(row) for row in reversed(rows)]

    def get_event(self, event_id: str) -> Event | None:
        with get_connection(self.path) as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        return _row_to_event(row) if row else None
