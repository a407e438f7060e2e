"""Session registry: one stable session per unordered user/agent pair.

The session id is derived from the canonical pair, so every worker computes
the same id for the same two participants and the storage layer only has to
insert-if-absent.
"""

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

from npc_chat.database import get_connection, immediate_transaction
from npc_chat.domain import AGENT, USER, Participant, Session, now_ms
from npc_chat.errors import StorageError, system_error
from npc_chat.validation import validate_participant_id, validate_participants

logger = logging.getLogger(__name__)

SESSION_ERROR_MESSAGE = "Failed to get or create the session, please try again later"


def session_key(pair: tuple[Participant, Participant]) -> str:
    """Canonical key of an already ordered (user, agent) pair."""
    return "|".join(f"{p.kind}:{p.id}" for p in pair)


def derive_session_id(key: str) -> str:
    return "session_" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:24]


class SessionRepository(ABC):
    """Storage of session records."""

    @abstractmethod
    def get_or_create(self, session: Session, key: str) -> Session:
        """Insert ``session`` unless its id exists; return the stored record."""

    @abstractmethod
    def get(self, session_id: str) -> Session | None: ...

    @abstractmethod
    def list_by_user(self, user_id: str) -> list[Session]: ...

    @abstractmethod
    def list_by_agent(self, agent_id: str) -> list[Session]: ...

    @abstractmethod
    def touch(self, session_id: str, timestamp: int) -> None:
        """Move ``last_active_at`` forward to ``timestamp``; never backwards."""


class InMemorySessionRepository(SessionRepository):
    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def get_or_create(self, session: Session, key: str) -> Session:
        with self._lock:
            return replace(self._sessions.setdefault(session.session_id, session))

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def _matching(self, kind: str, participant_id: str) -> list[Session]:
        with self._lock:
            sessions = [replace(s) for s in self._sessions.values() if s.has_participant(kind, participant_id)]
        return sorted(sessions, key=lambda s: s.last_active_at, reverse=True)

    def list_by_user(self, user_id: str) -> list[Session]:
        return self._matching(USER, user_id)

    def list_by_agent(self, agent_id: str) -> list[Session]:
        return self._matching(AGENT, agent_id)

    def touch(self, session_id: str, timestamp: int) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session and timestamp > session.last_active_at:
                session.last_active_at = timestamp


def _row_to_session(row) -> Session:
    return Session(
        session_id=row["session_id"],
        participants=(Participant(USER, row["user_id"]), Participant(AGENT, row["agent_id"])),
        created_at=row["created_at"],
        last_active_at=row["last_active_at"],
    )


class SqliteSessionRepository(SessionRepository):
    def __init__(self, path: Path | str | None = None):
        self.path = path

    def get_or_create(self, session: Session, key: str) -> Session:
        with get_connection(self.path) as conn, immediate_transaction(conn):
            conn.execute(
                """
                INSERT OR IGNORE INTO sessions (
                    session_id, session_key, user_id, agent_id, created_at, last_active_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session.session_id,
                    key,
                    session.user_id,
                    session.agent_id,
                    session.created_at,
                    session.last_active_at,
                ),
            )
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session.session_id,)
            ).fetchone()
        return _row_to_session(row)

    def get(self, session_id: str) -> Session | None:
        with get_connection(self.path) as conn:
            row = conn.execute("SELECT * FROM sessions WHERE session_id = ?", (session_id,)).fetchone()
        return _row_to_session(row) if row else None

    def list_by_user(self, user_id: str) -> list[Session]:
        with get_connection(self.path) as conn:
            rows = conn.execute(
                "SELECT * FROM sessions WHERE user_id = ? ORDER BY last_active_at DESC",
                (user_id,),
            ).fetchall()
        return [_row_to_session(row) for row in rows]

    def list_by_agent(self, agent_id: str) -> list[Session]:
        with get_connection(self.path) as conn:
            rows = conn.execute(
                "SELECT * FROM sessions WHERE agent_id = ? ORDER BY last_active_at DESC",
                (agent_id,),
            ).fetchall()
        return [_row_to_session(row) for row in rows]

    def touch(self, session_id: str, timestamp: int) -> None:
        with get_connection(self.path) as conn:
            conn.execute(
                "UPDATE sessions SET last_active_at = MAX(last_active_at, ?) WHERE session_id = ?",
                (timestamp, session_id),
            )
            conn.commit()


class SessionRegistry:
    """Get-or-create and lookup of sessions by participant pair."""

    def __init__(self, repository: SessionRepository, clock: Callable[[], int] = now_ms):
        self.repository = repository
        self._clock = clock

    def get_or_create_session(self, participants) -> Session:
        pair = validate_participants(participants)
        key = session_key(pair)
        now = self._clock()
        candidate = Session(
            session_id=derive_session_id(key),
            participants=pair,
            created_at=now,
            last_active_at=now,
        )
        try:
            session = self.repository.get_or_create(candidate, key)
        except StorageError as e:
            logger.error(f"[REGISTRY] get_or_create failed for {key}: {e}")
            raise system_error(SESSION_ERROR_MESSAGE) from e
        logger.debug(f"[REGISTRY] Resolved {session.session_id} for {key}")
        return session

    def find_session_by_participants(self, participants) -> Session | None:
        pair = validate_participants(participants)
        return self.get_session(derive_session_id(session_key(pair)))

    def get_session(self, session_id: str) -> Session | None:
        try:
            return self.repository.get(session_id)
        except StorageError as e:
            logger.error(f"[REGISTRY] Lookup of {session_id} failed: {e}")
            raise system_error() from e

    def get_sessions_by_user(self, user_id: str) -> list[Session]:
        user_id = validate_participant_id(user_id, "userId")
        try:
            return self.repository.list_by_user(user_id)
        except StorageError as e:
            logger.error(f"[REGISTRY] Listing sessions of user {user_id} failed: {e}")
            raise system_error() from e

    def get_sessions_by_agent(self, agent_id: str) -> list[Session]:
        agent_id = validate_participant_id(agent_id, "agentId")
        try:
            return self.repository.list_by_agent(agent_id)
        except StorageError as e:
            logger.error(f"[REGISTRY] Listing sessions of agent {agent_id} failed: {e}")
            raise system_error() from e

    def update_session_activity(self, session_id: str, timestamp: int | None = None) -> None:
        try:
            self.repository.touch(session_id, timestamp or self._clock())
        except StorageError as e:
            logger.error(f"[REGISTRY] Activity update of {session_id} failed: {e}")
            raise system_error() from e
