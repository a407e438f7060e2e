"""Stateless read surfaces over the event store."""

import logging
from dataclasses import dataclass, field

from npc_chat.domain import AGENT, USER, Event, Participant, Session
from npc_chat.errors import StorageError, not_found, permission_denied, system_error
from npc_chat.event_store import EventStore, UnknownEventError
from npc_chat.session_registry import SessionRegistry
from npc_chat.validation import validate_event_id, validate_participant_id, validate_session_id

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    events: list[Event] = field(default_factory=list)

    @property
    def has_new(self) -> bool:
        return bool(self.events)

    def to_dict(self) -> dict:
        return {"hasNew": self.has_new, "events": [e.to_dict() for e in self.events]}


@dataclass
class History:
    session: Session | None = None
    events: list[Event] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "session": self.session.to_dict() if self.session else None,
            "events": [e.to_dict() for e in self.events],
        }


class PollReader:
    """Answers "what arrived after the last event I saw"; holds no per-client state."""

    def __init__(self, registry: SessionRegistry, store: EventStore):
        self.registry = registry
        self.store = store

    def check_new(self, session_id, last_event_id=None, user_id=None) -> PollResult:
        session_id = validate_session_id(session_id)
        if last_event_id is not None:
            last_event_id = validate_event_id(last_event_id)
        if user_id is not None:
            user_id = validate_participant_id(user_id, "userId")

        session = self.registry.get_session(session_id)
        if session is None:
            raise not_found(f"Session {session_id} does not exist")
        if user_id is not None and not session.has_participant(USER, user_id):
            raise permission_denied(f"User {user_id} is not a participant of {session_id}")

        try:
            events = self.store.read_since(session_id, last_event_id)
        except UnknownEventError as e:
            raise not_found(f"Event {last_event_id} does not exist in {session_id}") from e
        except StorageError as e:
            logger.error(f"[POLL] Reading {session_id} failed: {e}")
            raise system_error() from e
        return PollResult(events)


class HistoryReader:
    """Full transcript of a user/agent pair."""

    def __init__(self, registry: SessionRegistry, store: EventStore):
        self.registry = registry
        self.store = store

    def get_history(self, user_id, agent_id) -> History:
        user_id = validate_participant_id(user_id, "userId")
        agent_id = validate_participant_id(agent_id, "agentId")

        session = self.registry.find_session_by_participants(
            [Participant(USER, user_id), Participant(AGENT, agent_id)]
        )
        if session is None:
            return History()
        try:
            events = self.store.read_all(session.session_id)
        except StorageError as e:
            logger.error(f"[HISTORY] Reading {session.session_id} failed: {e}")
            raise system_error() from e
        return History(session, events)
