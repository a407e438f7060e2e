"""Core types of the conversation pipeline."""

import time
from dataclasses import dataclass, field

USER = "user"
AGENT = "agent"
PARTICIPANT_KINDS = (USER, AGENT)

STATUS_FAILED = "failed"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Participant:
    """One endpoint of a session."""

    kind: str
    id: str

    def to_dict(self) -> dict:
        return {"type": self.kind, "id": self.id}


@dataclass
class Session:
    """Conversation context of one user/agent pair."""

    session_id: str
    participants: tuple[Participant, Participant]
    created_at: int
    last_active_at: int

    @property
    def user_id(self) -> str:
        return next(p.id for p in self.participants if p.kind == USER)

    @property
    def agent_id(self) -> str:
        return next(p.id for p in self.participants if p.kind == AGENT)

    def has_participant(self, kind: str, participant_id: str) -> bool:
        return Participant(kind, participant_id) in self.participants

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "participants": [p.to_dict() for p in self.participants],
            "createdAt": self.created_at,
            "lastActiveAt": self.last_active_at,
        }


@dataclass(frozen=True)
class EventDraft:
    """An event before the store has assigned its identity and position."""

    session_id: str
    from_type: str
    to_type: str
    content: str
    status: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class Event:
    """An appended, immutable entry of a session's timeline."""

    id: str
    session_id: str
    seq: int
    from_type: str
    to_type: str
    content: str
    timestamp: int
    status: str | None = None
    error_code: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "sessionId": self.session_id,
            "fromType": self.from_type,
            "toType": self.to_type,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.status:
            data["status"] = self.status
        if self.error_code:
            data["errorCode"] = self.error_code
        return data


@dataclass(frozen=True)
class PendingSendHandle:
    """Correlation token returned synchronously by a send."""

    user_event_id: str
    session_id: str
    issued_at: int = field(default_factory=now_ms)
