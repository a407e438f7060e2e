"""Input validation shared by the pipeline components.

All checks raise ``ValidationError`` naming the offending field and run
before any storage access.
"""

import re
from collections.abc import Mapping, Sequence

from npc_chat import config
from npc_chat.domain import AGENT, PARTICIPANT_KINDS, USER, Participant
from npc_chat.errors import ValidationError

PARTICIPANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:@-]{0,127}$")


PREFIXED_ID_PATTERNS = {
    prefix: re.compile(rf"^{prefix}_[A-Za-z0-9_]+$") for prefix in ("session", "event")
}


def require_string(value, field: str) -> str:
    """Return ``value`` stripped, rejecting missing, non-string and blank values."""
    if value is None:
        raise ValidationError(f"{field} is required", field)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field)
    value = value.strip()
    if not value:
        raise ValidationError(f"{field} must not be empty", field)
    return value


def validate_participant_id(value, field: str) -> str:
    value = require_string(value, field)
    if not PARTICIPANT_ID_PATTERN.match(value):
        raise ValidationError(
            f"{field} has an invalid format (letters, digits and _.:@- only, at most 128 characters)",
            field,
        )
    return value


def validate_prefixed_id(value, prefix: str, field: str) -> str:
    value = require_string(value, field)
    if not PREFIXED_ID_PATTERNS[prefix].match(value):
        raise ValidationError(f"{field} has an invalid format, expected {prefix}_xxx", field)
    return value


def validate_session_id(value, field: str = "sessionId") -> str:
    return validate_prefixed_id(value, "session", field)


def validate_event_id(value, field: str = "lastEventId") -> str:
    return validate_prefixed_id(value, "event", field)


def validate_message_text(text, max_length: int | None = None) -> str:
    """Trim and bound-check a user message."""
    max_length = max_length or config.MAX_MESSAGE_LENGTH
    text = require_string(text, "text")
    if len(text) > max_length:
        raise ValidationError(f"text must not exceed {max_length} characters", "text")
    return text


def validate_context_limit(limit) -> int:
    if limit is None:
        return config.CONTEXT_LIMIT
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError("contextLimit must be an integer", "contextLimit")
    if limit < 1 or limit > config.MAX_CONTEXT_LIMIT:
        raise ValidationError(
            f"contextLimit must be between 1 and {config.MAX_CONTEXT_LIMIT}", "contextLimit"
        )
    return limit


def _coerce_participant(entry, index: int) -> Participant:
    field = f"participants[{index}]"
    if isinstance(entry, Participant):
        kind, participant_id = entry.kind, entry.id
    elif isinstance(entry, Mapping):
        kind = entry.get("type", entry.get("kind"))
        participant_id = entry.get("id")
    else:
        raise ValidationError(f"{field} must be an object with type and id", field)

    if not kind or not participant_id:
        raise ValidationError(f"{field} must contain both type and id", field)
    if kind not in PARTICIPANT_KINDS:
        raise ValidationError(f"{field}.type must be one of: user, agent", f"{field}.type")
    return Participant(kind, validate_participant_id(participant_id, f"{field}.id"))


def validate_participants(participants) -> tuple[Participant, Participant]:
    """Validate a user/agent pair and return it in canonical order (user, agent)."""
    if isinstance(participants, (str, bytes)) or not isinstance(participants, Sequence):
        raise ValidationError("participants must be a list", "participants")
    if len(participants) == 0:
        raise ValidationError("participants must not be empty", "participants")
    if len(participants) != 2:
        raise ValidationError("participants must contain exactly two entries", "participants")

    pair = [_coerce_participant(entry, i) for i, entry in enumerate(participants)]
    if pair[0] == pair[1]:
        raise ValidationError("participants must be distinct", "participants")
    if {p.kind for p in pair} != {USER, AGENT}:
        raise ValidationError(
            "participants must contain exactly one user and one agent", "participants"
        )

    pair.sort(key=lambda p: (PARTICIPANT_KINDS.index(p.kind), p.id))
    return pair[0], pair[1]
