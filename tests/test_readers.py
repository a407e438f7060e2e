import pytest

from npc_chat.domain import AGENT, USER, EventDraft
from npc_chat.errors import ErrorCode, PipelineError

PAIR = [{"type": "user", "id": "u1"}, {"type": "agent", "id": "a1"}]


@pytest.fixture
def conversation(pipeline):
    session = pipeline.registry.get_or_create_session(PAIR)
    events = [
        pipeline.store.append(EventDraft(session.session_id, USER, AGENT, "hello")),
        pipeline.store.append(EventDraft(session.session_id, AGENT, USER, "hi there")),
        pipeline.store.append(EventDraft(session.session_id, USER, AGENT, "how are you?")),
    ]
    return session, events


def test_check_new_without_marker_returns_everything(pipeline, conversation):
    session, events = conversation

    result = pipeline.poll_reader.check_new(session.session_id)

    assert result.has_new
    assert [e.id for e in result.events] == [e.id for e in events]


def test_check_new_returns_suffix_after_marker(pipeline, conversation):
    session, events = conversation

    result = pipeline.poll_reader.check_new(session.session_id, events[0].id, user_id="u1")

    assert [e.content for e in result.events] == ["hi there", "how are you?"]
    assert result.to_dict()["hasNew"] is True
    assert result.to_dict()["events"][0]["fromType"] == AGENT


def test_check_new_is_read_only(pipeline, conversation):
    session, events = conversation

    first = pipeline.poll_reader.check_new(session.session_id, events[-1].id)
    second = pipeline.poll_reader.check_new(session.session_id, events[-1].id)

    assert first.to_dict() == second.to_dict() == {"hasNew": False, "events": []}
    assert pipeline.store.read_all(session.session_id) == events


@pytest.mark.parametrize(
    ("session_id", "last_event_id", "user_id", "code"),
    [
        ("not-a-session", None, None, ErrorCode.VALIDATION_ERROR),
        (None, None, None, ErrorCode.VALIDATION_ERROR),
        ("session_unknown", None, None, ErrorCode.NOT_FOUND),
        ("known", "event_0_missing", None, ErrorCode.NOT_FOUND),
        ("known", "bogus", None, ErrorCode.VALIDATION_ERROR),
        ("known", None, "u2", ErrorCode.PERMISSION_DENIED),
    ],
)
def test_check_new_errors(pipeline, conversation, session_id, last_event_id, user_id, code):
    session, _ = conversation
    if session_id == "known":
        session_id = session.session_id

    with pytest.raises(PipelineError) as exc_info:
        pipeline.poll_reader.check_new(session_id, last_event_id, user_id=user_id)

    assert exc_info.value.code is code


def test_marker_from_another_session_is_not_found(pipeline, conversation):
    session, _ = conversation
    other = pipeline.registry.get_or_create_session([{"type": "user", "id": "u2"}, {"type": "agent", "id": "a1"}])
    foreign = pipeline.store.append(EventDraft(other.session_id, USER, AGENT, "elsewhere"))

    with pytest.raises(PipelineError) as exc_info:
        pipeline.poll_reader.check_new(session.session_id, foreign.id)

    assert exc_info.value.code is ErrorCode.NOT_FOUND


def test_history_of_unknown_pair_is_empty(pipeline):
    history = pipeline.history_reader.get_history("u1", "a1")

    assert history.to_dict() == {"session": None, "events": []}
    assert pipeline.registry.get_sessions_by_user("u1") == []


def test_history_returns_ordered_transcript(pipeline, conversation):
    session, events = conversation

    history = pipeline.history_reader.get_history("u1", "a1").to_dict()

    assert history["session"]["sessionId"] == session.session_id
    assert history["session"]["participants"] == PAIR
    assert [e["content"] for e in history["events"]] == ["hello", "hi there", "how are you?"]


def test_history_validates_ids(pipeline):
    with pytest.raises(PipelineError) as exc_info:
        pipeline.history_reader.get_history("u1", None)

    assert exc_info.value.details == {"field": "agentId"}
