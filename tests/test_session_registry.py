import threading

import pytest

from npc_chat.errors import ErrorCode, PipelineError, StorageError
from npc_chat.session_registry import SessionRegistry, SessionRepository, derive_session_id, session_key
from npc_chat.validation import validate_session_id

U1 = {"type": "user", "id": "u1"}
A1 = {"type": "agent", "id": "a1"}
A2 = {"type": "agent", "id": "a2"}


class _ExplodingRepository(SessionRepository):
    """Fails every call; lets tests see whether storage was reached."""

    def __init__(self, error=None):
        self.error = error or AssertionError("storage must not be reached")
        self.calls = 0

    def _fail(self, *args):
        self.calls += 1
        raise self.error

    get_or_create = get = list_by_user = list_by_agent = touch = _fail


def test_session_id_is_deterministic_in_either_order(registry):
    first = registry.get_or_create_session([U1, A1])
    swapped = registry.get_or_create_session([A1, U1])
    again = registry.get_or_create_session([U1, A1])

    assert first.session_id == swapped.session_id == again.session_id
    assert again.created_at == first.created_at
    assert validate_session_id(first.session_id) == first.session_id
    assert [p.to_dict() for p in first.participants] == [U1, A1]


def test_different_pairs_get_different_sessions(registry):
    assert registry.get_or_create_session([U1, A1]).session_id != registry.get_or_create_session([U1, A2]).session_id


def test_session_id_derivation_is_pure():
    from npc_chat.validation import validate_participants

    key = session_key(validate_participants([A1, U1]))
    assert key == "user:u1|agent:a1"
    assert derive_session_id(key) == derive_session_id("user:u1|agent:a1")


@pytest.mark.parametrize(
    "participants",
    [[], [{"type": "user", "id": "x"}], [{"type": "user", "id": "x"}, {"type": "invalid", "id": "y"}]],
)
def test_validation_runs_before_storage(participants):
    repository = _ExplodingRepository()
    registry = SessionRegistry(repository)

    with pytest.raises(PipelineError) as exc_info:
        registry.get_or_create_session(participants)

    assert exc_info.value.code is ErrorCode.VALIDATION_ERROR
    assert repository.calls == 0


def test_storage_failures_become_system_errors():
    registry = SessionRegistry(_ExplodingRepository(StorageError("disk I/O error at /var/db")))

    with pytest.raises(PipelineError) as exc_info:
        registry.get_or_create_session([U1, A1])

    assert exc_info.value.code is ErrorCode.SYSTEM_ERROR
    assert "disk" not in exc_info.value.message


def test_find_does_not_create(registry):
    assert registry.find_session_by_participants([U1, A1]) is None
    created = registry.get_or_create_session([U1, A1])
    assert registry.find_session_by_participants([A1, U1]).session_id == created.session_id
    assert registry.get_session(created.session_id).session_id == created.session_id
    assert registry.get_session("session_unknown") is None


def test_sessions_by_user_and_agent(registry):
    assert registry.get_sessions_by_user("u1") == []

    older = registry.get_or_create_session([U1, A1])
    newer = registry.get_or_create_session([U1, A2])
    registry.get_or_create_session([{"type": "user", "id": "u2"}, A1])
    registry.update_session_activity(older.session_id, newer.last_active_at + 1000)

    by_user = registry.get_sessions_by_user("u1")
    assert [s.session_id for s in by_user] == [older.session_id, newer.session_id]
    assert {s.user_id for s in registry.get_sessions_by_agent("a1")} == {"u1", "u2"}


def test_update_session_activity_is_idempotent_and_monotonic(registry):
    session = registry.get_or_create_session([U1, A1])
    later = session.last_active_at + 5000

    registry.update_session_activity(session.session_id, later)
    registry.update_session_activity(session.session_id, later)
    registry.update_session_activity(session.session_id, session.last_active_at - 1)

    stored = registry.get_session(session.session_id)
    assert stored.last_active_at == later
    assert stored.created_at == session.created_at
    registry.update_session_activity("session_unknown")


def test_concurrent_first_contact_creates_one_session(registry):
    results = []
    barrier = threading.Barrier(8)

    def contact():
        barrier.wait()
        results.append(registry.get_or_create_session([U1, A1]))

    threads = [threading.Thread(target=contact) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({s.session_id for s in results}) == 1
    assert len({s.created_at for s in results}) == 1
    assert len(registry.get_sessions_by_user("u1")) == 1


def test_returned_sessions_are_snapshots(registry):
    held = registry.get_or_create_session([U1, A1])
    listed = registry.get_sessions_by_user("u1")[0]
    original = held.last_active_at

    registry.update_session_activity(held.session_id, original + 5000)

    assert held.last_active_at == original
    assert listed.last_active_at == original
    assert registry.get_session(held.session_id).last_active_at == original + 5000
