import pytest

from npc_chat.agents import AgentDirectory, AgentProfile
from npc_chat.database import init_db
from npc_chat.event_store import InMemoryEventStore, SqliteEventStore
from npc_chat.pipeline import build_pipeline
from npc_chat.session_registry import InMemorySessionRepository, SessionRegistry, SqliteSessionRepository
from tests.fakes import ScriptedReplyGenerator


@pytest.fixture
def agents():
    return AgentDirectory(
        {"a1": AgentProfile(id="a1", name="Aria", model="gpt-4o-mini", system_prompt="You are Aria.")},
        default=AgentProfile(id="default", name="default", model="gpt-4o-mini"),
    )


@pytest.fixture
def generator():
    return ScriptedReplyGenerator()


@pytest.fixture(params=["memory", "sqlite"])
def backend(request):
    return request.param


@pytest.fixture
def pipeline(backend, tmp_path, generator, agents):
    built = build_pipeline(
        backend=backend,
        database_path=tmp_path / "chat.db",
        generator=generator,
        agents=agents,
        generation_timeout=2,
    )
    built.init_storage()
    return built


@pytest.fixture
def memory_pipeline(generator, agents):
    return build_pipeline(backend="memory", generator=generator, agents=agents, generation_timeout=2)


@pytest.fixture
def event_store(backend, tmp_path):
    if backend == "memory":
        return InMemoryEventStore()
    init_db(tmp_path / "events.db")
    return SqliteEventStore(tmp_path / "events.db")


@pytest.fixture
def registry(backend, tmp_path):
    if backend == "memory":
        return SessionRegistry(InMemorySessionRepository())
    init_db(tmp_path / "sessions.db")
    return SessionRegistry(SqliteSessionRepository(tmp_path / "sessions.db"))
