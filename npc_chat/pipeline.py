"""Construction-time wiring of the pipeline components."""

import logging
from dataclasses import dataclass
from pathlib import Path

from npc_chat import config
from npc_chat.agents import AgentDirectory, load_agent_directory
from npc_chat.database import init_db
from npc_chat.dispatcher import MessageDispatcher
from npc_chat.event_store import EventStore, InMemoryEventStore, SqliteEventStore
from npc_chat.readers import HistoryReader, PollReader
from npc_chat.services import EchoReplyGenerator, OpenAIReplyGenerator, ReplyGenerator
from npc_chat.session_registry import InMemorySessionRepository, SessionRegistry, SqliteSessionRepository

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    registry: SessionRegistry
    store: EventStore
    agents: AgentDirectory
    dispatcher: MessageDispatcher
    poll_reader: PollReader
    history_reader: HistoryReader
    database_path: Path | None = None

    def init_storage(self) -> None:
        if self.database_path is not None:
            init_db(self.database_path)

    async def shutdown(self) -> None:
        if self.dispatcher.pending_count:
            logger.info(f"[PIPELINE] Waiting for {self.dispatcher.pending_count} pending replies")
        await self.dispatcher.drain()


def make_generator(kind: str | None = None) -> ReplyGenerator:
    kind = kind or config.REPLY_GENERATOR
    if kind == "openai":
        return OpenAIReplyGenerator()
    if kind == "echo":
        return EchoReplyGenerator()
    raise ValueError(f"Unknown reply generator: {kind}")


def build_pipeline(
    backend: str | None = None,
    database_path: Path | str | None = None,
    generator: ReplyGenerator | None = None,
    agents: AgentDirectory | None = None,
    generation_timeout: float | None = None,
) -> Pipeline:
    """Wire stores, registry, dispatcher and readers for one process."""
    backend = backend or config.STORAGE_BACKEND
    if backend == "memory":
        repository = InMemorySessionRepository()
        store = InMemoryEventStore()
        database_path = None
    elif backend == "sqlite":
        database_path = Path(database_path or config.DATABASE_PATH)
        repository = SqliteSessionRepository(database_path)
        store = SqliteEventStore(database_path)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    registry = SessionRegistry(repository)
    agents = agents or load_agent_directory()
    dispatcher = MessageDispatcher(
        registry,
        store,
        generator or make_generator(),
        agents,
        generation_timeout=generation_timeout or config.GENERATION_TIMEOUT,
    )
    logger.info(f"[PIPELINE] Built with {backend} storage and {type(dispatcher.generator).__name__}")
    return Pipeline(
        registry=registry,
        store=store,
        agents=agents,
        dispatcher=dispatcher,
        poll_reader=PollReader(registry, store),
        history_reader=HistoryReader(registry, store),
        database_path=database_path,
    )
