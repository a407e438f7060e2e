"""Message dispatcher: send -> append user event -> detached reply generation.

``send`` returns as soon as the user event is durable. The reply is produced
by an ``asyncio`` task owned by the dispatcher; its outcome (reply or failure
marker) is only visible through the event store.

Generations of one session run one at a time in submission order, so agent
events of a session land in the order their user messages were sent and each
generation sees every earlier reply in its context.
"""

import asyncio
import logging
from collections import defaultdict

from npc_chat import config
from npc_chat.agents import AgentDirectory, AgentProfile
from npc_chat.domain import AGENT, STATUS_FAILED, USER, Event, EventDraft, Participant, PendingSendHandle
from npc_chat.errors import (
    GENERIC_SYSTEM_MESSAGE,
    ErrorCode,
    GenerationError,
    PipelineError,
    StorageError,
    not_found,
    system_error,
)
from npc_chat.event_store import EventStore
from npc_chat.services import ReplyGenerator
from npc_chat.session_registry import SessionRegistry
from npc_chat.validation import validate_context_limit, validate_message_text, validate_participant_id

logger = logging.getLogger(__name__)

UNEXPECTED_GENERATOR_MESSAGE = "unexpected error while generating the reply"


def failure_message(error: GenerationError) -> str:
    """User-facing text of a failure marker."""
    match error.code:
        case ErrorCode.API_KEY_MISSING:
            return "AI service is misconfigured (missing API key), please contact the administrator."
        case ErrorCode.LLM_API_TIMEOUT:
            return "AI service took too long to respond, please try again later."
        case ErrorCode.LLM_API_ERROR if error.status == 401:
            return "AI service authentication failed: the API key is invalid or expired."
        case ErrorCode.LLM_API_ERROR if error.status == 403:
            return "AI service denied access: the API key lacks permission for this model."
        case ErrorCode.LLM_API_ERROR if error.status == 429:
            return "AI service is receiving too many requests, please try again later."
        case ErrorCode.LLM_API_ERROR:
            return f"AI service call failed: {error.message}"
        case _:
            return "Sorry, the AI reply could not be generated."


class MessageDispatcher:
    """Orchestrates a send from validation to the reply event."""

    def __init__(
        self,
        registry: SessionRegistry,
        store: EventStore,
        generator: ReplyGenerator,
        agents: AgentDirectory,
        generation_timeout: float = config.GENERATION_TIMEOUT,
        max_reply_length: int = config.MAX_EVENT_CONTENT_LENGTH,
    ):
        self.registry = registry
        self.store = store
        self.generator = generator
        self.agents = agents
        self.generation_timeout = generation_timeout
        self.max_reply_length = max_reply_length
        self._tasks: set[asyncio.Task] = set()
        self._gates: dict[str, asyncio.Lock] = {}
        self._queued: dict[str, int] = defaultdict(int)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def _resolve_agent(self, agent_id: str) -> AgentProfile:
        agent = self.agents.get_agent(agent_id)
        if agent is None:
            raise not_found(f"Agent {agent_id} does not exist")
        return agent

    def _append(self, draft: EventDraft) -> Event:
        try:
            event = self.store.append(draft)
        except StorageError as e:
            logger.error(f"[DISPATCH] Append to {draft.session_id} failed: {e}")
            raise system_error("Failed to save the message, please try again later") from e
        try:
            self.registry.update_session_activity(event.session_id, event.timestamp)
        except PipelineError:
            # the event is durable; a stale lastActiveAt is tolerated
            logger.warning(f"[DISPATCH] Could not bump activity of {event.session_id}")
        return event

    async def send(self, user_id, agent_id, text, context_limit: int | None = None) -> PendingSendHandle:
        """Append the user's message and start generating the agent reply."""
        user_id = validate_participant_id(user_id, "userId")
        agent_id = validate_participant_id(agent_id, "agentId")
        text = validate_message_text(text)
        limit = validate_context_limit(context_limit)
        agent = self._resolve_agent(agent_id)

        session = self.registry.get_or_create_session([Participant(USER, user_id), Participant(AGENT, agent_id)])
        user_event = self._append(EventDraft(session.session_id, USER, AGENT, text))
        self._launch(session.session_id, agent, limit)

        logger.info(f"[DISPATCH] {user_id} -> {agent_id}: {user_event.id} in {session.session_id}, reply pending")
        return PendingSendHandle(user_event.id, session.session_id, user_event.timestamp)

    async def regenerate(self, user_id, agent_id, context_limit: int | None = None) -> PendingSendHandle:
        """Generate a new agent reply for the current context.

        The previous reply stays in the log; the new one is appended after it.
        """
        user_id = validate_participant_id(user_id, "userId")
        agent_id = validate_participant_id(agent_id, "agentId")
        limit = validate_context_limit(context_limit)
        agent = self._resolve_agent(agent_id)

        session = self.registry.find_session_by_participants(
            [Participant(USER, user_id), Participant(AGENT, agent_id)]
        )
        if session is None:
            raise not_found(f"No conversation between {user_id} and {agent_id}")
        try:
            events = self.store.read_all(session.session_id)
        except StorageError as e:
            logger.error(f"[DISPATCH] Reading {session.session_id} failed: {e}")
            raise system_error() from e
        last_user = next((e for e in reversed(events) if e.from_type == USER), None)
        if last_user is None:
            raise not_found(f"No user message to reply to in {session.session_id}")

        self._launch(session.session_id, agent, limit)
        logger.info(f"[DISPATCH] Regenerating reply to {last_user.id} in {session.session_id}")
        return PendingSendHandle(last_user.id, session.session_id)

    def _launch(self, session_id: str, agent: AgentProfile, limit: int) -> None:
        task = asyncio.create_task(self._generate_reply(session_id, agent, limit))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[DISPATCH] Reply task failed: {exc!r}")

    def _gate(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._gates:
            self._gates[session_id] = asyncio.Lock()
        return self._gates[session_id]

    async def _generate_reply(self, session_id: str, agent: AgentProfile, limit: int) -> None:
        # counted only once running; a task cancelled before its first step leaves no trace
        self._queued[session_id] += 1
        try:
            async with self._gate(session_id):
                await self._run_generation(session_id, agent, limit)
        finally:
            self._queued[session_id] -= 1
            if self._queued[session_id] == 0:
                del self._queued[session_id]
                self._gates.pop(session_id, None)

    async def _run_generation(self, session_id: str, agent: AgentProfile, limit: int) -> None:
        try:
            context = self.store.read_recent(session_id, limit)
            reply = await asyncio.wait_for(
                self.generator.generate(session_id, context, agent),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError:
            error = GenerationError(
                ErrorCode.LLM_API_TIMEOUT,
                f"Reply generation exceeded {self.generation_timeout:g}s",
                agent.provider,
            )
        except GenerationError as e:
            error = e
        except StorageError as e:
            logger.error(f"[DISPATCH] Storage error while preparing reply for {session_id}: {e}")
            error = GenerationError(ErrorCode.SYSTEM_ERROR, GENERIC_SYSTEM_MESSAGE, agent.provider)
        except Exception:
            logger.exception(f"[DISPATCH] Generator crashed for {session_id}")
            error = GenerationError(ErrorCode.LLM_API_ERROR, UNEXPECTED_GENERATOR_MESSAGE, agent.provider)
        else:
            if len(reply) > self.max_reply_length:
                logger.warning(f"[DISPATCH] Reply for {session_id} truncated from {len(reply)} characters")
                reply = reply[: self.max_reply_length]
            try:
                event = self._append(EventDraft(session_id, AGENT, USER, reply))
            except PipelineError as e:
                error = GenerationError(ErrorCode.SYSTEM_ERROR, e.message, agent.provider)
            else:
                logger.info(f"[DISPATCH] Reply {event.id} appended to {session_id}")
                return

        logger.error(
            f"[DISPATCH] Generation failed for {session_id}: {error.code.value} "
            f"(provider={error.provider}, status={error.status}) {error.message}"
        )
        try:
            marker = self._append(
                EventDraft(
                    session_id,
                    AGENT,
                    USER,
                    failure_message(error),
                    status=STATUS_FAILED,
                    error_code=error.code.value,
                )
            )
        except PipelineError:
            logger.error(f"[DISPATCH] Failure marker for {session_id} could not be stored, the reply is lost")
            return
        logger.info(f"[DISPATCH] Failure marker {marker.id} appended to {session_id}")

    async def drain(self) -> None:
        """Wait until every outstanding reply task has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
