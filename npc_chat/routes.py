"""API route handlers.

Every response uses the envelope ``{success, data | error, timestamp}``.
Caller identity comes from the ``X-User-Id`` header set by the upstream
authentication layer; when present it must match the user being acted for.
"""

from fastapi import APIRouter, Depends, Header, Query, Request

from npc_chat import config
from npc_chat.domain import now_ms
from npc_chat.errors import PipelineError, permission_denied
from npc_chat.models import HealthData, PendingReplyData, RegenerateRequest, SendMessageRequest
from npc_chat.pipeline import Pipeline
from npc_chat.text_utils import calculate_max_line_width
from npc_chat.validation import validate_participant_id

router = APIRouter()


def success_envelope(data) -> dict:
    return {"success": True, "data": data, "timestamp": now_ms()}


def error_envelope(error: PipelineError) -> dict:
    return {"success": False, "error": error.to_dict(), "timestamp": now_ms()}


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def get_caller_id(x_user_id: str | None = Header(None)) -> str | None:
    return x_user_id.strip() if x_user_id else None


def ensure_caller(caller_id: str | None, user_id) -> None:
    if caller_id is None:
        return
    user_id = validate_participant_id(user_id, "userId")
    if caller_id != user_id:
        raise permission_denied("Caller may only act on their own conversations")


def session_summary(session, pipeline: Pipeline) -> dict:
    agent = pipeline.agents.get_agent(session.agent_id)
    return {
        **session.to_dict(),
        "agentId": session.agent_id,
        "agent": agent.summary() if agent else None,
    }


@router.post("/messages")
async def send_message(
    request: SendMessageRequest,
    pipeline: Pipeline = Depends(get_pipeline),
    caller_id: str | None = Depends(get_caller_id),
):
    """Store a user message and start generating the agent reply."""
    ensure_caller(caller_id, request.user_id)
    handle = await pipeline.dispatcher.send(
        request.user_id, request.agent_id, request.text, request.context_limit
    )
    data = PendingReplyData(
        user_event_id=handle.user_event_id,
        session_id=handle.session_id,
        timestamp=handle.issued_at,
        max_line_width=calculate_max_line_width(request.text.strip()),
    )
    return success_envelope(data.model_dump(by_alias=True))


@router.post("/messages/regenerate")
async def regenerate_reply(
    request: RegenerateRequest,
    pipeline: Pipeline = Depends(get_pipeline),
    caller_id: str | None = Depends(get_caller_id),
):
    """Ask the agent for a new reply; the previous one is kept."""
    ensure_caller(caller_id, request.user_id)
    handle = await pipeline.dispatcher.regenerate(request.user_id, request.agent_id, request.context_limit)
    data = PendingReplyData(
        user_event_id=handle.user_event_id,
        session_id=handle.session_id,
        timestamp=handle.issued_at,
    )
    return success_envelope(data.model_dump(by_alias=True, exclude_none=True))


@router.get("/messages/check")
def check_new_messages(
    session_id: str | None = Query(None, alias="sessionId"),
    last_event_id: str | None = Query(None, alias="lastEventId"),
    pipeline: Pipeline = Depends(get_pipeline),
    caller_id: str | None = Depends(get_caller_id),
):
    """Events of a session that arrived after ``lastEventId``."""
    result = pipeline.poll_reader.check_new(session_id, last_event_id, user_id=caller_id)
    return success_envelope(result.to_dict())


@router.get("/history")
def get_history(
    user_id: str | None = Query(None, alias="userId"),
    agent_id: str | None = Query(None, alias="agentId"),
    pipeline: Pipeline = Depends(get_pipeline),
    caller_id: str | None = Depends(get_caller_id),
):
    """Full transcript between a user and an agent."""
    ensure_caller(caller_id, user_id)
    history = pipeline.history_reader.get_history(user_id, agent_id)
    return success_envelope(history.to_dict())


@router.get("/sessions")
def list_sessions(
    user_id: str | None = Query(None, alias="userId"),
    pipeline: Pipeline = Depends(get_pipeline),
    caller_id: str | None = Depends(get_caller_id),
):
    """Sessions of a user, most recently active first."""
    ensure_caller(caller_id, user_id)
    sessions = pipeline.registry.get_sessions_by_user(user_id)
    return success_envelope({"sessions": [session_summary(s, pipeline) for s in sessions]})


@router.get("/agents/{agent_id}/sessions")
def list_agent_sessions(agent_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    """Sessions an agent takes part in, for the admin dashboard."""
    sessions = pipeline.registry.get_sessions_by_agent(agent_id)
    return success_envelope({"sessions": [session_summary(s, pipeline) for s in sessions]})


@router.get("/health")
def health(pipeline: Pipeline = Depends(get_pipeline)):
    data = HealthData(status="ok", version=config.API_VERSION, pending_replies=pipeline.dispatcher.pending_count)
    return success_envelope(data.model_dump(by_alias=True))
