"""Pydantic models for request/response validation.

Request fields are optional at the schema level so that missing or blank
values reach the pipeline validators and get field-specific messages.
"""

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SendMessageRequest(CamelModel):
    """Request model for submitting a user message."""

    user_id: str | None = Field(None, alias="userId")
    agent_id: str | None = Field(None, alias="agentId")
    text: str | None = None
    context_limit: int | None = Field(None, alias="contextLimit")


class RegenerateRequest(CamelModel):
    """Request model for asking the agent to reply again."""

    user_id: str | None = Field(None, alias="userId")
    agent_id: str | None = Field(None, alias="agentId")
    context_limit: int | None = Field(None, alias="contextLimit")


class PendingReplyData(CamelModel):
    """Payload returned once the user event is stored."""

    user_event_id: str = Field(alias="userEventId")
    session_id: str = Field(alias="sessionId")
    timestamp: int
    status: str = "pending"
    max_line_width: int | None = Field(None, alias="maxLineWidth")


class HealthData(CamelModel):
    status: str
    version: str
    pending_replies: int = Field(alias="pendingReplies")
