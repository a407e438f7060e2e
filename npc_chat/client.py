"""Async HTTP client for the chat API and the client-side reply poller.

Giving up on a reply is a client decision: the server keeps no record of
pollers. ``ReplyPoller`` walks ``idle -> polling -> delivered | timed_out |
cancelled`` and stops as soon as its cancel token is set.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

import httpx

from npc_chat import config
from npc_chat.domain import AGENT, STATUS_FAILED
from npc_chat.errors import ErrorCode, PipelineError

logger = logging.getLogger(__name__)


class ApiError(PipelineError):
    """Error envelope returned by the server."""

    def __init__(self, code: ErrorCode, message: str, status_code: int, details: dict | None = None):
        super().__init__(code, message, details)
        self.status_code = status_code


class ChatClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        user_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        headers = {"X-User-Id": user_id} if user_id else None
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, transport=transport, timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        response = await self._client.request(method, path, **kwargs)
        body = response.json()
        if not body.get("success"):
            error = body.get("error", {})
            try:
                code = ErrorCode(error.get("code"))
            except ValueError:
                code = ErrorCode.SYSTEM_ERROR
            raise ApiError(code, error.get("message", ""), response.status_code, error.get("details"))
        return body["data"]

    async def send(self, user_id: str, agent_id: str, text: str, context_limit: int | None = None) -> dict:
        payload = {"userId": user_id, "agentId": agent_id, "text": text}
        if context_limit is not None:
            payload["contextLimit"] = context_limit
        return await self._request("POST", "/messages", json=payload)

    async def regenerate(self, user_id: str, agent_id: str) -> dict:
        return await self._request("POST", "/messages/regenerate", json={"userId": user_id, "agentId": agent_id})

    async def check_new(self, session_id: str, last_event_id: str | None = None) -> dict:
        params = {"sessionId": session_id}
        if last_event_id:
            params["lastEventId"] = last_event_id
        return await self._request("GET", "/messages/check", params=params)

    async def get_history(self, user_id: str, agent_id: str) -> dict:
        return await self._request("GET", "/history", params={"userId": user_id, "agentId": agent_id})

    async def list_sessions(self, user_id: str) -> list[dict]:
        data = await self._request("GET", "/sessions", params={"userId": user_id})
        return data["sessions"]


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    DELIVERED = "delivered"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class PollOutcome:
    state: PollState
    attempts: int
    events: list[dict] = field(default_factory=list)

    @property
    def reply(self) -> dict | None:
        return next((e for e in reversed(self.events) if e["fromType"] == AGENT), None)

    @property
    def failed(self) -> bool:
        reply = self.reply
        return reply is not None and reply.get("status") == STATUS_FAILED


class ReplyPoller:
    """Polls one session until an agent event shows up after ``last_event_id``."""

    def __init__(
        self,
        client: ChatClient,
        session_id: str,
        last_event_id: str | None,
        interval: float = config.POLL_INTERVAL,
        max_attempts: int = config.POLL_MAX_ATTEMPTS,
        cancel_token: asyncio.Event | None = None,
    ):
        self.client = client
        self.session_id = session_id
        self.last_event_id = last_event_id
        self.interval = interval
        self.max_attempts = max_attempts
        self.cancel_token = cancel_token or asyncio.Event()
        self.state = PollState.IDLE

    def cancel(self) -> None:
        self.cancel_token.set()

    async def _sleep_or_cancel(self) -> bool:
        """Sleep one interval; True if the cancel token fired meanwhile."""
        try:
            await asyncio.wait_for(self.cancel_token.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_for_reply(self) -> PollOutcome:
        if self.state is not PollState.IDLE:
            raise RuntimeError(f"Poller already {self.state.value}")
        self.state = PollState.POLLING
        events: list[dict] = []

        for attempt in range(1, self.max_attempts + 1):
            if self.cancel_token.is_set():
                self.state = PollState.CANCELLED
                return PollOutcome(self.state, attempt - 1, events)

            data = await self.client.check_new(self.session_id, self.last_event_id)
            if data["hasNew"]:
                events.extend(data["events"])
                self.last_event_id = data["events"][-1]["id"]
                if any(e["fromType"] == AGENT for e in data["events"]):
                    self.state = PollState.DELIVERED
                    return PollOutcome(self.state, attempt, events)

            if attempt < self.max_attempts and await self._sleep_or_cancel():
                self.state = PollState.CANCELLED
                return PollOutcome(self.state, attempt, events)

        logger.info(f"[POLL] No reply in {self.session_id} after {self.max_attempts} attempts")
        self.state = PollState.TIMED_OUT
        return PollOutcome(self.state, self.max_attempts, events)


async def send_and_wait(client: ChatClient, user_id: str, agent_id: str, text: str, **poller_options) -> PollOutcome:
    """Send a message and poll until the agent answers or the poller gives up."""
    handle = await client.send(user_id, agent_id, text)
    poller = ReplyPoller(client, handle["sessionId"], handle["userEventId"], **poller_options)
    return await poller.wait_for_reply()
