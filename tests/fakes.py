"""Test doubles shared by the suite."""

import asyncio

from npc_chat.services import ReplyGenerator


class ScriptedReplyGenerator(ReplyGenerator):
    """Replies from a script; records the context of every call."""

    def __init__(self, replies=None, delay: float = 0.0, error: Exception | None = None):
        self.replies = list(replies or [])
        self.delay = delay
        self.error = error
        self.release: asyncio.Event | None = None
        self.calls: list[tuple[str, list[str]]] = []

    async def generate(self, session_id, context, agent):
        self.calls.append((session_id, [e.content for e in context]))
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return f"reply to {context[-1].content}"
