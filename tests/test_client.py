import asyncio

import httpx
import pytest

from main import create_app
from npc_chat.client import ApiError, ChatClient, PollState, ReplyPoller, send_and_wait
from npc_chat.errors import ErrorCode, GenerationError


def run_with_client(pipeline, scenario, user_id="u1"):
    async def runner():
        transport = httpx.ASGITransport(app=create_app(pipeline))
        async with ChatClient("http://testserver", user_id=user_id, transport=transport) as client:
            try:
                return await scenario(client)
            finally:
                await pipeline.dispatcher.drain()

    return asyncio.run(runner())


def test_send_and_wait_delivers_reply(memory_pipeline):
    async def scenario(client):
        return await send_and_wait(client, "u1", "a1", "hi", interval=0.01, max_attempts=100)

    outcome = run_with_client(memory_pipeline, scenario)

    assert outcome.state is PollState.DELIVERED
    assert outcome.reply["content"] == "reply to hi"
    assert not outcome.failed


def test_failure_marker_ends_polling(memory_pipeline, generator):
    generator.error = GenerationError(ErrorCode.LLM_API_ERROR, "boom", "openai", 500)

    async def scenario(client):
        return await send_and_wait(client, "u1", "a1", "hi", interval=0.01, max_attempts=100)

    outcome = run_with_client(memory_pipeline, scenario)

    assert outcome.state is PollState.DELIVERED
    assert outcome.failed
    assert outcome.reply["errorCode"] == "LLM_API_ERROR"


def test_poller_times_out(memory_pipeline, generator):
    async def scenario(client):
        generator.release = asyncio.Event()
        handle = await client.send("u1", "a1", "hi")
        poller = ReplyPoller(client, handle["sessionId"], handle["userEventId"], interval=0.01, max_attempts=3)
        outcome = await poller.wait_for_reply()
        generator.release.set()
        return outcome, poller

    outcome, poller = run_with_client(memory_pipeline, scenario)

    assert outcome.state is PollState.TIMED_OUT
    assert outcome.attempts == 3
    assert outcome.reply is None
    assert poller.state is PollState.TIMED_OUT


def test_poller_can_be_cancelled(memory_pipeline, generator):
    async def scenario(client):
        generator.release = asyncio.Event()
        handle = await client.send("u1", "a1", "hi")
        poller = ReplyPoller(client, handle["sessionId"], handle["userEventId"], interval=5, max_attempts=10)
        asyncio.get_running_loop().call_later(0.05, poller.cancel)
        outcome = await poller.wait_for_reply()
        generator.release.set()
        with pytest.raises(RuntimeError):
            await poller.wait_for_reply()
        return outcome

    outcome = run_with_client(memory_pipeline, scenario)

    assert outcome.state is PollState.CANCELLED
    assert outcome.attempts == 1


def test_error_envelope_raises_api_error(memory_pipeline):
    async def scenario(client):
        with pytest.raises(ApiError) as exc_info:
            await client.check_new("session_missing")
        return exc_info.value

    error = run_with_client(memory_pipeline, scenario)

    assert error.code is ErrorCode.NOT_FOUND
    assert error.status_code == 404


def test_history_and_sessions_through_client(memory_pipeline):
    async def scenario(client):
        await send_and_wait(client, "u1", "a1", "hi", interval=0.01, max_attempts=100)
        return await client.get_history("u1", "a1"), await client.list_sessions("u1")

    history, sessions = run_with_client(memory_pipeline, scenario)

    assert [e["content"] for e in history["events"]] == ["hi", "reply to hi"]
    assert sessions[0]["sessionId"] == history["session"]["sessionId"]
