"""Reply generation: the boundary around the language-model call."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import openai
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from npc_chat import config
from npc_chat.agents import AgentProfile
from npc_chat.domain import USER, Event
from npc_chat.errors import ErrorCode, GenerationError

logger = logging.getLogger(__name__)


def build_messages(events: list[Event]) -> list[dict]:
    """Convert a session's context window into chat-completion messages.

    Failure markers are not part of the conversation and are skipped.
    """
    return [
        {"role": "user" if event.from_type == USER else "assistant", "content": event.content}
        for event in events
        if not event.failed
    ]


class ReplyGenerator(ABC):
    """Produces an agent reply for a session's recent context."""

    @abstractmethod
    async def generate(self, session_id: str, context: list[Event], agent: AgentProfile) -> str:
        """Return the reply text or raise ``GenerationError``."""


class EchoReplyGenerator(ReplyGenerator):
    """Offline generator that repeats the latest user message."""

    async def generate(self, session_id: str, context: list[Event], agent: AgentProfile) -> str:
        last_user = next((e for e in reversed(context) if e.from_type == USER), None)
        text = last_user.content if last_user else "..."
        return f"[{agent.name}] {text}"


@dataclass(frozen=True)
class ProviderConfig:
    base_url: str
    api_key_env: str
    api_key: str | None
    headers: dict = field(default_factory=dict)


def default_providers() -> dict[str, ProviderConfig]:
    return {
        "openai": ProviderConfig(config.OPENAI_API_URL, "OPENAI_API_KEY", config.OPENAI_API_KEY),
        "deepseek": ProviderConfig("https://api.deepseek.com/v1", "DEEPSEEK_API_KEY", config.DEEPSEEK_API_KEY),
        "openrouter": ProviderConfig(
            "https://openrouter.ai/api/v1",
            "OPENROUTER_API_KEY",
            config.OPENROUTER_API_KEY,
            headers={"HTTP-Referer": config.OPENROUTER_REFERER, "X-Title": config.OPENROUTER_TITLE},
        ),
    }


def _is_transient(exc: BaseException) -> bool:
    # APITimeoutError subclasses APIConnectionError but is final
    if isinstance(exc, openai.APITimeoutError):
        return False
    return isinstance(exc, (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError))


def _log_retry(retry_state) -> None:
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"[LLM] {reason}. Retrying in {wait:.1f}s (attempt {retry_state.attempt_number})")


class OpenAIReplyGenerator(ReplyGenerator):
    """Generator backed by OpenAI-compatible chat completion endpoints."""

    def __init__(
        self,
        providers: dict[str, ProviderConfig] | None = None,
        max_retries: int = config.LLM_MAX_RETRIES,
        retry_delay: float = config.LLM_RETRY_DELAY,
        temperature: float = config.LLM_TEMPERATURE,
        timeout: float = config.GENERATION_TIMEOUT,
    ):
        self.providers = providers if providers is not None else default_providers()
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.temperature = temperature
        self.timeout = timeout
        self._clients: dict[str, AsyncOpenAI] = {}

    def get_client(self, provider: str) -> AsyncOpenAI:
        """Get or create the client of a provider."""
        settings = self.providers.get(provider)
        if settings is None:
            raise GenerationError(ErrorCode.LLM_API_ERROR, f"Unsupported provider: {provider}", provider)
        if not settings.api_key:
            raise GenerationError(
                ErrorCode.API_KEY_MISSING,
                f"Missing {provider} API key, set {settings.api_key_env}",
                provider,
            )
        if provider not in self._clients:
            self._clients[provider] = AsyncOpenAI(
                api_key=settings.api_key,
                base_url=settings.base_url,
                default_headers=settings.headers or None,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._clients[provider]

    async def _complete(self, client: AsyncOpenAI, model: str, messages: list[dict]) -> str | None:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                response = await client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=self.temperature,
                )
        if not response.choices or not response.choices[0].message.content:
            return None
        return response.choices[0].message.content.strip()

    async def generate(self, session_id: str, context: list[Event], agent: AgentProfile) -> str:
        client = self.get_client(agent.provider)
        messages = [{"role": "system", "content": agent.system_prompt}, *build_messages(context)]
        logger.info(
            f"[LLM] Session {session_id}: {agent.provider}/{agent.model} with {len(messages) - 1} context messages"
        )

        try:
            reply = await self._complete(client, agent.model, messages)
        except openai.APITimeoutError as e:
            raise GenerationError(
                ErrorCode.LLM_API_TIMEOUT, "LLM API call timed out, please try again later", agent.provider
            ) from e
        except openai.APIStatusError as e:
            raise GenerationError(
                ErrorCode.LLM_API_ERROR,
                f"LLM API call failed: {e.status_code} {e.message}",
                agent.provider,
                e.status_code,
            ) from e
        except openai.OpenAIError as e:
            raise GenerationError(ErrorCode.LLM_API_ERROR, f"LLM API call failed: {e}", agent.provider) from e

        if not reply:
            raise GenerationError(ErrorCode.LLM_API_ERROR, "LLM API returned an unexpected response", agent.provider)
        return reply
