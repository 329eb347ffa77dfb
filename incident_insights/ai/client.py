"""Generative-text backend: LangChain chat model factory plus a retrying client.

The engine only depends on ``TextGenerator.generate(system_prompt,
user_prompt) -> Completion``. ``LangChainGenerator`` is the production
implementation; tests substitute a fake with the same method.
"""

import asyncio
import logging
import time
from typing import Any, Protocol

import httpx
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, SecretStr

from incident_insights.config import Settings
from incident_insights.errors import AIServiceError, InvalidResponse, RateLimited, ServiceUnavailable
from incident_insights.observability.callbacks import MetricsCallbackHandler
from incident_insights.observability.metrics import AI_CALL_DURATION, AI_CALLS_TOTAL, AI_RETRIES_TOTAL

logger = logging.getLogger(__name__)


class Completion(BaseModel):
    """Text returned by the backend plus the token usage it reported."""

    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated_cost: float = 0.0


class TextGenerator(Protocol):
    model_name: str

    async def generate(self, system_prompt: str, user_prompt: str, *, purpose: str = "insight") -> Completion: ...


# ---------------------------------------------------------------------------
# Chat model factory
# ---------------------------------------------------------------------------


def create_llm(settings: Settings, model_override: str | None = None) -> BaseChatModel:
    """Create a chat model instance based on the configured provider.

    Args:
        settings: Application settings (provider, keys, model names, sampling).
        model_override: Override model name from settings.

    Returns:
        A ChatAnthropic or ChatOpenAI instance.
    """
    if settings.llm_provider == "anthropic":
        return ChatAnthropic(  # pyright: ignore[reportCallIssue]
            model=model_override or settings.anthropic_model,  # pyright: ignore[reportCallIssue]
            temperature=settings.ai_temperature,
            max_tokens=settings.ai_max_tokens,  # pyright: ignore[reportCallIssue]
            api_key=SecretStr(settings.anthropic_api_key),
            max_retries=0,
        )

    return ChatOpenAI(
        model=model_override or settings.openai_model,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,  # pyright: ignore[reportCallIssue]
        api_key=SecretStr(settings.openai_api_key),
        base_url=settings.openai_base_url or None,
        max_retries=0,
    )


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _is_rate_limit_error(exc: BaseException) -> bool:
    """Check if an exception is a rate limit (429) error."""
    msg = str(exc).lower()
    return "429" in msg or "rate_limit" in msg or "rate limit" in msg


def _is_connection_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError | ConnectionError | TimeoutError):
        return True
    # openai / anthropic SDKs: APIConnectionError, APITimeoutError
    name = type(exc).__name__
    return "Connection" in name or "Timeout" in name


def classify_error(exc: BaseException) -> AIServiceError:
    """Map a provider/transport exception onto the AI service error taxonomy."""
    if isinstance(exc, AIServiceError):
        return exc

    status = _status_code(exc)
    if status == 429 or (status is None and _is_rate_limit_error(exc)):
        return RateLimited(str(exc))
    if status is not None and status >= 500:
        return ServiceUnavailable(f"Backend returned {status}: {exc}")
    if status is None and _is_connection_error(exc):
        return ServiceUnavailable(f"Backend unreachable: {exc}")
    if status is not None:
        return AIServiceError(f"Backend rejected request ({status}): {exc}")
    return AIServiceError(str(exc))


# ---------------------------------------------------------------------------
# Retrying generator
# ---------------------------------------------------------------------------


class LangChainGenerator:
    """Calls a LangChain chat model with system + human messages.

    Transient failures (rate limits, 5xx, connection errors) are retried up
    to ``max_retries`` times, waiting ``retry_delay * 2**(attempt - 1)``
    seconds before retry number ``attempt``. Other failures surface at once.
    """

    def __init__(
        self,
        llm: BaseChatModel,
        model_name: str,
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ) -> None:
        self.llm = llm
        self.model_name = model_name
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @classmethod
    def from_settings(cls, settings: Settings) -> "LangChainGenerator":
        return cls(
            create_llm(settings),
            model_name=settings.active_model,
            max_retries=settings.ai_max_retries,
            retry_delay=settings.ai_retry_delay_seconds,
        )

    async def _invoke(self, system_prompt: str, user_prompt: str) -> Completion:
        handler = MetricsCallbackHandler()
        config: Any = {"callbacks": [handler]}
        response = await self.llm.ainvoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)],
            config=config,
        )
        text = response.content if isinstance(response.content, str) else str(response.content)
        if not text.strip():
            raise InvalidResponse("Backend returned an empty response")
        return Completion(
            text=text,
            prompt_tokens=handler.prompt_tokens,
            completion_tokens=handler.completion_tokens,
            estimated_cost=handler.estimated_cost,
        )

    async def generate(self, system_prompt: str, user_prompt: str, *, purpose: str = "insight") -> Completion:
        start = time.monotonic()
        attempt = 0
        while True:
            try:
                completion = await self._invoke(system_prompt, user_prompt)
            except Exception as exc:
                error = classify_error(exc)
                if error.retryable and attempt < self.max_retries:
                    attempt += 1
                    wait = self.retry_delay * 2 ** (attempt - 1)
                    reason = "rate_limit" if isinstance(error, RateLimited) else "unavailable"
                    AI_RETRIES_TOTAL.labels(reason=reason).inc()
                    logger.warning(
                        "AI call failed (%s), retry %d/%d in %.1fs",
                        error,
                        attempt,
                        self.max_retries,
                        wait,
                    )
                    await asyncio.sleep(wait)
                    continue
                AI_CALLS_TOTAL.labels(purpose=purpose, status="error").inc()
                AI_CALL_DURATION.labels(purpose=purpose).observe(time.monotonic() - start)
                if error is exc:
                    raise
                raise error from exc

            AI_CALLS_TOTAL.labels(purpose=purpose, status="success").inc()
            AI_CALL_DURATION.labels(purpose=purpose).observe(time.monotonic() - start)
            return completion
