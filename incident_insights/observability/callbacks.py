"""LangChain callback handler that records Prometheus metrics.

Create a fresh ``MetricsCallbackHandler`` per call and pass it via
``config["callbacks"]``.  The handler writes to module-level metric
singletons defined in :mod:`incident_insights.observability.metrics` and
keeps the token counts of the last completed call for the audit log.

All callback methods are wrapped in try/except: metrics collection must
never crash a request.
"""

import logging
from typing import Any
from uuid import UUID

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.outputs import LLMResult

from incident_insights.observability.metrics import LLM_ESTIMATED_COST, LLM_TOKEN_USAGE, estimate_cost

logger = logging.getLogger(__name__)


def _usage_from_result(response: LLMResult) -> tuple[int, int, str]:
    """(prompt_tokens, completion_tokens, model_name) from either llm_output or message usage metadata."""
    llm_output = response.llm_output or {}
    model_name: str = llm_output.get("model_name") or llm_output.get("model") or ""

    token_usage: dict[str, int] | None = llm_output.get("token_usage") or llm_output.get("usage")
    if token_usage:
        prompt = token_usage.get("prompt_tokens", token_usage.get("input_tokens", 0))
        completion = token_usage.get("completion_tokens", token_usage.get("output_tokens", 0))
        return int(prompt), int(completion), model_name

    for generations in response.generations:
        for generation in generations:
            message = getattr(generation, "message", None)
            usage = getattr(message, "usage_metadata", None)
            if usage:
                return int(usage.get("input_tokens", 0)), int(usage.get("output_tokens", 0)), model_name
    return 0, 0, model_name


class MetricsCallbackHandler(BaseCallbackHandler):
    """Captures LLM token usage and cost for one backend call."""

    def __init__(self) -> None:
        super().__init__()
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.estimated_cost = 0.0

    def on_llm_end(
        self,
        response: LLMResult,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        try:
            prompt_tokens, completion_tokens, model_name = _usage_from_result(response)
            if not prompt_tokens and not completion_tokens:
                return

            self.prompt_tokens = prompt_tokens
            self.completion_tokens = completion_tokens
            LLM_TOKEN_USAGE.labels(type="prompt").inc(prompt_tokens)
            LLM_TOKEN_USAGE.labels(type="completion").inc(completion_tokens)

            self.estimated_cost = estimate_cost(model_name, prompt_tokens, completion_tokens)
            LLM_ESTIMATED_COST.inc(self.estimated_cost)
        except Exception:
            logger.debug("metrics: on_llm_end failed", exc_info=True)

    def on_llm_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        logger.debug("LLM run %s errored: %s", run_id, error)
