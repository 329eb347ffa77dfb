"""Severity scoring for newly reported incidents.

The generative backend is asked for a 1-10 score. When the backend is not
configured, fails, or answers with something that is not a score, the
severity comes from a fixed per-category table instead, so classification
always yields a usable value.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from incident_insights.ai import prompts
from incident_insights.ai.client import Completion, TextGenerator
from incident_insights.ai.parser import parse_severity
from incident_insights.models import AnalysisKind, Category
from incident_insights.observability.metrics import SEVERITY_CLASSIFICATIONS_TOTAL
from incident_insights.services.requests import ClassificationRequest
from incident_insights.storage.audit import record_audit
from incident_insights.storage.store import connect, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY = 5

SEVERITY_BY_CATEGORY: dict[Category, int] = {
    Category.FALLEN_POLE: 8,
    Category.EROSION: 8,
    Category.FLOODING: 8,
    Category.WATER_LEAK: 8,
    Category.SEWAGE: 8,
    Category.POTHOLE: 6,
    Category.PAVING: 6,
    Category.FALLEN_TREE: 6,
    Category.DENGUE: 6,
    Category.STREET_LIGHTING: 5,
    Category.SIGNAGE: 5,
    Category.ACCUMULATED_TRASH: 5,
    Category.DRAINAGE: 5,
    Category.SIDEWALK: 4,
    Category.STORM_DRAIN: 4,
    Category.BURNT_OUT_LAMP: 4,
    Category.CLEANING: 4,
    Category.PARK: 3,
    Category.STREET_FURNITURE: 3,
    Category.TREE_PRUNING: 3,
}


def fallback_severity(category: Category) -> int:
    return SEVERITY_BY_CATEGORY.get(category, DEFAULT_SEVERITY)


class SeverityResult(BaseModel):
    severity: int = Field(ge=1, le=10)
    source: Literal["ai", "fallback"]


class SeverityClassifier:
    def __init__(
        self,
        generator: TextGenerator,
        db_path: str | None = None,
        use_ai: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.generator = generator
        self.db_path = db_path
        self.use_ai = use_ai
        self.clock = clock

    async def classify_severity(self, request: ClassificationRequest) -> SeverityResult:
        """Score one incident, falling back to the category table on any failure."""
        if not self.use_ai:
            return self._fallback(request, "AI backend not configured")

        user_prompt = prompts.build_classification_prompt(request.category, request.area, request.description)
        start = time.monotonic()
        try:
            completion = await self.generator.generate(prompts.SYSTEM_PROMPT, user_prompt, purpose="classification")
        except Exception as exc:
            logger.exception("Severity classification call failed")
            self._audit(request, user_prompt, start, None, None, error_message=str(exc))
            return self._fallback(request, str(exc))

        severity = parse_severity(completion.text)
        if severity is None:
            logger.warning("No severity score in response: %r", completion.text[:80])
            self._audit(request, user_prompt, start, completion, None, error_message="No severity score in response")
            return self._fallback(request, "unusable answer")

        self._audit(request, user_prompt, start, completion, severity)
        self._count("ai")
        return SeverityResult(severity=severity, source="ai")

    def _fallback(self, request: ClassificationRequest, reason: str) -> SeverityResult:
        severity = fallback_severity(request.category)
        logger.info("Using fallback severity %d for %s (%s)", severity, request.category, reason)
        self._count("fallback")
        return SeverityResult(severity=severity, source="fallback")

    def _count(self, source: str) -> None:
        try:
            SEVERITY_CLASSIFICATIONS_TOTAL.labels(source=source).inc()
        except Exception:
            logger.debug("metrics: classification counter failed", exc_info=True)

    def _audit(
        self,
        request: ClassificationRequest,
        prompt: str,
        start: float,
        completion: Completion | None,
        severity: int | None,
        error_message: str | None = None,
    ) -> None:
        output: dict[str, object] = {}
        if completion is not None:
            output["response"] = completion.text
        if severity is not None:
            output["severity"] = severity
        try:
            with connect(self.db_path) as conn:
                record_audit(
                    conn,
                    kind=AnalysisKind.CLASSIFICATION,
                    input_data=request.model_dump(mode="json"),
                    output_data=output,
                    prompt=prompt,
                    model=self.generator.model_name,
                    latency_ms=int((time.monotonic() - start) * 1000),
                    prompt_tokens=completion.prompt_tokens if completion else 0,
                    completion_tokens=completion.completion_tokens if completion else 0,
                    estimated_cost=completion.estimated_cost if completion else 0.0,
                    success=severity is not None,
                    error_message=error_message,
                    executed_at=self.clock(),
                )
        except Exception:
            logger.exception("Failed to write classification audit entry")
