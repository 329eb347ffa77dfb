"""Insight orchestration: context -> digest -> cache -> aggregate -> prompt -> AI -> parse -> store -> audit.

Generation for one digest is single-flight within the process: concurrent
requests for the same context wait on a per-digest lock and then read the
freshly stored entry instead of calling the backend again.
"""

import asyncio
import logging
import time
import weakref
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel

from incident_insights.ai import prompts
from incident_insights.ai.client import Completion, TextGenerator
from incident_insights.ai.parser import extract
from incident_insights.ai.schema import InsightAnswer
from incident_insights.analytics import patterns
from incident_insights.analytics.aggregator import Aggregator, compute_metrics
from incident_insights.cache.hashing import context_hash
from incident_insights.cache.insight_cache import InsightCache
from incident_insights.config import EngineConfig
from incident_insights.errors import InsightGenerationFailed
from incident_insights.models import AggregatedMetrics, AnalysisKind, IncidentFilters, InsightCacheEntry, InsightKind
from incident_insights.services.requests import (
    CriticalAreaRequest,
    ExplanationRequest,
    InsightRequest,
    PatternRequest,
    PredictionRequest,
    QuestionRequest,
    TrendRequest,
)
from incident_insights.storage.audit import record_audit
from incident_insights.storage.store import connect, utcnow

logger = logging.getLogger(__name__)

CRITICAL_AREA_WINDOW = timedelta(days=30)
TREND_WINDOW = timedelta(days=30)
PATTERN_WINDOW = timedelta(days=90)
PREDICTION_WINDOW = timedelta(days=180)
QUESTION_WINDOW = timedelta(days=30)

# Answer keys that already live in dedicated cache columns
_ENTRY_KEYS = {"insight", "confidence", "relevance"}


class InsightResult(BaseModel):
    id: str
    kind: InsightKind
    insight: str
    confidence: float
    relevance: int
    support_data: dict[str, Any] | None = None
    model: str
    generated_at: datetime
    expires_at: datetime | None = None
    context_hash: str
    from_cache: bool

    @classmethod
    def from_entry(cls, entry: InsightCacheEntry, from_cache: bool) -> "InsightResult":
        return cls(**entry, from_cache=from_cache)  # type: ignore[arg-type]


def _metrics_summary(metrics: AggregatedMetrics) -> dict[str, Any]:
    return {
        "total_current": metrics["total_current"],
        "total_prior": metrics["total_prior"],
        "variance_percent": metrics["variance_percent"],
        "severity_mean": metrics["severity_mean"],
        "critical_areas": [c["area"] for c in metrics["critical_areas"]],
    }


class InsightService:
    def __init__(
        self,
        aggregator: Aggregator,
        generator: TextGenerator,
        cache: InsightCache,
        config: EngineConfig,
        db_path: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.aggregator = aggregator
        self.generator = generator
        self.cache = cache
        self.config = config
        self.db_path = db_path
        self.clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_insight(self, request: InsightRequest) -> InsightResult:
        """Return the cached insight for the request's context, generating it on a miss."""
        context = request.context()
        logger.info("Insight requested: %s", request.kind)

        return await self._resolve(request.kind, context, lambda: self._prepare(request))

    async def answer_question(self, question: str, context: dict[str, Any] | None = None) -> InsightResult:
        """Answer a free-form question, cached as an EXPLANATION insight."""
        request = QuestionRequest(question=question, context=context or {})
        cache_context = request.cache_context()
        logger.info("Free question: %s", question)

        async def build() -> tuple[str, AggregatedMetrics | None]:
            metrics = None
            filters = _filters_from_context(request.context)
            if filters:
                now = self.clock()
                metrics = await self.aggregator.aggregate(now - QUESTION_WINDOW, now, filters)
            return prompts.build_question_prompt(cache_context, metrics), metrics

        return await self._resolve(InsightKind.EXPLANATION, cache_context, build)

    # ------------------------------------------------------------------
    # Cache + single flight
    # ------------------------------------------------------------------

    def _lock_for(self, digest: str) -> asyncio.Lock:
        lock = self._locks.get(digest)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[digest] = lock
        return lock

    def _lookup(self, kind: InsightKind, digest: str) -> InsightCacheEntry | None:
        entry = self.cache.lookup(digest, self.clock())
        self.cache.record_lookup(kind, hit=entry is not None)
        return entry

    async def _resolve(
        self,
        kind: InsightKind,
        context: dict[str, Any],
        build: Callable[[], Awaitable[tuple[str, AggregatedMetrics | None]]],
    ) -> InsightResult:
        digest = context_hash(context)
        entry = self._lookup(kind, digest)
        if entry is not None:
            logger.debug("Insight cache hit: %s", digest[:12])
            return InsightResult.from_entry(entry, from_cache=True)

        lock = self._lock_for(digest)
        async with lock:
            # Another waiter may have produced it while we were queued
            entry = self.cache.lookup(digest, self.clock())
            if entry is not None:
                return InsightResult.from_entry(entry, from_cache=True)

            try:
                user_prompt, metrics = await build()
            except Exception as exc:
                logger.exception("Failed to prepare %s insight", kind)
                raise InsightGenerationFailed(f"{kind} insight preparation failed: {exc}") from exc
            answer, completion, latency_ms = await self._call(kind, context, user_prompt)

            support_data = {k: v for k, v in answer.to_content().items() if k not in _ENTRY_KEYS}
            if metrics is not None:
                support_data["metrics"] = _metrics_summary(metrics)
            entry = self.cache.store(
                kind,
                context,
                digest,
                answer,
                self.config.ttl_for(kind),
                self.generator.model_name,
                support_data=support_data,
                now=self.clock(),
            )
            self._audit(
                input_data=context,
                output_data={"response": completion.text},
                prompt=user_prompt,
                latency_ms=latency_ms,
                completion=completion,
                success=True,
            )
            return InsightResult.from_entry(entry, from_cache=False)

    async def _call(
        self,
        kind: InsightKind,
        context: dict[str, Any],
        user_prompt: str,
    ) -> tuple[InsightAnswer, Completion, int]:
        start = time.monotonic()
        try:
            completion = await self.generator.generate(prompts.SYSTEM_PROMPT, user_prompt, purpose="insight")
        except Exception as exc:
            latency_ms = int((time.monotonic() - start) * 1000)
            logger.exception("AI call failed for %s insight", kind)
            self._audit(
                input_data=context,
                output_data={},
                prompt=user_prompt,
                latency_ms=latency_ms,
                completion=None,
                success=False,
                error_message=str(exc),
            )
            raise InsightGenerationFailed(f"{kind} insight generation failed: {exc}") from exc

        latency_ms = int((time.monotonic() - start) * 1000)
        return extract(completion.text, InsightAnswer), completion, latency_ms

    def _audit(
        self,
        *,
        input_data: dict[str, Any],
        output_data: dict[str, Any],
        prompt: str,
        latency_ms: int,
        completion: Completion | None,
        success: bool,
        error_message: str | None = None,
    ) -> None:
        try:
            with connect(self.db_path) as conn:
                record_audit(
                    conn,
                    kind=AnalysisKind.INSIGHT,
                    input_data=input_data,
                    output_data=output_data,
                    prompt=prompt,
                    model=self.generator.model_name,
                    latency_ms=latency_ms,
                    prompt_tokens=completion.prompt_tokens if completion else 0,
                    completion_tokens=completion.completion_tokens if completion else 0,
                    estimated_cost=completion.estimated_cost if completion else 0.0,
                    success=success,
                    error_message=error_message,
                    executed_at=self.clock(),
                )
        except Exception:
            logger.exception("Failed to write insight audit entry")

    # ------------------------------------------------------------------
    # Per-kind preparation
    # ------------------------------------------------------------------

    async def _prepare(self, request: InsightRequest) -> tuple[str, AggregatedMetrics | None]:
        context = request.context()
        now = self.clock()

        if isinstance(request, CriticalAreaRequest):
            start = request.period_start or now - CRITICAL_AREA_WINDOW
            end = request.period_end or now
            records = await self.aggregator.fetch(start, end)
            needle = request.area.lower()
            area_records = [
                r
                for r in records
                if r["area"].lower() == needle and (request.category is None or r["category"] == request.category)
            ]
            area_metrics = compute_metrics(area_records, [], tz=self.aggregator.tz)
            city_metrics = compute_metrics(records, [], tz=self.aggregator.tz)
            return prompts.build_critical_area_prompt(context, area_metrics, city_metrics), area_metrics

        if isinstance(request, TrendRequest):
            start = request.period_start or now - TREND_WINDOW
            end = request.period_end or now
            filters = IncidentFilters(category=request.category.value)
            if request.area:
                filters["area"] = request.area
            metrics = await self.aggregator.aggregate(start, end, filters)
            return prompts.build_trend_prompt(context, metrics), metrics

        if isinstance(request, PatternRequest):
            filters = request.filters.to_filters() if request.filters else None
            current = await self.aggregator.fetch(now - PATTERN_WINDOW, now, filters)
            prior = await self.aggregator.fetch_prior(now - PATTERN_WINDOW, now, filters)
            metrics = compute_metrics(current, prior, tz=self.aggregator.tz)
            return prompts.build_pattern_prompt(context, metrics, patterns.anomalies(current)), metrics

        if isinstance(request, PredictionRequest):
            metrics = await self.aggregator.aggregate(now - PREDICTION_WINDOW, now)
            return prompts.build_prediction_prompt(context, metrics), metrics

        if isinstance(request, ExplanationRequest):
            return prompts.build_explanation_prompt(context), None

        msg = f"Unsupported insight request: {type(request).__name__}"
        raise TypeError(msg)


def _filters_from_context(context: dict[str, Any]) -> IncidentFilters | None:
    filters = IncidentFilters()
    if context.get("area"):
        filters["area"] = str(context["area"])
    if context.get("category"):
        filters["category"] = str(context["category"])
    return filters or None
