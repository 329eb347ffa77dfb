"""FastAPI backend for the incident insight engine.

The engine (aggregator, AI backend, cache and services) is built once at
startup and shared across requests through ``app.state.engine``.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any

import httpx
from fastapi import Body, FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from incident_insights.config import get_settings
from incident_insights.errors import InsightGenerationFailed, InvalidPeriod, ReportNotFound
from incident_insights.models import AnalysisKind, ReportKind, ReportStatus, UsageSummary
from incident_insights.observability.metrics import APP_INFO, COMPONENT_HEALTHY, REQUEST_DURATION, REQUESTS_TOTAL
from incident_insights.report.formatter import format_report_markdown
from incident_insights.report.scheduler import start_scheduler, stop_scheduler
from incident_insights.services.classification import SeverityResult
from incident_insights.services.engine import Engine, build_engine
from incident_insights.services.insights import InsightResult
from incident_insights.services.requests import (
    AnyInsightRequest,
    ClassificationRequest,
    QuestionRequest,
    ReportRequest,
)
from incident_insights.storage.audit import summarize_usage
from incident_insights.storage.store import connect

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ReportResponse(BaseModel):
    """Response body for report endpoints."""

    id: str
    kind: ReportKind
    status: ReportStatus
    title: str
    period_start: datetime
    period_end: datetime
    executive_summary: str | None = None
    content: dict[str, Any] = Field(default_factory=dict)
    metrics: dict[str, Any] | None = None
    critical_areas: list[Any] = Field(default_factory=list)
    recommendations: list[Any] = Field(default_factory=list)
    filters: dict[str, Any] | None = None
    model: str | None = None
    generated_at: datetime
    completed_at: datetime | None = None
    processing_ms: int | None = None
    requested_by: str | None = None
    error_message: str | None = None
    markdown: str | None = None


class SweepResponse(BaseModel):
    removed: int


class ComponentHealth(BaseModel):
    """Health status of a single dependency component."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    model: str
    components: list[ComponentHealth]


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the engine once at startup; drain pending reports and tear down on shutdown."""
    settings = get_settings()
    APP_INFO.info({"version": "0.1.0", "model": settings.active_model})

    logger.info("Building incident insight engine...")
    try:
        engine = build_engine(settings)
        app.state.engine = engine
        logger.info("Engine ready")
    except Exception:
        logger.exception("Failed to build engine at startup")
        raise

    start_scheduler(engine.reports)
    yield
    # Background reports must reach COMPLETED or ERROR before the loop closes
    await engine.reports.wait_for_pending()
    stop_scheduler()
    logger.info("Shutting down incident insight engine")


app = FastAPI(title="Incident Insights", lifespan=lifespan)


def _engine(request: Request) -> Engine:
    return request.app.state.engine  # type: ignore[no-any-return]


def _to_response(report: Any, include_markdown: bool = False) -> ReportResponse:
    response = ReportResponse(**report)
    if include_markdown:
        response.markdown = format_report_markdown(report)
    return response


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/reports", response_model=ReportResponse, status_code=202)
async def create_report(body: ReportRequest, request: Request) -> ReportResponse:
    """Start generating a report. Poll GET /reports/{id} until it leaves GENERATING."""
    try:
        report = await _engine(request).reports.start_report(body)
    except InvalidPeriod as exc:
        REQUESTS_TOTAL.labels(endpoint="/reports", status="invalid").inc()
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    REQUESTS_TOTAL.labels(endpoint="/reports", status="accepted").inc()
    return _to_response(report)


@app.get("/reports", response_model=list[ReportResponse])
async def list_reports(
    request: Request,
    kind: ReportKind | None = None,
    status: ReportStatus | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 20,
) -> list[ReportResponse]:
    """Search reports, most recent first."""
    reports = _engine(request).reports.list_reports(kind=kind, status=status, since=since, until=until, limit=limit)
    return [_to_response(r) for r in reports]


@app.get("/reports/latest/{kind}", response_model=ReportResponse)
async def latest_report(kind: ReportKind, request: Request) -> ReportResponse:
    report = _engine(request).reports.latest_report(kind)
    if report is None:
        raise HTTPException(status_code=404, detail=f"No completed {kind} report")
    return _to_response(report, include_markdown=True)


@app.get("/reports/{report_id}", response_model=ReportResponse)
async def get_report(report_id: str, request: Request) -> ReportResponse:
    try:
        report = _engine(request).reports.get_report(report_id)
    except ReportNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _to_response(report, include_markdown=report["status"] != ReportStatus.GENERATING)


@app.post("/insights", response_model=InsightResult)
async def create_insight(
    body: Annotated[AnyInsightRequest, Body(discriminator="kind")],
    request: Request,
) -> InsightResult:
    """Return a cached insight for the context or generate a fresh one."""
    start = time.monotonic()
    try:
        result = await _engine(request).insights.generate_insight(body)
    except InsightGenerationFailed as exc:
        REQUESTS_TOTAL.labels(endpoint="/insights", status="error").inc()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    finally:
        REQUEST_DURATION.labels(endpoint="/insights").observe(time.monotonic() - start)
    REQUESTS_TOTAL.labels(endpoint="/insights", status="cached" if result.from_cache else "generated").inc()
    return result


@app.post("/insights/question", response_model=InsightResult)
async def ask_question(body: QuestionRequest, request: Request) -> InsightResult:
    start = time.monotonic()
    try:
        result = await _engine(request).insights.answer_question(body.question, body.context)
    except InsightGenerationFailed as exc:
        REQUESTS_TOTAL.labels(endpoint="/insights/question", status="error").inc()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    finally:
        REQUEST_DURATION.labels(endpoint="/insights/question").observe(time.monotonic() - start)
    REQUESTS_TOTAL.labels(endpoint="/insights/question", status="success").inc()
    return result


@app.post("/incidents/classify", response_model=SeverityResult)
async def classify_incident(body: ClassificationRequest, request: Request) -> SeverityResult:
    """Score the severity of a newly reported incident (1-10)."""
    return await _engine(request).classifier.classify_severity(body)


@app.post("/insights/sweep", response_model=SweepResponse)
async def sweep_insights(request: Request) -> SweepResponse:
    """Delete expired insight cache entries."""
    return SweepResponse(removed=_engine(request).cache.sweep_expired())


@app.delete("/insights/area/{area}", response_model=SweepResponse)
async def invalidate_area(area: str, request: Request) -> SweepResponse:
    """Drop cached critical-area insights for an area (e.g. after new incidents arrive there)."""
    return SweepResponse(removed=_engine(request).cache.invalidate_area(area))


@app.get("/audit/usage")
async def audit_usage(
    request: Request,
    since: datetime | None = None,
    until: datetime | None = None,
    kind: AnalysisKind | None = None,
) -> UsageSummary:
    """Call counts, tokens, latency and cost of AI invocations over a window."""
    with connect(_engine(request).db_path) as conn:
        return summarize_usage(conn, since=since, until=until, kind=kind)


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Check health of the engine and its dependencies."""
    settings = get_settings()
    engine = _engine(request)
    components: list[ComponentHealth] = []

    # --- SQLite store ---
    try:
        with connect(engine.db_path) as conn:
            conn.execute("SELECT 1").fetchone()
        components.append(ComponentHealth(name="database", status="healthy"))
    except Exception as exc:
        components.append(ComponentHealth(name="database", status="unhealthy", detail=str(exc)))

    # --- Incident API (optional) ---
    if settings.incident_api_url:
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{settings.incident_api_url.rstrip('/')}/health")
                if resp.status_code == 200:
                    components.append(ComponentHealth(name="incident_api", status="healthy"))
                else:
                    components.append(
                        ComponentHealth(
                            name="incident_api",
                            status="unhealthy",
                            detail=f"HTTP {resp.status_code}",
                        )
                    )
        except Exception as exc:
            components.append(ComponentHealth(name="incident_api", status="unhealthy", detail=str(exc)))

    # --- Reports stuck in GENERATING ---
    in_progress = engine.reports.in_progress_reports()
    components.append(
        ComponentHealth(
            name="report_queue",
            status="healthy",
            detail=f"{len(in_progress)} report(s) generating",
        )
    )

    # --- Update Prometheus gauges ---
    for comp in components:
        COMPONENT_HEALTHY.labels(component=comp.name).set(1.0 if comp.status == "healthy" else 0.0)

    # --- Overall status ---
    healthy_count = sum(1 for c in components if c.status == "healthy")
    if healthy_count == len(components):
        overall = "healthy"
    elif healthy_count == 0:
        overall = "unhealthy"
    else:
        overall = "degraded"

    return HealthResponse(status=overall, model=settings.active_model, components=components)
