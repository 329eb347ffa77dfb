"""Report orchestration and the GENERATING -> COMPLETED | ERROR state machine.

The GENERATING row is committed before any aggregation or AI work starts, so
a caller polling by id always sees the report. ``start_report`` returns that
row at once and finishes the work in a background task.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from incident_insights.ai import prompts
from incident_insights.ai.client import TextGenerator
from incident_insights.ai.parser import extract, truncate
from incident_insights.ai.schema import ReportAnswer
from incident_insights.analytics.aggregator import Aggregator
from incident_insights.errors import InvalidPeriod, ReportGenerationFailed, ReportNotFound
from incident_insights.models import AnalysisKind, IncidentFilters, Report, ReportKind, ReportStatus
from incident_insights.observability.metrics import REPORT_DURATION, REPORTS_IN_PROGRESS, REPORTS_TOTAL
from incident_insights.services.requests import ReportRequest
from incident_insights.storage import store
from incident_insights.storage.audit import record_audit

logger = logging.getLogger(__name__)

MAX_PERIOD = timedelta(days=365)
EXECUTIVE_SUMMARY_LIMIT = 2000


def validate_period(period_start: datetime, period_end: datetime) -> None:
    """Raise InvalidPeriod unless start < end and the span is under one year."""
    if period_start >= period_end:
        msg = f"Period start {period_start.isoformat()} must be before end {period_end.isoformat()}"
        raise InvalidPeriod(msg)
    if period_end - period_start >= MAX_PERIOD:
        msg = f"Period of {(period_end - period_start).days} days exceeds the one-year limit"
        raise InvalidPeriod(msg)


def report_title(kind: ReportKind, period_start: datetime) -> str:
    return f"{kind.value.capitalize()} report - {period_start.date().isoformat()}"


class ReportService:
    def __init__(
        self,
        aggregator: Aggregator,
        generator: TextGenerator,
        db_path: str | None = None,
        clock: Callable[[], datetime] = store.utcnow,
    ) -> None:
        self.aggregator = aggregator
        self.generator = generator
        self.db_path = db_path
        self.clock = clock
        self._tasks: set[asyncio.Task[Report]] = set()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _create(self, request: ReportRequest) -> Report:
        validate_period(request.period_start, request.period_end)
        with store.connect(self.db_path) as conn:
            report = store.create_report(
                conn,
                kind=request.kind,
                period_start=request.period_start,
                period_end=request.period_end,
                title=report_title(request.kind, request.period_start),
                filters=request.incident_filters(),
                requested_by=request.requested_by,
                model=self.generator.model_name,
            )
        logger.info(
            "Report %s created (%s, %s .. %s)",
            report["id"],
            request.kind,
            request.period_start,
            request.period_end,
        )
        return report

    async def generate_report(self, request: ReportRequest, trigger: str = "manual") -> Report:
        """Create and fully generate a report, returning it in its terminal state.

        Raises:
            InvalidPeriod: The requested period is rejected before anything is stored.
            ReportGenerationFailed: Aggregation or the AI call failed. The report is
                stored as ERROR and a failed audit entry is appended.
        """
        report = self._create(request)
        return await self._run(report, trigger)

    async def start_report(self, request: ReportRequest, trigger: str = "manual") -> Report:
        """Create the report and generate it in the background. Returns the GENERATING row."""
        report = self._create(request)
        task = asyncio.create_task(self._run_in_background(dict(report), trigger))  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return report

    async def _run_in_background(self, report: Report, trigger: str) -> Report:
        try:
            return await self._run(report, trigger)
        except ReportGenerationFailed:
            # Already recorded on the report and in the audit log
            return report

    async def wait_for_pending(self) -> None:
        """Await every background generation started by this service."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _run(self, report: Report, trigger: str) -> Report:
        started = time.monotonic()
        filters: IncidentFilters | None = report["filters"]
        user_prompt: str | None = None
        REPORTS_IN_PROGRESS.inc()
        try:
            metrics = await self.aggregator.aggregate(report["period_start"], report["period_end"], filters)
            report["metrics"] = metrics
            user_prompt = prompts.build_report_prompt(metrics, report["period_start"], report["period_end"], filters)

            ai_started = time.monotonic()
            completion = await self.generator.generate(prompts.SYSTEM_PROMPT, user_prompt, purpose="report")
            ai_latency_ms = int((time.monotonic() - ai_started) * 1000)

            answer = extract(completion.text, ReportAnswer)
            summary = answer.executive_summary or answer.insight
            report["content"] = answer.to_content()
            report["executive_summary"] = truncate(summary, EXECUTIVE_SUMMARY_LIMIT) if summary else None
            report["critical_areas"] = answer.critical_areas
            report["recommendations"] = answer.recommendations
            report["model"] = self.generator.model_name
            report["status"] = ReportStatus.COMPLETED
            report["completed_at"] = self.clock()
            report["processing_ms"] = int((time.monotonic() - started) * 1000)
            with store.connect(self.db_path) as conn:
                store.update_report(conn, report)

            self._audit(
                report,
                prompt=user_prompt,
                output={"response": completion.text},
                latency_ms=ai_latency_ms,
                prompt_tokens=completion.prompt_tokens,
                completion_tokens=completion.completion_tokens,
                estimated_cost=completion.estimated_cost,
                success=True,
            )
            REPORTS_TOTAL.labels(trigger=trigger, status="success").inc()
            logger.info("Report %s completed in %d ms", report["id"], report["processing_ms"])
            return report
        except Exception as exc:
            report["status"] = ReportStatus.ERROR
            report["processing_ms"] = int((time.monotonic() - started) * 1000)
            report["error_message"] = str(exc) or type(exc).__name__
            logger.exception("Report %s failed", report["id"])
            try:
                with store.connect(self.db_path) as conn:
                    store.update_report(conn, report)
            except Exception:
                logger.exception("Failed to persist ERROR state for report %s", report["id"])
            self._audit(report, prompt=user_prompt, output={}, success=False, error_message=report["error_message"])
            REPORTS_TOTAL.labels(trigger=trigger, status="error").inc()
            raise ReportGenerationFailed(report["id"], report["error_message"]) from exc
        finally:
            REPORTS_IN_PROGRESS.dec()
            REPORT_DURATION.observe(time.monotonic() - started)

    def _audit(
        self,
        report: Report,
        *,
        prompt: str | None,
        output: dict[str, object],
        latency_ms: int = 0,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        estimated_cost: float = 0.0,
        success: bool,
        error_message: str | None = None,
    ) -> None:
        try:
            with store.connect(self.db_path) as conn:
                record_audit(
                    conn,
                    kind=AnalysisKind.REPORT,
                    input_data={
                        "report_id": report["id"],
                        "kind": report["kind"].value,
                        "period_start": report["period_start"].isoformat(),
                        "period_end": report["period_end"].isoformat(),
                        "filters": report["filters"],
                    },
                    output_data=output,
                    prompt=prompt,
                    model=report["model"],
                    latency_ms=latency_ms,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    estimated_cost=estimated_cost,
                    success=success,
                    error_message=error_message,
                    executed_at=self.clock(),
                )
        except Exception:
            logger.exception("Failed to write report audit entry for %s", report["id"])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_report(self, report_id: str) -> Report:
        with store.connect(self.db_path) as conn:
            report = store.get_report(conn, report_id)
        if report is None:
            raise ReportNotFound(f"Report not found: {report_id}")
        return report

    def list_reports(
        self,
        kind: ReportKind | None = None,
        status: ReportStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 20,
    ) -> list[Report]:
        with store.connect(self.db_path) as conn:
            return store.find_reports(conn, kind=kind, status=status, since=since, until=until, limit=limit)

    def latest_report(self, kind: ReportKind) -> Report | None:
        with store.connect(self.db_path) as conn:
            return store.get_latest_completed_report(conn, kind)

    def in_progress_reports(self) -> list[Report]:
        with store.connect(self.db_path) as conn:
            return store.get_generating_reports(conn)
