"""APScheduler integration for scheduled report generation.

Uses AsyncIOScheduler with CronTrigger to run DAILY, WEEKLY and MONTHLY
reports in the reference time zone.  A job whose cron expression is empty is
not registered; a failed run is logged and the next run proceeds normally.
"""

import contextlib
import logging
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from incident_insights.config import get_settings
from incident_insights.errors import InsightEngineError
from incident_insights.models import ReportKind
from incident_insights.services.reports import ReportService
from incident_insights.services.requests import ReportRequest

logger = logging.getLogger(__name__)

SYSTEM_REQUESTER = "SYSTEM"

_scheduler: AsyncIOScheduler | None = None


def _start_of_day(day: datetime) -> datetime:
    return datetime.combine(day.date(), time.min, tzinfo=day.tzinfo)


def _end_of_day(day: datetime) -> datetime:
    return datetime.combine(day.date(), time.max, tzinfo=day.tzinfo)


def scheduled_period(kind: ReportKind, now: datetime) -> tuple[datetime, datetime]:
    """Period covered by a scheduled report run at ``now`` (local time).

    DAILY: the whole previous day. WEEKLY: the seven days before today.
    MONTHLY: the first day of the previous month up to the end of yesterday.
    """
    yesterday_end = _end_of_day(now - timedelta(days=1))
    if kind == ReportKind.DAILY:
        return _start_of_day(now - timedelta(days=1)), yesterday_end
    if kind == ReportKind.WEEKLY:
        return _start_of_day(now - timedelta(days=7)), yesterday_end
    if kind == ReportKind.MONTHLY:
        first_of_this_month = now.replace(day=1)
        first_of_previous = (first_of_this_month - timedelta(days=1)).replace(day=1)
        return _start_of_day(first_of_previous), yesterday_end
    msg = f"No schedule for report kind {kind}"
    raise ValueError(msg)


async def run_scheduled_report(service: ReportService, kind: ReportKind, tz: ZoneInfo) -> None:
    """Job body: generate one report for the period ending yesterday. Never raises."""
    start, end = scheduled_period(kind, datetime.now(tz))
    logger.info("Scheduled %s report starting for %s .. %s", kind, start, end)
    request = ReportRequest(kind=kind, period_start=start, period_end=end, requested_by=SYSTEM_REQUESTER)
    try:
        report = await service.generate_report(request, trigger="scheduled")
        logger.info("Scheduled %s report %s completed", kind, report["id"])
    except InsightEngineError:
        logger.exception("Scheduled %s report failed", kind)


def start_scheduler(service: ReportService) -> None:
    """Start the APScheduler with one job per configured cron expression."""
    global _scheduler  # noqa: PLW0603

    settings = get_settings()
    tz = ZoneInfo(settings.reference_timezone)
    schedules = {
        ReportKind.DAILY: settings.report_daily_cron,
        ReportKind.WEEKLY: settings.report_weekly_cron,
        ReportKind.MONTHLY: settings.report_monthly_cron,
    }
    active = {kind: cron for kind, cron in schedules.items() if cron}
    if not active:
        logger.info("Report scheduler disabled (no REPORT_*_CRON set)")
        return

    _scheduler = AsyncIOScheduler(timezone=tz)
    for kind, cron in active.items():
        _scheduler.add_job(
            run_scheduled_report,
            trigger=CronTrigger.from_crontab(cron, timezone=tz),
            args=[service, kind, tz],
            id=f"{kind.value.lower()}_report",
            name=f"{kind.value.capitalize()} incident report",
            replace_existing=True,
        )
        logger.info("Scheduled %s report with cron: %s", kind, cron)
    _scheduler.start()


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Report scheduler stopped")
        _scheduler = None
