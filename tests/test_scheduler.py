"""Tests for scheduled report periods and the APScheduler wiring."""

from datetime import datetime, time
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from incident_insights.config import Settings
from incident_insights.errors import ReportGenerationFailed
from incident_insights.models import ReportKind
from incident_insights.report import scheduler
from incident_insights.report.scheduler import (
    SYSTEM_REQUESTER,
    run_scheduled_report,
    scheduled_period,
    start_scheduler,
    stop_scheduler,
)

TZ = ZoneInfo("America/Sao_Paulo")
END_OF_DAY = time.max


class TestScheduledPeriod:
    def test_daily_covers_yesterday(self) -> None:
        start, end = scheduled_period(ReportKind.DAILY, datetime(2024, 6, 15, 6, 0, tzinfo=TZ))
        assert start == datetime(2024, 6, 14, 0, 0, tzinfo=TZ)
        assert end == datetime.combine(datetime(2024, 6, 14).date(), END_OF_DAY, tzinfo=TZ)

    def test_weekly_covers_previous_seven_days(self) -> None:
        start, end = scheduled_period(ReportKind.WEEKLY, datetime(2024, 6, 16, 8, 0, tzinfo=TZ))
        assert start == datetime(2024, 6, 9, 0, 0, tzinfo=TZ)
        assert end.date() == datetime(2024, 6, 15).date()
        assert end.time() == END_OF_DAY

    def test_monthly_on_first_covers_previous_month(self) -> None:
        start, end = scheduled_period(ReportKind.MONTHLY, datetime(2024, 3, 1, 9, 0, tzinfo=TZ))
        assert start == datetime(2024, 2, 1, 0, 0, tzinfo=TZ)
        assert end.date() == datetime(2024, 2, 29).date()

    def test_monthly_mid_month_runs_to_yesterday(self) -> None:
        start, end = scheduled_period(ReportKind.MONTHLY, datetime(2024, 6, 15, 9, 0, tzinfo=TZ))
        assert start == datetime(2024, 5, 1, 0, 0, tzinfo=TZ)
        assert end.date() == datetime(2024, 6, 14).date()

    def test_monthly_in_january_wraps_year(self) -> None:
        start, _ = scheduled_period(ReportKind.MONTHLY, datetime(2025, 1, 1, 9, 0, tzinfo=TZ))
        assert start == datetime(2024, 12, 1, 0, 0, tzinfo=TZ)

    def test_custom_has_no_schedule(self) -> None:
        with pytest.raises(ValueError):
            scheduled_period(ReportKind.CUSTOM, datetime(2024, 6, 15, tzinfo=TZ))


class TestRunScheduledReport:
    async def test_requests_system_report(self) -> None:
        service = MagicMock()
        service.generate_report = AsyncMock(return_value={"id": "r1"})

        await run_scheduled_report(service, ReportKind.DAILY, TZ)

        request = service.generate_report.await_args.args[0]
        assert request.kind == ReportKind.DAILY
        assert request.requested_by == SYSTEM_REQUESTER
        assert request.period_start < request.period_end
        assert service.generate_report.await_args.kwargs["trigger"] == "scheduled"

    async def test_failure_is_swallowed(self) -> None:
        service = MagicMock()
        service.generate_report = AsyncMock(side_effect=ReportGenerationFailed("r1", "boom"))

        await run_scheduled_report(service, ReportKind.WEEKLY, TZ)

        service.generate_report.assert_awaited_once()


class TestStartScheduler:
    def test_disabled_without_crons(self, mock_settings: Any) -> None:
        start_scheduler(MagicMock())
        assert scheduler._scheduler is None

    def test_registers_one_job_per_cron(self, mock_settings: Any) -> None:
        mock_settings.report_daily_cron = "0 6 * * *"
        mock_settings.report_monthly_cron = "0 9 1 * *"
        fake = MagicMock(name="fake_scheduler")

        with patch("incident_insights.report.scheduler.AsyncIOScheduler", return_value=fake):
            start_scheduler(MagicMock())
            try:
                job_ids = [c.kwargs["id"] for c in fake.add_job.call_args_list]
                assert job_ids == ["daily_report", "monthly_report"]
                fake.start.assert_called_once()
            finally:
                stop_scheduler()

        fake.shutdown.assert_called_once_with(wait=False)
        assert scheduler._scheduler is None


class TestDefaultCrons:
    def test_weekly_report_fires_on_sunday(self) -> None:
        cron = Settings.model_fields["report_weekly_cron"].default
        monday = datetime(2024, 6, 10, 12, 0, tzinfo=TZ)

        fire = CronTrigger.from_crontab(cron, timezone=TZ).get_next_fire_time(None, monday)

        assert fire == datetime(2024, 6, 16, 8, 0, tzinfo=TZ)
        assert fire.weekday() == 6

    def test_monthly_report_fires_on_first_day(self) -> None:
        cron = Settings.model_fields["report_monthly_cron"].default
        fire = CronTrigger.from_crontab(cron, timezone=TZ).get_next_fire_time(None, datetime(2024, 6, 10, tzinfo=TZ))
        assert fire == datetime(2024, 7, 1, 9, 0, tzinfo=TZ)
