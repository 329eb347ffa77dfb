"""Unit tests for report markdown rendering: pure functions, no I/O."""

from datetime import UTC, datetime
from typing import Any

from incident_insights.analytics.aggregator import compute_metrics
from incident_insights.models import Category, IncidentRecord, Report, ReportKind, ReportStatus
from incident_insights.report.formatter import _describe_item, _format_plain_table, format_report_markdown

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def _record(i: int, area: str, severity: int, category: Category = Category.POTHOLE) -> IncidentRecord:
    return IncidentRecord(
        id=f"inc-{i}", category=category, description="", area=area, severity=severity, created_at=NOW
    )


def _report(**overrides: Any) -> Report:
    records = [
        _record(1, "Centro", 9),
        _record(2, "Centro", 8),
        _record(3, "Centro", 8, Category.FLOODING),
        _record(4, "Norte", 3),
    ]
    report = Report(
        id="r1",
        kind=ReportKind.WEEKLY,
        period_start=datetime(2024, 6, 8, tzinfo=UTC),
        period_end=NOW,
        title="Weekly report - 2024-06-08",
        executive_summary="Flooding dominated the week.",
        content={"insights": ["Incidents peak on Mondays"]},
        metrics=compute_metrics(records, []),
        critical_areas=[{"area": "Centro", "reason": "three severe floods"}],
        recommendations=[
            {"priority": "high", "action": "Clear storm drains", "rationale": "recurring floods"},
            "Repave Rua A",
        ],
        filters=None,
        model="test-model",
        status=ReportStatus.COMPLETED,
        generated_at=NOW,
        completed_at=NOW,
        processing_ms=1500,
        requested_by="SYSTEM",
        error_message=None,
    )
    report.update(overrides)  # type: ignore[typeddict-item]
    return report


class TestFormatReportMarkdown:
    def test_complete_report_has_all_sections(self) -> None:
        md = format_report_markdown(_report())
        assert md.startswith("# Weekly report - 2024-06-08")
        assert "**Status:** COMPLETED" in md
        assert "**Processing time:** 1500 ms" in md
        assert "## Executive Summary" in md
        assert "Flooding dominated the week." in md
        assert "## Key Metrics" in md
        assert "- **Total incidents:** 4" in md
        assert "- **Prior period:** 0 (+100.0%)" in md
        assert "### Top Areas" in md
        assert "### Categories" in md
        assert "## Critical Areas" in md
        assert "## Recommendations" in md
        assert "## Additional Insights" in md

    def test_recommendations_numbered(self) -> None:
        md = format_report_markdown(_report())
        assert "1. [HIGH] Clear storm drains (recurring floods)" in md
        assert "2. Repave Rua A" in md

    def test_metric_critical_areas_used_when_ai_gave_none(self) -> None:
        md = format_report_markdown(_report(critical_areas=[]))
        assert "- Centro: 3 incidents at severity 8+" in md

    def test_generating_report_placeholders(self) -> None:
        md = format_report_markdown(
            _report(
                status=ReportStatus.GENERATING,
                executive_summary=None,
                metrics=None,
                critical_areas=[],
                recommendations=[],
                content={},
                processing_ms=None,
            )
        )
        assert "*Summary not available yet.*" in md
        assert "*Metrics unavailable.*" in md
        assert "*No critical areas identified.*" in md
        assert "*No recommendations.*" in md
        assert "Additional Insights" not in md
        assert "Processing time" not in md

    def test_error_report_shows_message_only(self) -> None:
        md = format_report_markdown(_report(status=ReportStatus.ERROR, error_message="backend exploded"))
        assert "## Error" in md
        assert "backend exploded" in md
        assert "## Executive Summary" not in md


class TestFormatPlainTable:
    def test_columns_aligned(self) -> None:
        table = _format_plain_table(["Area", "Total"], [["Centro", "3"], ["Norte", "12"]], right_align={1})
        lines = table.splitlines()
        assert lines[0] == "Area    Total"
        assert lines[1] == "------  -----"
        assert lines[2] == "Centro      3"
        assert lines[3] == "Norte      12"

    def test_empty_rows(self) -> None:
        assert _format_plain_table(["A"], []) == ""


class TestDescribeItem:
    def test_string(self) -> None:
        assert _describe_item("plain") == "plain"

    def test_dict_without_action(self) -> None:
        assert _describe_item({"growth": "up"}) == "growth: up"

    def test_area_item_with_reason(self) -> None:
        assert _describe_item({"area": "Centro", "reason": "floods"}) == "Centro (floods)"
