"""Unit tests for temporal patterns, correlations and anomalies."""

from collections.abc import Callable
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from incident_insights.analytics.patterns import WEEKDAYS, anomalies, correlations, temporal_patterns
from incident_insights.models import Category, IncidentRecord

MakeRecord = Callable[..., IncidentRecord]


class TestTemporalPatterns:
    def test_empty_has_zeroed_buckets_and_no_busiest(self) -> None:
        result = temporal_patterns([])
        assert set(result["by_weekday"]) == set(WEEKDAYS)
        assert sum(result["by_weekday"].values()) == 0
        assert len(result["by_hour"]) == 24
        assert "busiest_weekday" not in result
        assert "busiest_hour" not in result

    def test_buckets_in_reference_zone(self, make_record: MakeRecord) -> None:
        # Saturday 02:00 UTC is Friday 23:00 in Sao Paulo (UTC-3)
        record = make_record(created_at=datetime(2024, 6, 15, 2, 0, tzinfo=UTC))
        result = temporal_patterns([record], ZoneInfo("America/Sao_Paulo"))
        assert result["by_weekday"]["FRIDAY"] == 1
        assert result["by_hour"][23] == 1
        assert result["busiest_weekday"] == "FRIDAY"
        assert result["busiest_hour"] == 23

    def test_naive_timestamp_read_as_utc(self, make_record: MakeRecord) -> None:
        record = make_record(created_at=datetime(2024, 6, 15, 2, 0))
        result = temporal_patterns([record], ZoneInfo("America/Sao_Paulo"))
        assert result["by_weekday"]["FRIDAY"] == 1
        assert result["by_hour"][23] == 1

    def test_defaults_to_utc(self, make_record: MakeRecord) -> None:
        record = make_record(created_at=datetime(2024, 6, 15, 2, 0, tzinfo=UTC))
        result = temporal_patterns([record])
        assert result["busiest_weekday"] == "SATURDAY"
        assert result["busiest_hour"] == 2

    def test_ties_resolve_to_calendar_order(self, make_record: MakeRecord) -> None:
        records = [
            make_record(created_at=datetime(2024, 6, 11, 15, 0, tzinfo=UTC)),  # Tuesday
            make_record(created_at=datetime(2024, 6, 10, 9, 0, tzinfo=UTC)),  # Monday
        ]
        result = temporal_patterns(records)
        assert result["busiest_weekday"] == "MONDAY"
        assert result["busiest_hour"] == 9


class TestCorrelations:
    def test_dominant_category_by_area(self, make_record: MakeRecord) -> None:
        records = [
            make_record(area="Centro", category=Category.POTHOLE),
            make_record(area="Centro", category=Category.POTHOLE),
            make_record(area="Centro", category=Category.FLOODING),
            make_record(area="Norte", category=Category.SEWAGE),
        ]
        result = correlations(records)
        assert result["dominant_category_by_area"] == {"Centro": "POTHOLE", "Norte": "SEWAGE"}

    def test_dominant_tie_breaks_by_name(self, make_record: MakeRecord) -> None:
        records = [
            make_record(area="Centro", category=Category.SEWAGE),
            make_record(area="Centro", category=Category.FLOODING),
        ]
        assert correlations(records)["dominant_category_by_area"]["Centro"] == "FLOODING"

    def test_most_affected_area_uses_mean_severity(self, make_record: MakeRecord) -> None:
        records = [
            make_record(area="Centro", severity=4, category=Category.POTHOLE),
            make_record(area="Centro", severity=4, category=Category.POTHOLE),
            make_record(area="Norte", severity=9, category=Category.POTHOLE),
        ]
        result = correlations(records)
        assert result["most_affected_area_by_category"] == {"POTHOLE": "Norte"}

    def test_empty(self) -> None:
        result = correlations([])
        assert result["dominant_category_by_area"] == {}
        assert result["most_affected_area_by_category"] == {}


class TestAnomalies:
    def test_flags_severity_above_two_sigma(self, make_record: MakeRecord) -> None:
        records = [make_record(severity=1) for _ in range(10)]
        spike = make_record(area="Norte", severity=10)
        result = anomalies([*records, spike])
        assert [a["id"] for a in result] == [spike["id"]]
        assert result[0]["area"] == "Norte"
        assert result[0]["deviation"] > 8

    def test_uniform_severity_has_no_anomalies(self, make_record: MakeRecord) -> None:
        assert anomalies([make_record(severity=5) for _ in range(5)]) == []

    def test_empty(self) -> None:
        assert anomalies([]) == []
