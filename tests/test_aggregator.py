"""Unit tests for metric aggregation over an in-memory incident source."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from incident_insights.analytics.aggregator import (
    Aggregator,
    apply_filters,
    area_distribution,
    category_distribution,
    compute_metrics,
    critical_areas,
    severity_histogram,
    top_areas,
    variance_percent,
)
from incident_insights.models import Category, IncidentFilters, IncidentRecord

MakeRecord = Callable[..., IncidentRecord]

END = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)
START = END - timedelta(days=7)


class TestVariancePercent:
    def test_no_prior_no_current(self) -> None:
        assert variance_percent(0, 0) == 0.0

    def test_no_prior_with_current(self) -> None:
        assert variance_percent(0, 5) == 100.0

    def test_growth(self) -> None:
        assert variance_percent(10, 15) == 50.0

    def test_decline(self) -> None:
        assert variance_percent(10, 5) == -50.0


class TestApplyFilters:
    def test_none_returns_everything(self, make_record: MakeRecord) -> None:
        records = [make_record(), make_record()]
        assert apply_filters(records, None) == records

    def test_category_equality(self, make_record: MakeRecord) -> None:
        pothole = make_record(category=Category.POTHOLE)
        sewage = make_record(category=Category.SEWAGE)
        result = apply_filters([pothole, sewage], IncidentFilters(category="SEWAGE"))
        assert result == [sewage]

    def test_area_is_case_insensitive_substring(self, make_record: MakeRecord) -> None:
        centro = make_record(area="Centro Histórico")
        norte = make_record(area="Zona Norte")
        assert apply_filters([centro, norte], IncidentFilters(area="centro")) == [centro]

    def test_min_severity(self, make_record: MakeRecord) -> None:
        low = make_record(severity=3)
        high = make_record(severity=8)
        assert apply_filters([low, high], IncidentFilters(min_severity=8)) == [high]


class TestIndividualMetrics:
    def test_top_areas_ranks_by_max_then_count(self, make_record: MakeRecord) -> None:
        records = [
            make_record(area="Norte", severity=6),
            make_record(area="Norte", severity=6),
            make_record(area="Sul", severity=6),
            make_record(area="Centro", severity=9),
        ]
        result = top_areas(records)
        assert [a["area"] for a in result] == ["Centro", "Norte", "Sul"]
        assert result[1] == {"area": "Norte", "total": 2, "mean_severity": 6.0, "max_severity": 6}

    def test_top_areas_limit(self, make_record: MakeRecord) -> None:
        records = [make_record(area=f"Area {i}") for i in range(15)]
        assert len(top_areas(records, top=5)) == 5

    def test_category_distribution_percentages(self, make_record: MakeRecord) -> None:
        records = [
            make_record(category=Category.POTHOLE),
            make_record(category=Category.POTHOLE),
            make_record(category=Category.SEWAGE),
        ]
        result = category_distribution(records)
        assert result[0] == {"category": "POTHOLE", "total": 2, "percent": 66.7}
        assert result[1] == {"category": "SEWAGE", "total": 1, "percent": 33.3}

    def test_area_distribution_capped_at_twenty(self, make_record: MakeRecord) -> None:
        records = [make_record(area=f"Area {i:02d}") for i in range(25)]
        assert len(area_distribution(records)) == 20

    def test_empty_distributions(self) -> None:
        assert category_distribution([]) == []
        assert area_distribution([]) == []

    def test_severity_histogram_sorted(self, make_record: MakeRecord) -> None:
        records = [make_record(severity=s) for s in (9, 2, 9, 5)]
        assert severity_histogram(records) == {2: 1, 5: 1, 9: 2}

    def test_critical_areas_need_three_high_severity_records(self, make_record: MakeRecord) -> None:
        records = [
            *(make_record(area="Centro", severity=8) for _ in range(3)),
            *(make_record(area="Norte", severity=9) for _ in range(2)),
            make_record(area="Norte", severity=7),
        ]
        result = critical_areas(records)
        assert [c["area"] for c in result] == ["Centro"]
        assert result[0]["critical_count"] == 3
        assert result[0]["mean_severity"] == 8.0


class TestComputeMetrics:
    def test_empty_period(self) -> None:
        metrics = compute_metrics([], [])
        assert metrics["total_current"] == 0
        assert metrics["variance_percent"] == 0.0
        assert metrics["severity_mean"] is None
        assert metrics["severity_max"] is None
        assert metrics["top_areas"] == []
        assert metrics["critical_areas"] == []

    def test_prior_count_feeds_variance(self, make_record: MakeRecord) -> None:
        current = [make_record() for _ in range(3)]
        prior = [make_record() for _ in range(2)]
        metrics = compute_metrics(current, prior)
        assert metrics["total_prior"] == 2
        assert metrics["variance_percent"] == 50.0


class TestAggregator:
    async def test_centro_norte_scenario(self, make_record: MakeRecord, static_source: Any) -> None:
        day = START + timedelta(days=1)
        records = [
            make_record(area="Centro", severity=8, created_at=day),
            make_record(area="Centro", severity=9, created_at=day),
            make_record(area="Centro", severity=8, created_at=day),
            make_record(area="Norte", severity=3, created_at=day),
        ]
        aggregator = Aggregator(static_source(records), timezone="UTC")

        metrics = await aggregator.aggregate(START, END)

        assert metrics["total_current"] == 4
        assert metrics["total_prior"] == 0
        assert metrics["variance_percent"] == 100.0
        assert metrics["severity_mean"] == 7.0
        assert metrics["severity_max"] == 9
        assert metrics["severity_min"] == 3
        assert [a["area"] for a in metrics["top_areas"]] == ["Centro", "Norte"]
        assert metrics["critical_areas"][0]["area"] == "Centro"
        assert metrics["critical_areas"][0]["critical_count"] == 3

    async def test_prior_period_is_equal_length_before_start(
        self, make_record: MakeRecord, static_source: Any
    ) -> None:
        source = static_source([])
        aggregator = Aggregator(source)
        await aggregator.aggregate(START, END)
        assert source.calls == [(START, END), (START - timedelta(days=7), START)]

    async def test_boundary_instant_belongs_to_current_period(
        self, make_record: MakeRecord, static_source: Any
    ) -> None:
        boundary = make_record(created_at=START)
        earlier = make_record(created_at=START - timedelta(days=2))
        aggregator = Aggregator(static_source([boundary, earlier]))

        metrics = await aggregator.aggregate(START, END)

        assert metrics["total_current"] == 1
        assert metrics["total_prior"] == 1

    async def test_filters_apply_to_both_periods(self, make_record: MakeRecord, static_source: Any) -> None:
        records = [
            make_record(area="Centro", created_at=START + timedelta(hours=1)),
            make_record(area="Norte", created_at=START + timedelta(hours=1)),
            make_record(area="Norte", created_at=START - timedelta(hours=1)),
        ]
        aggregator = Aggregator(static_source(records))

        metrics = await aggregator.aggregate(START, END, IncidentFilters(area="norte"))

        assert metrics["total_current"] == 1
        assert metrics["total_prior"] == 1
        assert metrics["variance_percent"] == 0.0
