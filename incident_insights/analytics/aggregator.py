"""Aggregate incident records for a period into one AggregatedMetrics value.

The fetch step goes through an ``IncidentSource`` (SQLite or HTTP). Everything
after the fetch is pure and synchronous, exposed as ``compute_metrics`` so it
can be exercised without a source.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime
from zoneinfo import ZoneInfo

from incident_insights.analytics import patterns, statistics
from incident_insights.models import (
    AggregatedMetrics,
    AreaRanking,
    AreaShare,
    CategoryShare,
    CriticalArea,
    IncidentFilters,
    IncidentRecord,
)
from incident_insights.storage.incidents import IncidentSource

logger = logging.getLogger(__name__)

DEFAULT_TOP_AREAS = 10
MAX_AREA_DISTRIBUTION = 20
MAX_CRITICAL_AREAS = 10
CRITICAL_SEVERITY = 8
CRITICAL_MIN_RECORDS = 3


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def apply_filters(records: list[IncidentRecord], filters: IncidentFilters | None) -> list[IncidentRecord]:
    """Keep records matching category equality, area substring (case-insensitive) and minimum severity."""
    if not filters:
        return records

    category = filters.get("category")
    area = filters.get("area")
    area_needle = area.lower() if area else None
    min_severity = filters.get("min_severity")

    def keep(record: IncidentRecord) -> bool:
        if category is not None and str(record["category"]) != str(category):
            return False
        if area_needle is not None and area_needle not in record["area"].lower():
            return False
        return not (min_severity is not None and record["severity"] < int(min_severity))

    return [r for r in records if keep(r)]


# ---------------------------------------------------------------------------
# Individual metrics
# ---------------------------------------------------------------------------


def variance_percent(prior: int, current: int) -> float:
    if prior == 0:
        return 100.0 if current > 0 else 0.0
    return (current - prior) / prior * 100.0


def _percent(part: int, total: int) -> float:
    return round(part * 100.0 / total, 1)


def top_areas(records: list[IncidentRecord], top: int = DEFAULT_TOP_AREAS) -> list[AreaRanking]:
    """Areas ranked by max severity, then by record count."""
    by_area: dict[str, list[int]] = defaultdict(list)
    for record in records:
        by_area[record["area"]].append(record["severity"])

    rankings = [
        AreaRanking(
            area=area,
            total=len(sevs),
            mean_severity=round(sum(sevs) / len(sevs), 1),
            max_severity=max(sevs),
        )
        for area, sevs in by_area.items()
    ]
    rankings.sort(key=lambda r: (-r["max_severity"], -r["total"], r["area"]))
    return rankings[:top]


def category_distribution(records: list[IncidentRecord]) -> list[CategoryShare]:
    total = len(records)
    if total == 0:
        return []
    counts = Counter(str(r["category"]) for r in records)
    shares = [CategoryShare(category=c, total=n, percent=_percent(n, total)) for c, n in counts.items()]
    shares.sort(key=lambda s: (-s["total"], s["category"]))
    return shares


def area_distribution(records: list[IncidentRecord]) -> list[AreaShare]:
    total = len(records)
    if total == 0:
        return []
    counts = Counter(r["area"] for r in records)
    shares = [AreaShare(area=a, total=n, percent=_percent(n, total)) for a, n in counts.items()]
    shares.sort(key=lambda s: (-s["total"], s["area"]))
    return shares[:MAX_AREA_DISTRIBUTION]


def severity_histogram(records: list[IncidentRecord]) -> dict[int, int]:
    counts = Counter(r["severity"] for r in records)
    return dict(sorted(counts.items()))


def critical_areas(records: list[IncidentRecord]) -> list[CriticalArea]:
    """Areas with at least three records at severity >= 8."""
    by_area: dict[str, list[int]] = defaultdict(list)
    for record in records:
        if record["severity"] >= CRITICAL_SEVERITY:
            by_area[record["area"]].append(record["severity"])

    result = [
        CriticalArea(area=area, critical_count=len(sevs), mean_severity=sum(sevs) / len(sevs))
        for area, sevs in by_area.items()
        if len(sevs) >= CRITICAL_MIN_RECORDS
    ]
    result.sort(key=lambda c: (-c["critical_count"], c["area"]))
    return result[:MAX_CRITICAL_AREAS]


def compute_metrics(
    current: list[IncidentRecord],
    prior: list[IncidentRecord],
    top_n: int = DEFAULT_TOP_AREAS,
    tz: ZoneInfo | None = None,
) -> AggregatedMetrics:
    """Build AggregatedMetrics from already-filtered current and prior record sets."""
    severities = [r["severity"] for r in current]
    return AggregatedMetrics(
        total_current=len(current),
        total_prior=len(prior),
        variance_percent=variance_percent(len(prior), len(current)),
        severity_mean=statistics.mean(severities),
        severity_max=statistics.maximum(severities),
        severity_min=statistics.minimum(severities),
        top_areas=top_areas(current, top_n),
        category_distribution=category_distribution(current),
        area_distribution=area_distribution(current),
        severity_histogram=severity_histogram(current),
        temporal_patterns=patterns.temporal_patterns(current, tz),
        correlations=patterns.correlations(current),
        critical_areas=critical_areas(current),
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class Aggregator:
    """Fetches current and prior-period records and computes metrics over them."""

    def __init__(self, source: IncidentSource, timezone: str = "UTC") -> None:
        self.source = source
        self.tz = ZoneInfo(timezone)

    async def fetch(
        self,
        period_start: datetime,
        period_end: datetime,
        filters: IncidentFilters | None = None,
    ) -> list[IncidentRecord]:
        records = await self.source.find_by_period(period_start, period_end)
        return apply_filters(records, filters)

    async def fetch_prior(
        self,
        period_start: datetime,
        period_end: datetime,
        filters: IncidentFilters | None = None,
    ) -> list[IncidentRecord]:
        """Records in the equal-length period ending just before ``period_start``."""
        span = period_end - period_start
        records = await self.source.find_by_period(period_start - span, period_start)
        # The source range is inclusive; the boundary instant belongs to the current period.
        records = [r for r in records if r["created_at"] < period_start]
        return apply_filters(records, filters)

    async def aggregate(
        self,
        period_start: datetime,
        period_end: datetime,
        filters: IncidentFilters | None = None,
        top_n: int = DEFAULT_TOP_AREAS,
    ) -> AggregatedMetrics:
        logger.debug("Aggregating metrics for %s .. %s", period_start, period_end)
        current = await self.fetch(period_start, period_end, filters)
        prior = await self.fetch_prior(period_start, period_end, filters)
        metrics = compute_metrics(current, prior, top_n=top_n, tz=self.tz)
        logger.info(
            "Aggregated %d records (%d prior, variance %.1f%%)",
            metrics["total_current"],
            metrics["total_prior"],
            metrics["variance_percent"],
        )
        return metrics
