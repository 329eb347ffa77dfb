"""Temporal histograms, cross-tab correlations and severity outliers.

Ties are broken deterministically: the earliest weekday/hour in calendar
order wins for the busiest bucket, and names sort ascending for the
correlation tables.
"""

from collections import Counter, defaultdict
from datetime import datetime
from zoneinfo import ZoneInfo

from incident_insights.analytics import statistics
from incident_insights.models import Anomaly, Correlations, IncidentRecord, TemporalPatterns
from incident_insights.storage.store import ensure_aware

WEEKDAYS = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")


def _to_local(ts: datetime, tz: ZoneInfo) -> datetime:
    return ensure_aware(ts).astimezone(tz)


def _first_max(counts: dict[str, int] | dict[int, int]) -> str | int | None:
    best_key = None
    best = 0
    for key, value in counts.items():
        if value > best:
            best_key, best = key, value
    return best_key


def temporal_patterns(records: list[IncidentRecord], tz: ZoneInfo | None = None) -> TemporalPatterns:
    """Bucket records by weekday and hour of day in the reference time zone."""
    zone = tz or ZoneInfo("UTC")
    by_weekday = dict.fromkeys(WEEKDAYS, 0)
    by_hour = dict.fromkeys(range(24), 0)

    for record in records:
        local = _to_local(record["created_at"], zone)
        by_weekday[WEEKDAYS[local.weekday()]] += 1
        by_hour[local.hour] += 1

    patterns = TemporalPatterns(by_weekday=by_weekday, by_hour=by_hour)
    busiest_weekday = _first_max(by_weekday)
    if busiest_weekday is not None:
        patterns["busiest_weekday"] = str(busiest_weekday)
    busiest_hour = _first_max(by_hour)
    if busiest_hour is not None:
        patterns["busiest_hour"] = int(busiest_hour)
    return patterns


def correlations(records: list[IncidentRecord]) -> Correlations:
    """Dominant category per area (by count) and most-affected area per category (by mean severity)."""
    categories_by_area: dict[str, Counter[str]] = defaultdict(Counter)
    severities: dict[str, dict[str, list[int]]] = defaultdict(lambda: defaultdict(list))

    for record in records:
        category = str(record["category"])
        categories_by_area[record["area"]][category] += 1
        severities[category][record["area"]].append(record["severity"])

    dominant: dict[str, str] = {}
    for area in sorted(categories_by_area):
        counts = categories_by_area[area]
        dominant[area] = min(counts, key=lambda c: (-counts[c], c))

    most_affected: dict[str, str] = {}
    for category in sorted(severities):
        means = {area: sum(vals) / len(vals) for area, vals in severities[category].items()}
        most_affected[category] = min(means, key=lambda a: (-means[a], a))

    return Correlations(
        dominant_category_by_area=dominant,
        most_affected_area_by_category=most_affected,
    )


def anomalies(records: list[IncidentRecord]) -> list[Anomaly]:
    """Records whose severity exceeds mean + 2 * population stddev."""
    severities = [r["severity"] for r in records]
    avg = statistics.mean(severities)
    spread = statistics.stddev(severities)
    if avg is None or spread is None:
        return []

    upper = avg + 2 * spread
    return [
        Anomaly(
            id=record["id"],
            area=record["area"],
            category=str(record["category"]),
            severity=record["severity"],
            mean_severity=avg,
            deviation=record["severity"] - avg,
        )
        for record in records
        if record["severity"] > upper
    ]
