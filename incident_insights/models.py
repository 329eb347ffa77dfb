"""Enums and TypedDict models shared across the insight engine."""

from datetime import datetime
from enum import StrEnum
from typing import Any, NotRequired, TypedDict


class Category(StrEnum):
    """Closed set of incident categories reported by citizens."""

    POTHOLE = "POTHOLE"
    PAVING = "PAVING"
    SIGNAGE = "SIGNAGE"
    CURB_GUTTER = "CURB_GUTTER"
    BRIDGE_OVERPASS = "BRIDGE_OVERPASS"
    STREET_LIGHTING = "STREET_LIGHTING"
    FALLEN_POLE = "FALLEN_POLE"
    BURNT_OUT_LAMP = "BURNT_OUT_LAMP"
    CLEANING = "CLEANING"
    ACCUMULATED_TRASH = "ACCUMULATED_TRASH"
    TRASH_COLLECTION = "TRASH_COLLECTION"
    TREE_PRUNING = "TREE_PRUNING"
    FALLEN_TREE = "FALLEN_TREE"
    EROSION = "EROSION"
    DENGUE = "DENGUE"
    DRAINAGE = "DRAINAGE"
    FLOODING = "FLOODING"
    WATER_LEAK = "WATER_LEAK"
    SEWAGE = "SEWAGE"
    STORM_DRAIN = "STORM_DRAIN"
    HEALTH = "HEALTH"
    ABANDONED_ANIMALS = "ABANDONED_ANIMALS"
    LOOSE_ANIMALS = "LOOSE_ANIMALS"
    TRANSPORT = "TRANSPORT"
    BUS_STOP = "BUS_STOP"
    BIKE_LANE = "BIKE_LANE"
    SIDEWALK = "SIDEWALK"
    ACCESSIBILITY = "ACCESSIBILITY"
    PUBLIC_SAFETY = "PUBLIC_SAFETY"
    DRUG_USE_AREA = "DRUG_USE_AREA"
    VANDALISM = "VANDALISM"
    PARK = "PARK"
    PLAYGROUND = "PLAYGROUND"
    OUTDOOR_GYM = "OUTDOOR_GYM"
    STREET_FURNITURE = "STREET_FURNITURE"
    OTHER = "OTHER"


class InsightKind(StrEnum):
    CRITICAL_AREA = "CRITICAL_AREA"
    TREND = "TREND"
    PATTERN = "PATTERN"
    PREDICTION = "PREDICTION"
    EXPLANATION = "EXPLANATION"


class ReportKind(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


class ReportStatus(StrEnum):
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class AnalysisKind(StrEnum):
    REPORT = "REPORT"
    INSIGHT = "INSIGHT"
    CLASSIFICATION = "CLASSIFICATION"


# ---------------------------------------------------------------------------
# Incident records (read-only input)
# ---------------------------------------------------------------------------


class IncidentRecord(TypedDict):
    id: str
    category: Category
    description: str
    area: str
    severity: int  # 1..10
    created_at: datetime


# ---------------------------------------------------------------------------
# Aggregated metrics
# ---------------------------------------------------------------------------


class AreaRanking(TypedDict):
    area: str
    total: int
    mean_severity: float
    max_severity: int


class CategoryShare(TypedDict):
    category: str
    total: int
    percent: float


class AreaShare(TypedDict):
    area: str
    total: int
    percent: float


class TemporalPatterns(TypedDict):
    by_weekday: dict[str, int]
    by_hour: dict[int, int]
    busiest_weekday: NotRequired[str]
    busiest_hour: NotRequired[int]


class Correlations(TypedDict):
    dominant_category_by_area: dict[str, str]
    most_affected_area_by_category: dict[str, str]


class CriticalArea(TypedDict):
    area: str
    critical_count: int
    mean_severity: float


class Anomaly(TypedDict):
    id: str
    area: str
    category: str
    severity: int
    mean_severity: float
    deviation: float


class AggregatedMetrics(TypedDict):
    total_current: int
    total_prior: int
    variance_percent: float
    severity_mean: float | None
    severity_max: int | None
    severity_min: int | None
    top_areas: list[AreaRanking]
    category_distribution: list[CategoryShare]
    area_distribution: list[AreaShare]
    severity_histogram: dict[int, int]
    temporal_patterns: TemporalPatterns
    correlations: Correlations
    critical_areas: list[CriticalArea]


class IncidentFilters(TypedDict, total=False):
    category: str
    area: str
    min_severity: int


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class InsightCacheEntry(TypedDict):
    id: str
    kind: InsightKind
    context: dict[str, Any]
    insight: str
    support_data: dict[str, Any] | None
    confidence: float
    relevance: int
    model: str
    generated_at: datetime
    expires_at: datetime | None
    context_hash: str


class Report(TypedDict):
    id: str
    kind: ReportKind
    period_start: datetime
    period_end: datetime
    title: str
    executive_summary: str | None
    content: dict[str, Any]
    metrics: AggregatedMetrics | None
    critical_areas: list[Any]
    recommendations: list[Any]
    filters: IncidentFilters | None
    model: str | None
    status: ReportStatus
    generated_at: datetime
    completed_at: datetime | None
    processing_ms: int | None
    requested_by: str | None
    error_message: str | None


class AuditEntry(TypedDict):
    id: int
    kind: AnalysisKind
    input_data: dict[str, Any]
    output_data: dict[str, Any]
    prompt: str | None
    model: str | None
    latency_ms: int
    prompt_tokens: int
    completion_tokens: int
    estimated_cost: float
    success: bool
    error_message: str | None
    executed_at: datetime


class UsageSummary(TypedDict):
    total_calls: int
    successful_calls: int
    failed_calls: int
    prompt_tokens: int
    completion_tokens: int
    total_latency_ms: int
    avg_latency_ms: float
    estimated_cost: float
