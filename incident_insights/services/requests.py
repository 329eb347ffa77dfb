"""Typed requests for insights and reports.

Insight requests form a union discriminated on ``kind``. Each one knows how
to render its cache context: a plain JSON-ready dict without ``None`` values,
so optional fields that were not given never change the digest.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from incident_insights.models import Category, IncidentFilters, InsightKind, ReportKind


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Filters(BaseModel):
    category: Category | None = None
    area: str | None = None
    min_severity: int | None = Field(default=None, ge=1, le=10)

    def to_filters(self) -> IncidentFilters:
        return IncidentFilters(**self.model_dump(mode="json", exclude_none=True))  # type: ignore[typeddict-item]


class _InsightRequestBase(BaseModel):
    @field_validator("period_start", "period_end", mode="after", check_fields=False)
    @classmethod
    def _normalize_utc(cls, value: datetime | None) -> datetime | None:
        return _utc(value)

    def context(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class CriticalAreaRequest(_InsightRequestBase):
    kind: Literal[InsightKind.CRITICAL_AREA] = InsightKind.CRITICAL_AREA
    area: str = Field(min_length=1)
    category: Category | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None


class TrendRequest(_InsightRequestBase):
    kind: Literal[InsightKind.TREND] = InsightKind.TREND
    category: Category
    area: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None


class PatternRequest(_InsightRequestBase):
    kind: Literal[InsightKind.PATTERN] = InsightKind.PATTERN
    filters: Filters | None = None


class PredictionRequest(_InsightRequestBase):
    kind: Literal[InsightKind.PREDICTION] = InsightKind.PREDICTION
    horizon_days: int = Field(default=30, ge=1, le=365)
    area: str | None = None


class ExplanationRequest(_InsightRequestBase):
    kind: Literal[InsightKind.EXPLANATION] = InsightKind.EXPLANATION
    question: str | None = None
    context_data: dict[str, Any] = Field(default_factory=dict, alias="context")

    model_config = ConfigDict(populate_by_name=True)

    def context(self) -> dict[str, Any]:
        ctx: dict[str, Any] = dict(self.context_data)
        ctx["kind"] = self.kind.value
        if self.question:
            ctx["question"] = self.question
        return ctx


AnyInsightRequest = CriticalAreaRequest | TrendRequest | PatternRequest | PredictionRequest | ExplanationRequest

InsightRequest = Annotated[AnyInsightRequest, Field(discriminator="kind")]


class QuestionRequest(BaseModel):
    """Free-form question, answered and cached as an EXPLANATION insight."""

    question: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)

    def cache_context(self) -> dict[str, Any]:
        ctx: dict[str, Any] = dict(self.context)
        ctx["question"] = self.question
        return ctx


class ReportRequest(BaseModel):
    kind: ReportKind = ReportKind.CUSTOM
    period_start: datetime
    period_end: datetime
    filters: Filters | None = None
    requested_by: str | None = None

    @field_validator("period_start", "period_end", mode="after")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return _utc(value)  # type: ignore[return-value]

    def incident_filters(self) -> IncidentFilters | None:
        if self.filters is None:
            return None
        return self.filters.to_filters() or None


class ClassificationRequest(BaseModel):
    """A newly reported incident whose severity has not been scored yet."""

    category: Category
    area: str = Field(min_length=1)
    description: str = ""
