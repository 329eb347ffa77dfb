"""Typed answers extracted from AI responses.

The contractually required keys are typed fields. Anything else the model
returns lands in ``extras`` so new keys survive a round trip through the
cache and the report content without loosening the known fields.
"""

from typing import Any, ClassVar

from pydantic import BaseModel, Field

DEFAULT_CONFIDENCE = 0.8
DEFAULT_RELEVANCE = 7


class StructuredAnswer(BaseModel):
    """Fields shared by every answer shape."""

    insight: str = ""
    confidence: float = Field(default=DEFAULT_CONFIDENCE, ge=0.0, le=1.0)
    relevance: int = Field(default=DEFAULT_RELEVANCE, ge=1, le=10)
    key_findings: list[Any] = Field(default_factory=list)
    critical_areas: list[Any] = Field(default_factory=list)
    recommendations: list[Any] = Field(default_factory=list)
    insights: list[Any] = Field(default_factory=list)
    degraded: bool = False
    extras: dict[str, Any] = Field(default_factory=dict)

    # Keys whose absence is logged (never fatal)
    expected_keys: ClassVar[tuple[str, ...]] = ("insight", "confidence", "relevance")

    def to_content(self) -> dict[str, Any]:
        """Flat dict for persistence: typed fields merged with extras."""
        data = self.model_dump(exclude={"extras"})
        data.update(self.extras)
        return data


class InsightAnswer(StructuredAnswer):
    factors: list[Any] = Field(default_factory=list)
    risk_areas: list[Any] = Field(default_factory=list)


class ReportAnswer(StructuredAnswer):
    executive_summary: str = ""

    expected_keys: ClassVar[tuple[str, ...]] = (
        "executive_summary",
        "key_findings",
        "critical_areas",
        "recommendations",
    )
