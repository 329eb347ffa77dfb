"""Prompt templates for reports and insights.

Every builder is a pure function of its inputs. Insight prompts end with the
canonical JSON of their context, so two different contexts can never render
the same prompt and the same context always renders the same text.
"""

from datetime import datetime
from typing import Any

from incident_insights.analytics.patterns import WEEKDAYS
from incident_insights.cache.hashing import canonical_json
from incident_insights.models import AggregatedMetrics, Anomaly, Category, IncidentFilters

DATE_FORMAT = "%Y-%m-%d %H:%M"

SYSTEM_PROMPT = (
    "You are an analyst specialized in municipal public management. "
    "You analyze urban incident data reported by citizens and produce clear, "
    "objective and actionable analyses for public managers. "
    "Always ground your statements in the numbers provided and answer only "
    "with valid JSON in the requested shape."
)

_JSON_ONLY = "IMPORTANT: Respond ONLY with valid JSON, with no text before or after it."


def _num(value: float | int | None, fmt: str = "{:.1f}") -> str:
    if value is None:
        return "n/a"
    return fmt.format(value)


def _signed_percent(value: float) -> str:
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.1f}%"


def _context_line(context: dict[str, Any]) -> str:
    return f"CONTEXT: {canonical_json(context)}"


def _filters_line(filters: IncidentFilters | None) -> str:
    if not filters:
        return "- Filters: none"
    parts = [f"{key}={filters[key]}" for key in sorted(filters)]  # type: ignore[literal-required]
    return f"- Filters: {', '.join(parts)}"


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


_REPORT_SHAPE = """\
{
  "executive_summary": "2-3 paragraphs summarizing the situation",
  "key_findings": ["main findings"],
  "critical_areas": [
    {
      "area": "area name",
      "category": "main category",
      "mean_severity": 8.5,
      "total": 45,
      "reason": "why it is critical"
    }
  ],
  "trends": {
    "growth": "growth or reduction trend",
    "temporal_patterns": "temporal patterns identified",
    "correlations": "interesting correlations"
  },
  "recommendations": [
    {
      "priority": "high|medium|low",
      "action": "clear description of the recommended action",
      "rationale": "why this action matters",
      "expected_impact": "expected impact"
    }
  ],
  "insights": ["non-obvious insights useful for management"],
  "confidence": 0.85,
  "relevance": 8
}"""


def build_report_prompt(
    metrics: AggregatedMetrics,
    period_start: datetime,
    period_end: datetime,
    filters: IncidentFilters | None = None,
) -> str:
    """User prompt for an executive report over one period."""
    lines: list[str] = [
        "Analyze the incident data below and write a complete, actionable executive report.",
        "",
        f"DATA FOR PERIOD {period_start.strftime(DATE_FORMAT)} to {period_end.strftime(DATE_FORMAT)}:",
        _filters_line(filters),
        f"- Total incidents: {metrics['total_current']}",
        f"- Prior period: {metrics['total_prior']} (variance: {_signed_percent(metrics['variance_percent'])})",
        f"- Mean severity: {_num(metrics['severity_mean'])}",
        f"- Max severity: {_num(metrics['severity_max'], '{}')}",
        f"- Min severity: {_num(metrics['severity_min'], '{}')}",
        "",
    ]

    if metrics["top_areas"]:
        lines.append("TOP 5 AREAS:")
        lines.extend(
            f"- {a['area']}: {a['total']} incidents, mean severity {a['mean_severity']}, max {a['max_severity']}"
            for a in metrics["top_areas"][:5]
        )
        lines.append("")

    if metrics["category_distribution"]:
        lines.append("MOST FREQUENT CATEGORIES:")
        lines.extend(f"- {c['category']}: {c['total']} ({c['percent']}%)" for c in metrics["category_distribution"][:5])
        lines.append("")

    temporal = metrics["temporal_patterns"]
    if "busiest_weekday" in temporal or "busiest_hour" in temporal:
        lines.append("TEMPORAL PATTERNS:")
        if "busiest_weekday" in temporal:
            lines.append(f"- Busiest weekday: {temporal['busiest_weekday']}")
        if "busiest_hour" in temporal:
            lines.append(f"- Busiest hour: {temporal['busiest_hour']}h")
        lines.append("")

    if metrics["critical_areas"]:
        lines.append("CRITICAL AREAS IDENTIFIED:")
        lines.extend(f"- {c['area']}: {c['critical_count']} critical incidents" for c in metrics["critical_areas"][:5])
        lines.append("")

    lines += [
        "INSTRUCTIONS:",
        "1. Identify the main patterns and trends in the data",
        "2. Explain what the data says about the situation of the city",
        "3. Identify critical areas that require immediate attention",
        "4. Provide 5-10 prioritized, actionable recommendations",
        "5. Highlight non-obvious insights that are useful for management",
        "",
        "RESPONSE FORMAT (structured JSON):",
        _REPORT_SHAPE,
        "",
        _JSON_ONLY,
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------


def build_critical_area_prompt(
    context: dict[str, Any],
    area_metrics: AggregatedMetrics,
    city_metrics: AggregatedMetrics,
) -> str:
    area = context["area"]
    top_categories = ", ".join(f"{c['category']} ({c['total']})" for c in area_metrics["category_distribution"][:3])
    lines = [
        f"Analyze why the area {area} is a critical area.",
        "",
        "DATA:",
        f"- Total incidents in the area: {area_metrics['total_current']}",
        f"- Mean severity in the area: {_num(area_metrics['severity_mean'])}",
        f"- Mean severity in the city: {_num(city_metrics['severity_mean'])}",
        f"- Main categories in the area: {top_categories or 'none'}",
        "",
        "Provide:",
        "1. A clear and objective explanation (2-3 paragraphs)",
        "2. The main contributing factors",
        "3. A comparison with the city average",
        "4. The urgency of the situation (1-10)",
        "",
        'Respond in JSON: {"insight": "text", "factors": ["..."], "comparison": "...", "urgency": 8, '
        '"confidence": 0.85, "relevance": 8, "recommendations": ["..."]}',
        _context_line(context),
    ]
    return "\n".join(lines)


def build_trend_prompt(context: dict[str, Any], metrics: AggregatedMetrics) -> str:
    lines = [
        f"Analyze the trend of {context['category']} in the given period.",
        "",
        "DATA:",
        f"- Current total: {metrics['total_current']}",
        f"- Prior period total: {metrics['total_prior']}",
        f"- Variance: {_signed_percent(metrics['variance_percent'])}",
        f"- Mean severity: {_num(metrics['severity_mean'])}",
        "",
        "Provide:",
        "1. A description of the trend",
        "2. Factors that may explain it",
        "3. A projection for the next periods",
        "4. Recommendations",
        "",
        'Respond in JSON: {"insight": "text", "factors": ["..."], "projection": "...", '
        '"recommendations": ["..."], "confidence": 0.85, "relevance": 7}',
        _context_line(context),
    ]
    return "\n".join(lines)


def build_pattern_prompt(context: dict[str, Any], metrics: AggregatedMetrics, outliers: list[Anomaly]) -> str:
    temporal = metrics["temporal_patterns"]
    weekday_counts = ", ".join(f"{day}={temporal['by_weekday'].get(day, 0)}" for day in WEEKDAYS)
    dominant = metrics["correlations"]["dominant_category_by_area"]
    lines = [
        "Identify interesting patterns in the incident data.",
        "",
        "AGGREGATED DATA:",
        f"- Total incidents: {metrics['total_current']}",
        f"- Mean severity: {_num(metrics['severity_mean'])}",
        f"- Incidents by weekday: {weekday_counts}",
        f"- Busiest hour: {temporal.get('busiest_hour', 'n/a')}",
        f"- Dominant category by area: {', '.join(f'{a}={c}' for a, c in dominant.items()) or 'none'}",
        f"- Severity outliers: {len(outliers)}",
    ]
    lines.extend(
        f"  - {o['id']} in {o['area']} ({o['category']}): severity {o['severity']}, "
        f"{_num(o['deviation'], '{:+.1f}')} from mean"
        for o in outliers[:10]
    )
    lines += [
        "",
        "Provide:",
        "1. The patterns identified",
        "2. An explanation of each pattern",
        "3. Their significance",
        "4. Possible actions",
        "",
        'Respond in JSON: {"insight": "text", "patterns": [{"name": "...", "explanation": "...", '
        '"significance": "..."}], "recommendations": ["..."], "confidence": 0.80, "relevance": 7}',
        _context_line(context),
    ]
    return "\n".join(lines)


def build_prediction_prompt(context: dict[str, Any], metrics: AggregatedMetrics) -> str:
    lines = [
        "Based on the historical data, predict likely future problems.",
        "",
        "HISTORICAL DATA:",
        f"- Total incidents: {metrics['total_current']}",
        f"- Critical areas: {len(metrics['critical_areas'])}",
        f"- Prediction horizon: {context['horizon_days']} days",
    ]
    if context.get("area"):
        lines.append(f"- Focus area: {context['area']}")
    lines += [
        "",
        "Provide:",
        "1. The risk areas identified",
        "2. The likely categories of problems",
        "3. The estimated period",
        "4. A confidence level (0-1)",
        "5. Recommended preventive actions",
        "",
        'Respond in JSON: {"insight": "text", "risk_areas": ["..."], "likely_problems": ["..."], '
        '"estimated_period": "...", "confidence": 0.75, "relevance": 8, "recommendations": ["..."]}',
        _context_line(context),
    ]
    return "\n".join(lines)


def build_explanation_prompt(context: dict[str, Any]) -> str:
    lines = [
        "Explain why the phenomenon is happening in the given context.",
        "",
    ]
    if context.get("question"):
        lines.append(f"SPECIFIC QUESTION: {context['question']}")
        lines.append("")
    lines += [
        "Provide:",
        "1. A clear explanation",
        "2. Probable causes",
        "3. Historical context",
        "4. Contributing factors",
        "",
        'Respond in JSON: {"insight": "text", "causes": ["..."], "historical_context": "...", '
        '"factors": ["..."], "confidence": 0.85, "relevance": 7}',
        _context_line(context),
    ]
    return "\n".join(lines)


def build_question_prompt(context: dict[str, Any], metrics: AggregatedMetrics | None = None) -> str:
    """Free-form question. ``context['question']`` holds the question text."""
    lines = [
        "Answer the following question about municipal incidents:",
        "",
        f"QUESTION: {context['question']}",
        "",
    ]
    if metrics is not None:
        lines += [
            "AVAILABLE DATA:",
            f"- Total incidents: {metrics['total_current']}",
            f"- Mean severity: {_num(metrics['severity_mean'])}",
            "",
        ]
    lines += [
        "Provide:",
        "1. A clear, objective answer grounded in the data",
        "2. The data points that support it",
        "3. What the data cannot tell",
        "",
        'Respond in JSON: {"insight": "full answer", "key_findings": ["..."], "confidence": 0.85, "relevance": 7}',
        _context_line(context),
    ]
    return "\n".join(lines)


def build_classification_prompt(category: Category, area: str, description: str) -> str:
    """Ask for a bare 1-10 severity score for one new incident."""
    lines = [
        "Rate the severity of this municipal incident from 1 to 10.",
        f"Category: {category.value.replace('_', ' ').lower()}",
        f"Area: {area.strip()}",
        f"Description: {description.strip() or 'No description'}",
        "",
        "Answer with a single number from 1 to 10.",
    ]
    return "\n".join(lines)
