"""Prometheus metric definitions for insight engine self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

REQUEST_DURATION_BUCKETS = (0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0)
AI_CALL_DURATION_BUCKETS = (0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0)
REPORT_DURATION_BUCKETS = (1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)

# ---------------------------------------------------------------------------
# Request-level metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "incident_insights_request_duration_seconds",
    "End-to-end request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "incident_insights_requests_total",
    "Total number of requests",
    labelnames=["endpoint", "status"],
)

# ---------------------------------------------------------------------------
# AI backend metrics
# ---------------------------------------------------------------------------

AI_CALL_DURATION = Histogram(
    "incident_insights_ai_call_duration_seconds",
    "Latency of one generative backend call (including retries) in seconds",
    labelnames=["purpose"],
    buckets=AI_CALL_DURATION_BUCKETS,
)

AI_CALLS_TOTAL = Counter(
    "incident_insights_ai_calls_total",
    "Total number of generative backend calls",
    labelnames=["purpose", "status"],
)

AI_RETRIES_TOTAL = Counter(
    "incident_insights_ai_retries_total",
    "Retries issued after a transient backend failure",
    labelnames=["reason"],
)

LLM_TOKEN_USAGE = Counter(
    "incident_insights_llm_token_usage",
    "Total LLM token usage",
    labelnames=["type"],
)

LLM_ESTIMATED_COST = Counter(
    "incident_insights_llm_estimated_cost_dollars",
    "Estimated cumulative LLM cost in USD",
)

DEGRADED_PARSES_TOTAL = Counter(
    "incident_insights_degraded_parses_total",
    "AI responses that could not be parsed and fell back to a degraded answer",
    labelnames=["shape"],
)

SEVERITY_CLASSIFICATIONS_TOTAL = Counter(
    "incident_insights_severity_classifications_total",
    "Incident severity classifications by where the score came from",
    labelnames=["source"],
)

# ---------------------------------------------------------------------------
# Insight cache metrics
# ---------------------------------------------------------------------------

CACHE_LOOKUPS_TOTAL = Counter(
    "incident_insights_cache_lookups_total",
    "Insight cache lookups",
    labelnames=["kind", "result"],
)

CACHE_EVICTIONS_TOTAL = Counter(
    "incident_insights_cache_evictions_total",
    "Insight cache entries removed",
    labelnames=["reason"],
)

# ---------------------------------------------------------------------------
# Report metrics
# ---------------------------------------------------------------------------

REPORTS_TOTAL = Counter(
    "incident_insights_reports_total",
    "Total number of generated reports",
    labelnames=["trigger", "status"],
)

REPORT_DURATION = Histogram(
    "incident_insights_report_duration_seconds",
    "Time taken to generate a report in seconds",
    buckets=REPORT_DURATION_BUCKETS,
)

REPORTS_IN_PROGRESS = Gauge(
    "incident_insights_reports_in_progress",
    "Reports currently in GENERATING state in this process",
)

# ---------------------------------------------------------------------------
# Health / info metrics
# ---------------------------------------------------------------------------

COMPONENT_HEALTHY = Gauge(
    "incident_insights_component_healthy",
    "Whether a dependency component is healthy (1=healthy, 0=unhealthy)",
    labelnames=["component"],
)

APP_INFO = Info(
    "incident_insights",
    "Insight engine build information",
)

# ---------------------------------------------------------------------------
# Cost pricing (USD per token)
# ---------------------------------------------------------------------------

# Prices per token for cost estimation.  Keys are model name prefixes
# (provider prefixes such as "openai/" are stripped before matching).
COST_PER_TOKEN: dict[str, dict[str, float]] = {
    "gpt-4o-mini": {"prompt": 0.15 / 1_000_000, "completion": 0.60 / 1_000_000},
    "gpt-4o": {"prompt": 2.50 / 1_000_000, "completion": 10.00 / 1_000_000},
    "claude-sonnet": {"prompt": 3.00 / 1_000_000, "completion": 15.00 / 1_000_000},
    "claude-haiku": {"prompt": 0.80 / 1_000_000, "completion": 4.00 / 1_000_000},
}
DEFAULT_COST_PER_TOKEN: dict[str, float] = {"prompt": 2.50 / 1_000_000, "completion": 10.00 / 1_000_000}


def estimate_cost(model_name: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Estimated USD cost of one call, by longest matching model prefix."""
    name = model_name.rsplit("/", 1)[-1]
    pricing = DEFAULT_COST_PER_TOKEN
    best = 0
    for prefix, costs in COST_PER_TOKEN.items():
        if name.startswith(prefix) and len(prefix) > best:
            pricing, best = costs, len(prefix)
    return (prompt_tokens * pricing["prompt"]) + (completion_tokens * pricing["completion"])
