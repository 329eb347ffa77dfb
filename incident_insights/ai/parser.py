"""Extract a structured answer from free-text AI output.

Models wrap JSON in markdown fences, prepend prose, emit raw control
characters inside strings and occasionally stop mid-object. ``extract``
copes with all of that and never raises: when no JSON object can be
recovered it returns a degraded answer built from the raw text.
"""

import json
import logging
import math
import re
from typing import Any, TypeVar

from pydantic import ValidationError

from incident_insights.ai.schema import DEFAULT_CONFIDENCE, DEFAULT_RELEVANCE, StructuredAnswer
from incident_insights.errors import MalformedJson, NoJsonFound, ResponseParseError
from incident_insights.observability.metrics import DEGRADED_PARSES_TOTAL

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=StructuredAnswer)

DEGRADED_CONFIDENCE = 0.7
DEGRADED_RELEVANCE = 5
DEGRADED_TEXT_LIMIT = 500

_FENCE = "```"
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_ALL_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_SPACE_AROUND_COLON = re.compile(r"\s*:\s*")
_SPACE_AROUND_COMMA = re.compile(r"\s*,\s*")

# Older prompts asked for Portuguese keys; models also drift into camelCase.
KEY_ALIASES: dict[str, str] = {
    "confianca": "confidence",
    "relevancia": "relevance",
    "recomendacoes": "recommendations",
    "principaisAchados": "key_findings",
    "keyFindings": "key_findings",
    "areasCriticas": "critical_areas",
    "criticalAreas": "critical_areas",
    "resumoExecutivo": "executive_summary",
    "executiveSummary": "executive_summary",
    "fatores": "factors",
    "areasRisco": "risk_areas",
    "riskAreas": "risk_areas",
    "tendencias": "trends",
}


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def sanitize(text: str) -> str:
    """Drop control characters (keeping newlines and tabs), normalize line endings, trim."""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return _CONTROL_CHARS.sub("", normalized).strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def strip_fences(text: str) -> str:
    """Remove a leading fence (with or without language tag) and a trailing fence."""
    text = text.strip()
    if text.startswith(_FENCE):
        newline = text.find("\n")
        text = text[newline + 1 :] if newline != -1 else text[len(_FENCE) :]
    if text.endswith(_FENCE):
        text = text[: -len(_FENCE)]
    return text.strip()


# ---------------------------------------------------------------------------
# JSON location and loading
# ---------------------------------------------------------------------------


def locate_json(text: str) -> str:
    """Return the substring spanning the first balanced top-level JSON object.

    Braces inside string literals are ignored. If the object never closes,
    falls back to the last ``}`` in the text.

    Raises:
        NoJsonFound: There is no ``{`` at all.
        MalformedJson: The object never closes and no later ``}`` exists.
    """
    start = text.find("{")
    if start == -1:
        raise NoJsonFound("No JSON object in response")

    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        char = text[pos]
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : pos + 1]

    end = text.rfind("}")
    if end <= start:
        raise MalformedJson("Unbalanced JSON object in response")
    return text[start : end + 1]


def _cleanup(candidate: str) -> str:
    cleaned = _ALL_CONTROL_CHARS.sub("", candidate)
    cleaned = _SPACE_AROUND_COLON.sub(":", cleaned)
    return _SPACE_AROUND_COMMA.sub(",", cleaned)


def load_json(candidate: str) -> dict[str, Any]:
    """Parse a candidate object, retrying once after a cleanup pass."""
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        try:
            data = json.loads(_cleanup(candidate))
        except json.JSONDecodeError as exc:
            raise MalformedJson(f"Invalid JSON after cleanup: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise MalformedJson(f"Expected a JSON object, got {type(data).__name__}")
    return data


# ---------------------------------------------------------------------------
# Normalization into the typed answer
# ---------------------------------------------------------------------------


def normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Map aliased keys onto the canonical snake_case names. Canonical keys win."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        canonical = KEY_ALIASES.get(key, key)
        if canonical in result and canonical == KEY_ALIASES.get(key):
            continue
        result[canonical] = value
    return result


def _as_float(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    # Some models answer confidence as a percentage
    if number > 1.0 and number <= 100.0:
        number /= 100.0
    return min(max(number, 0.0), 1.0)


def _as_int(value: Any, default: int) -> int:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return default
    return min(max(number, 1), 10)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _build(data: dict[str, Any], shape: type[A]) -> A:
    fields = set(shape.model_fields) - {"degraded", "extras"}
    known: dict[str, Any] = {}
    extras: dict[str, Any] = {}
    for key, value in data.items():
        if key in fields:
            known[key] = value
        else:
            extras[key] = value

    known["confidence"] = _as_float(known.get("confidence"), DEFAULT_CONFIDENCE)
    known["relevance"] = _as_int(known.get("relevance"), DEFAULT_RELEVANCE)
    for name, field in shape.model_fields.items():
        if name in known and field.default_factory is list:
            known[name] = _as_list(known[name])
    for name in ("insight", "executive_summary"):
        if name in known and not isinstance(known[name], str):
            known[name] = json.dumps(known[name], ensure_ascii=False)
    return shape(**known, extras=extras)


def degraded(raw_text: str, shape: type[A]) -> A:
    """Fallback answer carrying the sanitized raw text."""
    text = truncate(sanitize(raw_text), DEGRADED_TEXT_LIMIT)
    values: dict[str, Any] = {
        "insight": text,
        "confidence": DEGRADED_CONFIDENCE,
        "relevance": DEGRADED_RELEVANCE,
        "degraded": True,
    }
    if "executive_summary" in shape.model_fields:
        values["executive_summary"] = text
    return shape(**values)


def _count_degraded(shape: type[StructuredAnswer]) -> None:
    try:
        DEGRADED_PARSES_TOTAL.labels(shape=shape.__name__).inc()
    except Exception:
        logger.debug("metrics: degraded parse counter failed", exc_info=True)


def extract(raw_text: str, shape: type[A]) -> A:
    """Turn an AI response into ``shape``. Never raises."""
    try:
        data = normalize_keys(load_json(locate_json(strip_fences(raw_text))))
        answer = _build(data, shape)
    except (ResponseParseError, ValidationError) as exc:
        logger.warning("Falling back to degraded answer: %s", exc)
        _count_degraded(shape)
        return degraded(raw_text, shape)
    except Exception:
        logger.exception("Unexpected error while parsing AI response")
        _count_degraded(shape)
        return degraded(raw_text, shape)

    missing = [key for key in shape.expected_keys if key not in data]
    if missing:
        logger.warning("AI response missing expected keys: %s", ", ".join(missing))
    return answer


# ---------------------------------------------------------------------------
# Severity scores
# ---------------------------------------------------------------------------

_SEVERITY_TOKEN = re.compile(r"\b(10|[1-9])\b")
_NON_DIGITS = re.compile(r"\D")


def parse_severity(raw_text: str) -> int | None:
    """Read a 1-10 severity from a short answer.

    The first standalone number in range wins ("Severity: 7/10" gives 7).
    Otherwise all digits are read as one number. Returns ``None`` when neither
    yields a value in range.
    """
    text = sanitize(raw_text)
    if not text:
        return None
    match = _SEVERITY_TOKEN.search(text)
    if match:
        return int(match.group(1))
    digits = _NON_DIGITS.sub("", text)
    if digits and 1 <= int(digits) <= 10:
        return int(digits)
    return None
