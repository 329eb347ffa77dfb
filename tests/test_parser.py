"""Unit tests for AI response parsing: pure functions, no I/O."""

import logging
from unittest.mock import patch

import pytest

from incident_insights.ai.parser import (
    DEGRADED_CONFIDENCE,
    DEGRADED_RELEVANCE,
    extract,
    locate_json,
    normalize_keys,
    parse_severity,
    sanitize,
    strip_fences,
    truncate,
)
from incident_insights.ai.schema import DEFAULT_CONFIDENCE, DEFAULT_RELEVANCE, InsightAnswer, ReportAnswer
from incident_insights.errors import MalformedJson, NoJsonFound


class TestTextHelpers:
    def test_sanitize_drops_control_chars_and_normalizes_newlines(self) -> None:
        assert sanitize("  a\x00b\r\nc\td\x7f  ") == "ab\nc\td"

    def test_truncate_short_text_untouched(self) -> None:
        assert truncate("short", 10) == "short"

    def test_truncate_long_text(self) -> None:
        result = truncate("x" * 600, 500)
        assert len(result) == 500
        assert result.endswith("...")

    def test_strip_fences_with_language_tag(self) -> None:
        assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strip_fences_without_language_tag(self) -> None:
        assert strip_fences('```\n{"a": 1}```') == '{"a": 1}'


class TestLocateJson:
    def test_skips_prose_around_object(self) -> None:
        assert locate_json('Here you go: {"a": {"b": 1}} hope it helps') == '{"a": {"b": 1}}'

    def test_braces_inside_strings_ignored(self) -> None:
        text = '{"insight": "use {curly} braces", "n": 1} trailing }'
        assert locate_json(text) == '{"insight": "use {curly} braces", "n": 1}'

    def test_escaped_quote_inside_string(self) -> None:
        text = r'{"insight": "say \"hi}\" now"} tail'
        assert locate_json(text) == r'{"insight": "say \"hi}\" now"}'

    def test_no_object(self) -> None:
        with pytest.raises(NoJsonFound):
            locate_json("no json here at all")

    def test_never_closes(self) -> None:
        with pytest.raises(MalformedJson):
            locate_json('{"insight": "cut off')


class TestNormalizeKeys:
    def test_aliases_mapped(self) -> None:
        result = normalize_keys({"confianca": 0.8, "keyFindings": ["a"], "tendencias": {"x": 1}})
        assert result == {"confidence": 0.8, "key_findings": ["a"], "trends": {"x": 1}}

    def test_canonical_key_wins_regardless_of_order(self) -> None:
        assert normalize_keys({"confidence": 0.9, "confianca": 0.2})["confidence"] == 0.9
        assert normalize_keys({"confianca": 0.2, "confidence": 0.9})["confidence"] == 0.9


class TestExtract:
    def test_fenced_json_with_alias(self) -> None:
        raw = '```json\n{"insight": "Potholes doubled in Centro", "confianca": 0.85, "relevance": 9}\n```'
        answer = extract(raw, InsightAnswer)
        assert answer.insight == "Potholes doubled in Centro"
        assert answer.confidence == 0.85
        assert answer.relevance == 9
        assert answer.degraded is False

    def test_no_json_degrades(self) -> None:
        answer = extract("no json here at all", InsightAnswer)
        assert answer.degraded is True
        assert answer.insight == "no json here at all"
        assert answer.confidence == DEGRADED_CONFIDENCE
        assert answer.relevance == DEGRADED_RELEVANCE

    def test_degraded_text_is_truncated(self) -> None:
        answer = extract("plain text " * 100, InsightAnswer)
        assert answer.degraded is True
        assert len(answer.insight) == 500

    def test_truncated_object_degrades(self) -> None:
        answer = extract('{"insight": "partial", "nested": {"x": 1}', InsightAnswer)
        assert answer.degraded is True

    def test_control_chars_inside_strings_recovered(self) -> None:
        answer = extract('{"insight": "line one\x01 and two", "confidence": 0.6}', InsightAnswer)
        assert answer.degraded is False
        assert answer.insight == "line one and two"
        assert answer.confidence == 0.6

    def test_defaults_when_scores_missing(self) -> None:
        answer = extract('{"insight": "ok"}', InsightAnswer)
        assert answer.confidence == DEFAULT_CONFIDENCE
        assert answer.relevance == DEFAULT_RELEVANCE

    def test_scores_coerced_and_clamped(self) -> None:
        answer = extract('{"insight": "ok", "confidence": 85, "relevance": 15}', InsightAnswer)
        assert answer.confidence == 0.85
        assert answer.relevance == 10

    def test_unparseable_scores_fall_back(self) -> None:
        answer = extract('{"insight": "ok", "confidence": "high", "relevance": null}', InsightAnswer)
        assert answer.confidence == DEFAULT_CONFIDENCE
        assert answer.relevance == DEFAULT_RELEVANCE

    @pytest.mark.parametrize("number", ["1e999", "-1e999", "Infinity", "NaN"])
    def test_non_finite_scores_fall_back(self, number: str) -> None:
        answer = extract(f'{{"insight": "x", "relevancia": {number}, "confianca": {number}}}', InsightAnswer)
        assert answer.degraded is False
        assert answer.insight == "x"
        assert answer.confidence == DEFAULT_CONFIDENCE
        assert answer.relevance == DEFAULT_RELEVANCE

    def test_unexpected_build_error_degrades(self) -> None:
        with patch("incident_insights.ai.parser._build", side_effect=RuntimeError("boom")):
            answer = extract('{"insight": "ok"}', InsightAnswer)
        assert answer.degraded is True
        assert answer.insight == '{"insight": "ok"}'

    def test_single_value_wrapped_as_list(self) -> None:
        answer = extract('{"insight": "ok", "recommendations": "repave Rua A", "fatores": "rain"}', InsightAnswer)
        assert answer.recommendations == ["repave Rua A"]
        assert answer.factors == ["rain"]

    def test_unknown_keys_kept_in_extras(self) -> None:
        answer = extract('{"insight": "ok", "urgency": 8, "comparison": "above average"}', InsightAnswer)
        assert answer.extras == {"urgency": 8, "comparison": "above average"}
        content = answer.to_content()
        assert content["urgency"] == 8
        assert "extras" not in content

    def test_report_shape(self) -> None:
        raw = (
            '{"resumoExecutivo": "Quiet week.", "key_findings": ["fewer potholes"], '
            '"critical_areas": [{"area": "Centro"}], "recommendations": [{"action": "patch", "priority": "high"}], '
            '"trends": {"growth": "down"}}'
        )
        answer = extract(raw, ReportAnswer)
        assert answer.executive_summary == "Quiet week."
        assert answer.critical_areas == [{"area": "Centro"}]
        assert answer.extras["trends"] == {"growth": "down"}

    def test_degraded_report_carries_summary(self) -> None:
        answer = extract("The model refused to answer in JSON.", ReportAnswer)
        assert answer.degraded is True
        assert answer.executive_summary == "The model refused to answer in JSON."

    def test_missing_expected_keys_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="incident_insights.ai.parser"):
            answer = extract('{"key_findings": []}', ReportAnswer)
        assert answer.degraded is False
        assert "executive_summary" in caplog.text

    def test_json_array_degrades(self) -> None:
        assert extract("[1, 2, 3]", InsightAnswer).degraded is True


class TestParseSeverity:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("7", 7),
            ("10", 10),
            (" Severity: 9/10 ", 9),
            ("I would rate it 3.", 3),
            ('{"severity": 4}', 4),
        ],
    )
    def test_score_found(self, raw: str, expected: int) -> None:
        assert parse_severity(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "very bad", "0", "100", "11"])
    def test_no_score(self, raw: str) -> None:
        assert parse_severity(raw) is None
