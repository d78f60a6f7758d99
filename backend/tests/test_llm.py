"""
Tests for llm.py and the model response schemas.
"""
import json

import pytest

from narrative_signals.schemas.analysis import (
    AnalysisRequest,
    DetectedSignal,
    DetectionResponse,
    MomentumResponse,
    SignalUpdate,
)
from narrative_signals.services.llm import (
    ModelResponseError,
    complete_json,
    parse_model_response,
    strip_code_fences,
)

from tests.fixtures.pipeline_fixtures import FakeLLMClient


class TestParseModelResponse:
    """Tests for tolerant-but-strict response parsing."""

    def test_strip_code_fences(self):
        """Markdown fences around a reply should be removed."""
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'

    def test_fenced_json_is_accepted(self):
        """A fenced JSON reply should parse like a bare one."""
        text = '```json\n{"signals": [], "analysis_notes": "quiet day"}\n```'
        parsed = parse_model_response(text, DetectionResponse)
        assert parsed.signals == []
        assert parsed.analysis_notes == "quiet day"

    @pytest.mark.parametrize("text", ["", "   ", "not json at all", "{\"signals\": [", "[1, 2"])
    def test_invalid_json_raises(self, text):
        """Non-JSON or wrongly shaped replies raise ModelResponseError."""
        with pytest.raises(ModelResponseError):
            parse_model_response(text, DetectionResponse)

    def test_schema_mismatch_raises(self):
        """A signal without a headline is not a usable candidate."""
        text = json.dumps({"signals": [{"summary": "no headline"}]})
        with pytest.raises(ModelResponseError):
            parse_model_response(text, DetectionResponse)


class TestDetectedSignal:
    """Tests for the lenient detection candidate schema."""

    def test_suggestions_are_normalized(self):
        """Suggestions should match their canonical values regardless of case."""
        candidate = DetectedSignal.model_validate(
            {
                "headline": "  Port strike spreads  ",
                "suggested_status": "accelerating",
                "suggested_momentum": "HIGH",
                "suggested_risk_level": "watch_closely",
            }
        )
        assert candidate.headline == "Port strike spreads"
        assert candidate.status == "Accelerating"
        assert candidate.momentum == "high"
        assert candidate.risk_level == "watch_closely"

    def test_unknown_suggestions_become_none(self):
        """Unknown suggestion values become None instead of failing."""
        candidate = DetectedSignal.model_validate(
            {
                "headline": "Port strike",
                "suggested_status": "Archived",
                "suggested_momentum": "explosive",
                "suggested_risk_level": "panic",
            }
        )
        assert candidate.status is None
        assert candidate.momentum is None
        assert candidate.risk_level is None

    def test_list_fields_are_coerced(self):
        """Bare strings, None and blank entries become clean lists."""
        candidate = DetectedSignal.model_validate(
            {"headline": "x", "tags": "single", "key_points": None, "raw_ingestion_ids": ["a", "", None]}
        )
        assert candidate.tags == ["single"]
        assert candidate.key_points == []
        assert candidate.raw_ingestion_ids == ["a"]

    def test_blank_headline_is_rejected(self):
        """A candidate without a headline is invalid."""
        with pytest.raises(ValueError):
            DetectedSignal.model_validate({"headline": "   "})


class TestSignalUpdate:
    """Tests for the strict momentum update schema."""

    def test_valid_update(self):
        """A well-formed momentum update should parse."""
        update = SignalUpdate.model_validate(
            {
                "signal_id": " abc ",
                "new_status": "stabilizing",
                "new_momentum": "low",
                "new_risk_level": "",
            }
        )
        assert update.signal_id == "abc"
        assert update.new_status == "Stabilizing"
        assert update.new_momentum == "low"
        assert update.new_risk_level is None

    @pytest.mark.parametrize("field,value", [
        ("new_status", "Archived"),
        ("new_status", "Exploding"),
        ("new_momentum", "extreme"),
        ("new_risk_level", "panic"),
    ])
    def test_invalid_values_fail_the_response(self, field, value):
        """One invalid update value fails the whole momentum response."""
        payload = {"signal_id": "abc", "new_status": "New", "new_momentum": "high", field: value}
        with pytest.raises(ModelResponseError):
            parse_model_response(json.dumps({"signal_updates": [payload]}), MomentumResponse)


class TestAnalysisRequest:
    @pytest.mark.parametrize("hours", [0, -1, 337])
    def test_hours_back_out_of_range(self, hours):
        """hours_back outside 1-336 should be rejected."""
        with pytest.raises(ValueError):
            AnalysisRequest(project_id="00000000-0000-0000-0000-000000000001", hours_back=hours)

    def test_hours_back_optional(self):
        """hours_back may be omitted."""
        request = AnalysisRequest(project_id="00000000-0000-0000-0000-000000000001")
        assert request.hours_back is None


class TestCompleteJson:
    """Tests for the chat completion wrapper."""

    def test_requests_json_object_and_reports_usage(self):
        """The call should request JSON output and report token usage."""
        client = FakeLLMClient('{"signals": []}', prompt_tokens=50, completion_tokens=7)

        response = complete_json("system", "user", client=client)

        assert response.text == '{"signals": []}'
        assert response.model == "gpt-5-mini"
        assert response.prompt_tokens == 50
        assert response.completion_tokens == 7
        assert response.total_tokens == 57
        call = client.calls[0]
        assert call["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in call["messages"]] == ["system", "user"]
        assert call["messages"][1]["content"] == "user"

    def test_provider_errors_propagate(self):
        """Provider errors are raised to the caller."""
        client = FakeLLMClient("", error=RuntimeError("rate limited"))
        with pytest.raises(RuntimeError, match="rate limited"):
            complete_json("system", "user", client=client)
