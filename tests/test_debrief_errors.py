"""Tests for generation error classification and the output contract."""
import httpx
import pytest

from debrief_service.core.exceptions import MalformedOutputError, SchemaValidationError
from debrief_service.services.debrief_errors import (
    GenerationErrorKind,
    classify_generation_error,
    is_rate_limit_error,
    parse_debrief_content,
)
from tests.factories import content_json


class GatewayRateLimitError(Exception):
    pass


class StatusError(Exception):
    def __init__(self, message, status):
        super().__init__(message)
        self.status = status


def _http_status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://gateway.test/v1/chat/completions")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("upstream error", request=request, response=response)


class TestRateLimitClassification:
    def test_known_error_name(self):
        assert is_rate_limit_error(GatewayRateLimitError("slow down"))

    @pytest.mark.parametrize(
        "message",
        ["Rate limit exceeded", "you hit the RATE LIMIT", "Out of free credits for today"],
    )
    def test_message_markers(self, message):
        assert classify_generation_error(RuntimeError(message)) is GenerationErrorKind.RATE_LIMITED

    def test_status_attribute(self):
        assert is_rate_limit_error(StatusError("too many", status=429))

    def test_httpx_response_status(self):
        assert is_rate_limit_error(_http_status_error(429))

    def test_other_errors_unclassified(self):
        assert classify_generation_error(_http_status_error(500)) is GenerationErrorKind.UNCLASSIFIED
        assert classify_generation_error(TimeoutError("read timeout")) is GenerationErrorKind.UNCLASSIFIED


class TestParseDebriefContent:
    def test_valid_output(self):
        content = parse_debrief_content(content_json())

        assert content.summary.startswith("Strong lower-body day")
        assert content.pr_highlights[0].exercise_name == "Back Squat"
        assert content.streak_context.status == "building"

    def test_non_json_output_is_malformed(self):
        raw = "Sure! Here is your debrief: " + "x" * 500

        with pytest.raises(MalformedOutputError) as exc_info:
            parse_debrief_content(raw, snippet_length=200)

        assert exc_info.value.snippet == raw[:200]
        assert "snippet" not in exc_info.value.details
        assert exc_info.value.message == "Debrief generation failed"

    def test_schema_mismatch_is_distinct(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            parse_debrief_content(content_json(summary="", adherenceScore=140))

        assert exc_info.value.code == "AI_SCHEMA_001"
        assert exc_info.value.details["error_count"] == 2
        assert not isinstance(exc_info.value, MalformedOutputError)

    def test_json_that_is_not_an_object_fails_schema(self):
        with pytest.raises(SchemaValidationError):
            parse_debrief_content("[1, 2, 3]")
