"""
Error classification and output contract for debrief generation.

The generation endpoint is an untyped boundary: gateways, SDKs and raw HTTP
clients all raise different exception types. Rate limiting is therefore
detected from the error's signature (class name, message, HTTP status)
rather than its type.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from debrief_service.core.exceptions import MalformedOutputError, SchemaValidationError
from debrief_service.schemas.debrief import SessionDebriefContent

# Exception class names gateways/SDKs use for throttling
RATE_LIMIT_ERROR_NAMES = frozenset({"GatewayRateLimitError", "RateLimitError"})
RATE_LIMIT_MESSAGE_MARKERS = ("rate limit", "free credits")
RATE_LIMIT_STATUS = 429


class GenerationErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    MALFORMED_OUTPUT = "malformed_output"  # assigned at parse time, never by the classifier
    UNCLASSIFIED = "unclassified"


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_rate_limit_error(exc: BaseException) -> bool:
    if type(exc).__name__ in RATE_LIMIT_ERROR_NAMES:
        return True
    message = str(exc).lower()
    if any(marker in message for marker in RATE_LIMIT_MESSAGE_MARKERS):
        return True
    return _status_code(exc) == RATE_LIMIT_STATUS


def classify_generation_error(exc: BaseException) -> GenerationErrorKind:
    if is_rate_limit_error(exc):
        return GenerationErrorKind.RATE_LIMITED
    return GenerationErrorKind.UNCLASSIFIED


def parse_generated_json(raw: str, snippet_length: int = 200) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedOutputError(snippet=(raw or "")[:snippet_length]) from exc


def validate_debrief_content(data: Any) -> SessionDebriefContent:
    try:
        return SessionDebriefContent.model_validate(data)
    except PydanticValidationError as exc:
        raise SchemaValidationError(
            errors=exc.errors(include_url=False, include_input=False)
        ) from exc


def parse_debrief_content(raw: str, snippet_length: int = 200) -> SessionDebriefContent:
    """Raw model text -> validated content, or MalformedOutputError / SchemaValidationError."""
    return validate_debrief_content(parse_generated_json(raw, snippet_length))
