class DomainError(Exception):
    retryable: bool = False

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(DomainError):
    def __init__(self, entity: str, message: str | None = None, details: dict | None = None):
        code = f"NF_{entity.upper()}_001"
        msg = message or f"{entity} not found"
        super().__init__(code, msg, details)


class AuthenticationError(DomainError):
    def __init__(self, message: str, code: str = "AUTH_001", details: dict | None = None):
        super().__init__(code, message, details)


class ValidationError(DomainError):
    def __init__(self, field: str, message: str, details: dict | None = None):
        code = f"VAL_{field.upper()}_001"
        msg = f"Validation failed for {field}: {message}"
        super().__init__(code, msg, details or {"field": field})


class ConfigurationError(DomainError):
    """Fatal misconfiguration (e.g. no model id). Never retried."""

    def __init__(self, message: str, code: str = "CFG_AI_MODEL_001", details: dict | None = None):
        super().__init__(code, message, details)


class RateLimitedError(DomainError):
    """The generation endpoint throttled the caller. Safe to retry with backoff."""

    retryable = True

    def __init__(
        self,
        message: str = "AI generation is temporarily rate limited. Please try again soon.",
        code: str = "AI_RATE_LIMITED_001",
        details: dict | None = None,
    ):
        super().__init__(code, message, details)


class MalformedOutputError(DomainError):
    """Model output could not be parsed as JSON.

    ``snippet`` holds the head of the raw output for logs; it is deliberately
    not part of ``details`` so it never reaches API responses.
    """

    def __init__(self, snippet: str = "", message: str = "Debrief generation failed", details: dict | None = None):
        self.snippet = snippet
        super().__init__("AI_MALFORMED_001", message, details or {"reason": "AI response was not valid JSON"})


class SchemaValidationError(DomainError):
    """Model output was valid JSON but did not match the debrief content schema."""

    def __init__(self, errors: list | None = None, message: str = "Debrief generation failed"):
        self.errors = errors or []
        super().__init__(
            "AI_SCHEMA_001",
            message,
            {"reason": "AI response did not match the debrief schema", "error_count": len(self.errors)},
        )


class StorageError(DomainError):
    def __init__(self, message: str, code: str = "DB_STORAGE_001", details: dict | None = None):
        super().__init__(code, message, details)
