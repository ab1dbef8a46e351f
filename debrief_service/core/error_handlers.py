from datetime import datetime

from fastapi import Request, status
from fastapi.responses import JSONResponse

from debrief_service.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DomainError,
    MalformedOutputError,
    NotFoundError,
    RateLimitedError,
    SchemaValidationError,
    StorageError,
    ValidationError,
)


ERROR_STATUS_MAP: dict[type[DomainError], int] = {
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    RateLimitedError: status.HTTP_429_TOO_MANY_REQUESTS,
    MalformedOutputError: status.HTTP_502_BAD_GATEWAY,
    SchemaValidationError: status.HTTP_502_BAD_GATEWAY,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    StorageError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = ERROR_STATUS_MAP.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)

    headers = {"Retry-After": "30"} if exc.retryable else None

    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={
            "data": None,
            "meta": {
                "request_id": getattr(request.state, "request_id", None),
                "timestamp": datetime.utcnow().isoformat() + "Z",
            },
            "errors": [
                {
                    "code": exc.code,
                    "message": exc.message,
                    "details": exc.details,
                }
            ],
        },
    )
