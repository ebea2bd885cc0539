"""
Exception Handlers - Map the KuiqleeError hierarchy to HTTP responses.

Body shape is stable across all failures:
    {"success": false, "error": <code>, "detail": <message>, ...extra}
"""

from dataclasses import dataclass

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from structlog import get_logger

from kuiqlee.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidInputError,
    KuiqleeError,
    ModelMalformedResponseError,
    ModelOverloadedError,
    ModelRateLimitedError,
    ModelUnauthorizedError,
    ResourceNotFoundError,
    UnavailableError,
    UsageLimitReachedError,
    WebhookVerificationError,
)
from kuiqlee.observability.metrics import metrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class ErrorMapping:
    """HTTP status and machine-readable code for an exception family."""

    status_code: int
    code: str


# Checked in order; subclasses must precede their bases
ERROR_MAPPINGS: tuple[tuple[type[KuiqleeError], ErrorMapping], ...] = (
    (WebhookVerificationError, ErrorMapping(status.HTTP_400_BAD_REQUEST, "invalid_signature")),
    (InvalidInputError, ErrorMapping(status.HTTP_400_BAD_REQUEST, "invalid_input")),
    (AuthenticationError, ErrorMapping(status.HTTP_401_UNAUTHORIZED, "unauthenticated")),
    (UsageLimitReachedError, ErrorMapping(status.HTTP_403_FORBIDDEN, "usage_limit_reached")),
    (ResourceNotFoundError, ErrorMapping(status.HTTP_404_NOT_FOUND, "not_found")),
    (ConflictError, ErrorMapping(status.HTTP_409_CONFLICT, "conflict")),
    (UnavailableError, ErrorMapping(status.HTTP_503_SERVICE_UNAVAILABLE, "unavailable")),
    (ModelUnauthorizedError, ErrorMapping(status.HTTP_502_BAD_GATEWAY, "model_unauthorized")),
    (ModelRateLimitedError, ErrorMapping(status.HTTP_429_TOO_MANY_REQUESTS, "model_rate_limited")),
    (ModelOverloadedError, ErrorMapping(status.HTTP_503_SERVICE_UNAVAILABLE, "model_unavailable")),
    (ModelMalformedResponseError, ErrorMapping(status.HTTP_502_BAD_GATEWAY, "model_bad_response")),
)

INTERNAL_ERROR = ErrorMapping(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error")


def mapping_for(exc: KuiqleeError) -> ErrorMapping:
    for exc_type, mapping in ERROR_MAPPINGS:
        if isinstance(exc, exc_type):
            return mapping
    return INTERNAL_ERROR


def error_response(exc: KuiqleeError) -> JSONResponse:
    """Build the JSON response for a service exception."""
    mapping = mapping_for(exc)
    content: dict[str, object] = {
        "success": False,
        "error": mapping.code,
        "detail": getattr(exc, "message", None) or str(exc),
    }
    headers: dict[str, str] = {}

    if isinstance(exc, AuthenticationError):
        content["requires_auth"] = True
        headers["WWW-Authenticate"] = "Bearer"
    elif isinstance(exc, UsageLimitReachedError):
        content.update(
            used=exc.used,
            remaining=exc.remaining,
            limit=exc.limit,
            requires_upgrade=True,
        )
    elif isinstance(exc, UnavailableError):
        headers["Retry-After"] = "5"

    if mapping is INTERNAL_ERROR:
        content["detail"] = "Internal server error"

    return JSONResponse(status_code=mapping.status_code, content=content, headers=headers)


async def kuiqlee_exception_handler(request: Request, exc: KuiqleeError) -> JSONResponse:
    """Translate service exceptions raised anywhere under a route."""
    mapping = mapping_for(exc)

    if mapping.status_code >= 500:
        metrics.record_error(type(exc).__name__, request.url.path)
        logger.error(
            "request_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
            status_code=mapping.status_code,
        )
    else:
        logger.info(
            "request_rejected",
            path=request.url.path,
            error_type=type(exc).__name__,
            status_code=mapping.status_code,
        )

    return error_response(exc)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(KuiqleeError, kuiqlee_exception_handler)  # type: ignore[arg-type]
