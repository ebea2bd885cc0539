"""
Structured Logging with Structlog.

Every entry is one JSON object (or a coloured console line in development)
carrying the service name, version and any request context bound through
log_context. Credentials never reach the log stream: the redaction processor
masks password, token and signature fields wherever a call site passes them.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from kuiqlee.config import settings

REDACTED = "[redacted]"

# Keys that may hold a secret if a call site logs a request body or headers
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "password_hash",
        "token",
        "authorization",
        "stripe_signature",
        "api_key",
        "jwt_secret",
    }
)

# Chatty at INFO; their useful signal is at WARNING and above
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "stripe")


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask values under sensitive keys, one level into nested dicts."""
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: REDACTED if str(k).lower() in SENSITIVE_KEYS else v for k, v in value.items()
            }
    return event_dict


def build_processors(log_format: str) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def setup_logging() -> None:
    """
    Configure structlog on top of the standard library root logger.

    A metered request produces entries like:
    {
        "event": "usage_limit_reached",
        "level": "info",
        "timestamp": "2026-10-18T09:30:00.000000Z",
        "logger": "kuiqlee.services.entitlement",
        "service": "kuiqlee-api",
        "version": "0.1.0",
        "request_id": "7f3c...",
        "identity_id": "0b6e...",
        "domain": "news.example",
        "used": 3,
        "limit": 3
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=build_processors(settings.log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**context: Any) -> Iterator[None]:
    """
    Bind context to every entry logged inside the block.

    Usage:
        with log_context(request_id=request_id):
            snapshot = await service.check_entitlement(identity_id, domain)
    """
    structlog.contextvars.bind_contextvars(**context)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*context)
