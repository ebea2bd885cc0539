"""
Observability module - Logging, Metrics, and Tracing.
"""

from kuiqlee.observability.logging import get_logger, log_context, setup_logging
from kuiqlee.observability.metrics import metrics
from kuiqlee.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "get_logger",
    "get_tracer",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
