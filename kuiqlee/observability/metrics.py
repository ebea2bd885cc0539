"""
Metrics Collection with Prometheus.

Exposes HTTP, auth, metering and webhook metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from kuiqlee.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    EVENT_TYPE = "event_type"
    ERROR_TYPE = "error_type"


class ServiceMetrics:
    """
    Centralized metrics for the Kuiqlee API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Auth attempts by operation and outcome
    - Entitlement checks and usage recording by outcome
    - Webhook events by type and outcome
    - Errors by type
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("kuiqlee_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "kuiqlee_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "kuiqlee_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "kuiqlee_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Auth Metrics
        # ====================================================================
        self.auth_attempts_total = Counter(
            "kuiqlee_auth_attempts_total",
            "Authentication operations by outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Metering Metrics
        # ====================================================================
        self.entitlement_checks_total = Counter(
            "kuiqlee_entitlement_checks_total",
            "Entitlement checks by outcome",
            [MetricLabels.OUTCOME],
        )

        self.usage_records_total = Counter(
            "kuiqlee_usage_records_total",
            "Usage recording attempts by outcome",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "kuiqlee_webhook_events_total",
            "Payment provider webhook events by type and outcome",
            [MetricLabels.EVENT_TYPE, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "kuiqlee_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_auth(self, operation: str, outcome: str) -> None:
        """Record an auth operation (register, login, verify, logout)."""
        self.auth_attempts_total.labels(operation=operation, outcome=outcome).inc()

    def record_entitlement_check(self, outcome: str) -> None:
        """Record an entitlement decision (premium, revisit, allowed, denied)."""
        self.entitlement_checks_total.labels(outcome=outcome).inc()

    def record_usage(self, outcome: str) -> None:
        """Record a usage write (recorded, already_recorded, premium, failed)."""
        self.usage_records_total.labels(outcome=outcome).inc()

    def record_webhook(self, event_type: str, outcome: str) -> None:
        """Record a processed webhook event."""
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ServiceMetrics()
