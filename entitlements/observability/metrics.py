"""
Metrics Collection with Prometheus.

Exposes entitlement decision and quota metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from entitlements.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    RESOURCE = "resource"
    ALLOWED = "allowed"
    REASON = "reason"
    ERROR_TYPE = "error_type"


class EntitlementMetrics:
    """
    Centralized metrics for the Entitlements API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Access decisions (rate, outcome, reason, latency)
    - Download quota (checks, denials, recorded downloads)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "entitlements_service",
            "Service information",
        )
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
            "entitlements_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "entitlements_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "entitlements_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Decision Metrics
        # ====================================================================
        self.decisions_total = Counter(
            "entitlements_decisions_total",
            "Total access decisions",
            [MetricLabels.RESOURCE, MetricLabels.ALLOWED, MetricLabels.REASON],
        )

        self.decision_duration_seconds = Histogram(
            "entitlements_decision_duration_seconds",
            "Access decision duration in seconds",
            [MetricLabels.RESOURCE],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
        )

        # ====================================================================
        # Download Quota Metrics
        # ====================================================================
        self.downloads_recorded_total = Counter(
            "entitlements_downloads_recorded_total",
            "Total download events appended to the ledger",
        )

        self.quota_denials_total = Counter(
            "entitlements_quota_denials_total",
            "Downloads refused because the monthly limit was reached",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "entitlements_errors_total",
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

    def record_decision(
        self, resource: str, allowed: bool, reason: str, duration: float
    ) -> None:
        """Record an access decision."""
        if not settings.metrics_enabled:
            return
        self.decisions_total.labels(
            resource=resource, allowed=str(allowed), reason=reason
        ).inc()
        self.decision_duration_seconds.labels(resource=resource).observe(duration)

    def record_download(self) -> None:
        """Record an appended download event."""
        self.downloads_recorded_total.inc()

    def record_quota_denial(self) -> None:
        """Record a quota-exceeded refusal."""
        self.quota_denials_total.inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = EntitlementMetrics()
