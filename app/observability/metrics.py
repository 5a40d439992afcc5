"""
Metrics Collection with Prometheus.

Exposes submission, quota and notification metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    KIND = "kind"
    ERROR_TYPE = "error_type"


class FormsMetrics:
    """
    Centralized metrics for the forms API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Submissions (accepted / rejected by kind, pipeline duration)
    - Usage metering (admissions, lazily created cycles and periods)
    - Push notifications (dispatch results)
    - Errors by type
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "forms_service",
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
            "forms_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "forms_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "forms_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Submission Metrics
        # ====================================================================
        self.submissions_total = Counter(
            "forms_submissions_total",
            "Submissions by outcome and rejection kind",
            [MetricLabels.OUTCOME, MetricLabels.KIND],
        )

        self.submission_duration_seconds = Histogram(
            "forms_submission_duration_seconds",
            "Admission pipeline duration in seconds",
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        # ====================================================================
        # Usage Metering Metrics
        # ====================================================================
        self.usage_admissions_total = Counter(
            "forms_usage_admissions_total",
            "Quota checks by result",
            ["admitted", "plan"],
        )

        self.ledger_rows_created_total = Counter(
            "forms_ledger_rows_created_total",
            "Subscription cycles, billing periods and usage counters created lazily",
            ["row_type"],
        )

        # ====================================================================
        # Notification Metrics
        # ====================================================================
        self.notifications_total = Counter(
            "forms_notifications_total",
            "Push notification dispatches by result",
            ["result"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "forms_errors_total",
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

    def record_submission(self, outcome: str, kind: str | None, duration: float) -> None:
        """Record one pass through the admission pipeline."""
        self.submissions_total.labels(outcome=outcome, kind=kind or "none").inc()
        self.submission_duration_seconds.observe(duration)

    def record_usage_admission(self, admitted: bool, plan: str) -> None:
        """Record a quota check."""
        self.usage_admissions_total.labels(admitted=str(admitted), plan=plan).inc()

    def record_ledger_row_created(self, row_type: str) -> None:
        """Record a lazily created cycle / period / counter."""
        self.ledger_rows_created_total.labels(row_type=row_type).inc()

    def record_notification(self, result: str) -> None:
        """Record a push dispatch result (sent, partial, failed, skipped)."""
        self.notifications_total.labels(result=result).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = FormsMetrics()
