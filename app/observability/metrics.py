"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class CreditMetrics:
    """
    Centralized metrics for the Prompt Credits API.

    Minimum viable metrics covering:
    - HTTP requests (rate, duration, in progress)
    - Credit reservations (rate by tier and outcome)
    - Denials (rate by reason)
    - Generation calls (duration, failures)
    - Anonymous pool size
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "prompt_credits_service",
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
            "prompt_credits_http_requests_total",
            "Total HTTP requests",
            ["endpoint", "method", "status_code"],
        )

        self.http_request_duration_seconds = Histogram(
            "prompt_credits_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["endpoint", "method"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "prompt_credits_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            ["endpoint", "method"],
        )

        # ====================================================================
        # Credit Metrics
        # ====================================================================
        self.credit_reservations_total = Counter(
            "prompt_credits_reservations_total",
            "Credit reservations attempted",
            ["tier", "mode", "success"],
        )

        self.credits_consumed_total = Counter(
            "prompt_credits_consumed_total",
            "Credits consumed by prompt rewrites",
            ["tier", "source"],
        )

        self.denials_total = Counter(
            "prompt_credits_denials_total",
            "Prompt requests denied",
            ["reason", "mode"],
        )

        self.bonus_credits_granted_total = Counter(
            "prompt_credits_bonus_granted_total",
            "Bonus credits granted",
            ["kind"],
        )

        self.anonymous_pool_entries = Gauge(
            "prompt_credits_anonymous_pool_entries",
            "Number of anonymous callers currently tracked",
        )

        # ====================================================================
        # Generation Metrics
        # ====================================================================
        self.generation_duration_seconds = Histogram(
            "prompt_credits_generation_duration_seconds",
            "Language model call duration in seconds",
            ["mode"],
            buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
        )

        self.generation_failures_total = Counter(
            "prompt_credits_generation_failures_total",
            "Language model call failures",
            ["mode"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "prompt_credits_errors_total",
            "Total errors by type",
            ["error_type", "operation"],
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

    def record_reservation(self, tier: str, mode: str, success: bool) -> None:
        """Record a credit reservation attempt."""
        self.credit_reservations_total.labels(tier=tier, mode=mode, success=str(success)).inc()

    def record_consumption(self, tier: str, source: str, amount: int) -> None:
        """Record credits consumed by a successful reservation."""
        self.credits_consumed_total.labels(tier=tier, source=source).inc(amount)

    def record_denial(self, reason: str, mode: str) -> None:
        """Record a denied prompt request."""
        self.denials_total.labels(reason=reason, mode=mode).inc()

    def record_bonus_grant(self, kind: str, amount: int) -> None:
        """Record bonus credits granted (signup or top-up)."""
        self.bonus_credits_granted_total.labels(kind=kind).inc(amount)

    def record_generation(self, mode: str, success: bool, duration: float) -> None:
        """Record a language model call."""
        self.generation_duration_seconds.labels(mode=mode).observe(duration)
        if not success:
            self.generation_failures_total.labels(mode=mode).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = CreditMetrics()
