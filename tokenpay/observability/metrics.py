"""
Metrics Collection with Prometheus.

Exposes settlement pipeline and HTTP metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from tokenpay.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    PROVIDER = "provider"
    EVENT_TYPE = "event_type"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class SettlementMetrics:
    """
    Centralized metrics for the settlement service.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Webhooks received per provider and outcome
    - Settlements per transfer method and outcome
    - Inventory operations and receiver funding
    - Reconciliation sweeps
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("tokenpay_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
                "network": settings.network,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "tokenpay_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "tokenpay_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "tokenpay_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.METHOD],
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhooks_received_total = Counter(
            "tokenpay_webhooks_received_total",
            "Webhook notifications received",
            [MetricLabels.PROVIDER, MetricLabels.EVENT_TYPE, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Settlement Metrics
        # ====================================================================
        self.settlements_total = Counter(
            "tokenpay_settlements_total",
            "Settlement attempts by transfer method and outcome",
            ["method", MetricLabels.OUTCOME],
        )

        self.settlement_duration_seconds = Histogram(
            "tokenpay_settlement_duration_seconds",
            "Time from reservation to final settlement status",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
        )

        self.tokens_settled_total = Counter(
            "tokenpay_tokens_settled_total",
            "Token base units that left custody",
            ["method"],
        )

        self.funding_amount_microalgos = Histogram(
            "tokenpay_funding_amount_microalgos",
            "Native currency sent to receivers ahead of inbox deposits",
            buckets=(1_000, 5_000, 10_000, 50_000, 100_000, 150_000, 205_000),
        )

        # ====================================================================
        # Inventory Metrics
        # ====================================================================
        self.inventory_operations_total = Counter(
            "tokenpay_inventory_operations_total",
            "Inventory operations by kind and outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Reconciliation Metrics
        # ====================================================================
        self.reconciliation_payments_total = Counter(
            "tokenpay_reconciliation_payments_total",
            "Payments examined by the reconciliation sweep",
            [MetricLabels.OUTCOME],
        )

        self.reconciliation_runs_total = Counter(
            "tokenpay_reconciliation_runs_total",
            "Reconciliation sweeps executed",
            ["success"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "tokenpay_errors_total",
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

    def record_webhook(self, provider: str, event_type: str, outcome: str) -> None:
        """Record a webhook delivery and how it was handled."""
        self.webhooks_received_total.labels(
            provider=provider, event_type=event_type or "unknown", outcome=outcome
        ).inc()

    def record_settlement(
        self, method: str | None, succeeded: bool, token_amount: int, duration: float
    ) -> None:
        """Record settlement outcome metrics."""
        method_label = method or "none"
        self.settlements_total.labels(
            method=method_label, outcome="success" if succeeded else "failure"
        ).inc()
        if succeeded:
            self.tokens_settled_total.labels(method=method_label).inc(token_amount)
        self.settlement_duration_seconds.observe(duration)

    def record_funding(self, amount: int) -> None:
        """Record a receiver funding top-up."""
        self.funding_amount_microalgos.observe(amount)

    def record_inventory_operation(self, operation: str, outcome: str) -> None:
        """Record reserve/release/commit/provision outcome."""
        self.inventory_operations_total.labels(operation=operation, outcome=outcome).inc()

    def record_reconciliation(self, confirmed: int, failed: int, skipped: int) -> None:
        """Record one reconciliation sweep."""
        self.reconciliation_runs_total.labels(success="True").inc()
        self.reconciliation_payments_total.labels(outcome="confirmed").inc(confirmed)
        self.reconciliation_payments_total.labels(outcome="failed").inc(failed)
        self.reconciliation_payments_total.labels(outcome="skipped").inc(skipped)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = SettlementMetrics()
