"""
Observability for the settlement service.

structlog for logs, prometheus_client for metrics, OpenTelemetry for traces.
"""

from tokenpay.observability.logging import get_logger, log_context, setup_logging
from tokenpay.observability.metrics import SettlementMetrics, metrics
from tokenpay.observability.tracing import instrument_fastapi, setup_tracing

__all__ = [
    "SettlementMetrics",
    "get_logger",
    "instrument_fastapi",
    "log_context",
    "metrics",
    "setup_logging",
    "setup_tracing",
]
