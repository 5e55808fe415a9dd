"""
Observability module - Logging, Metrics, and Tracing.
"""

from entitlements.observability.logging import get_logger, log_context, setup_logging
from entitlements.observability.metrics import metrics
from entitlements.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
