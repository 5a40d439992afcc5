"""
Observability module - Logging, Metrics, and Tracing.
"""

from app.observability.logging import log_context, setup_logging
from app.observability.metrics import metrics
from app.observability.tracing import setup_tracing

__all__ = [
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
