"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from docqueue.observability.logging import message_context, setup_logging
from docqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from docqueue.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "message_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
