"""
Observability Module
====================

Structured logging, Prometheus metrics and OpenTelemetry tracing.
"""

from observability.logging_config import bind_context, get_logger, setup_logging
from observability.metrics import (
    render_metrics,
    track_evaluation_metrics,
    track_gateway_failure,
    track_generation_metrics,
    track_repair,
)
from observability.tracing import get_tracer, setup_tracing

__all__ = [
    "bind_context",
    "get_logger",
    "setup_logging",
    "render_metrics",
    "track_evaluation_metrics",
    "track_gateway_failure",
    "track_generation_metrics",
    "track_repair",
    "get_tracer",
    "setup_tracing",
]
