"""
Prometheus Metrics
==================

Generation and repair-loop metrics.
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    Info,
    generate_latest,
)

# Create a custom registry for this application
REGISTRY = CollectorRegistry()

APP_INFO = Info(
    "critical_path_sql",
    "Critical-path SQL generator information",
    registry=REGISTRY,
)

GENERATIONS_TOTAL = Counter(
    "critical_path_sql_generations_total",
    "Query generations by outcome",
    ["status", "capability"],  # success, parse_error, validation_error, gateway_error
    registry=REGISTRY,
)

GENERATION_DURATION = Histogram(
    "critical_path_sql_generation_duration_seconds",
    "End-to-end generation duration in seconds",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=REGISTRY,
)

EVALUATION_ATTEMPTS = Histogram(
    "critical_path_sql_evaluation_attempts",
    "Number of executions per evaluator-optimizer run",
    buckets=[1, 2, 3, 4, 5],
    registry=REGISTRY,
)

EVALUATIONS_TOTAL = Counter(
    "critical_path_sql_evaluations_total",
    "Evaluator-optimizer runs by outcome",
    ["status"],  # valid, unresolved
    registry=REGISTRY,
)

EXECUTION_ERRORS = Counter(
    "critical_path_sql_execution_errors_total",
    "Classified execution errors",
    ["code"],
    registry=REGISTRY,
)

REPAIRS_TOTAL = Counter(
    "critical_path_sql_repairs_total",
    "Repair steps by source",
    ["source"],  # llm, rules, gateway_error, unchanged, rejected
    registry=REGISTRY,
)

GATEWAY_FAILURES = Counter(
    "critical_path_sql_gateway_failures_total",
    "Model gateway failures by kind",
    ["kind"],
    registry=REGISTRY,
)

APP_INFO.info({"version": "0.1.0"})


def track_generation_metrics(status: str, capability: str, duration_seconds: float) -> None:
    """
    Track metrics for a completed generation.

    Args:
        status: Outcome label
        capability: Capability class of the model used
        duration_seconds: Total processing time
    """
    GENERATIONS_TOTAL.labels(status=status, capability=capability).inc()
    GENERATION_DURATION.observe(duration_seconds)


def track_evaluation_metrics(succeeded: bool, attempts: int, error_codes: list[str]) -> None:
    """
    Track metrics for a completed evaluator-optimizer run.

    Args:
        succeeded: Whether the last attempt executed cleanly
        attempts: Number of executions made
        error_codes: Classified error code of each failed attempt
    """
    EVALUATIONS_TOTAL.labels(status="valid" if succeeded else "unresolved").inc()
    EVALUATION_ATTEMPTS.observe(attempts)
    for code in error_codes:
        EXECUTION_ERRORS.labels(code=code).inc()


def track_repair(source: str) -> None:
    REPAIRS_TOTAL.labels(source=source).inc()


def track_gateway_failure(kind: str) -> None:
    GATEWAY_FAILURES.labels(kind=kind).inc()


def render_metrics() -> bytes:
    """Metrics in Prometheus text exposition format."""
    return generate_latest(REGISTRY)
