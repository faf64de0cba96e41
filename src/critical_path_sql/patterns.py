"""
Query Patterns
==============

Rule-based ClickHouse templates for each analysis goal. They serve as worked
examples in prompts and as ready-made queries for a path.
"""

from dataclasses import dataclass, field
from typing import Iterable

from critical_path_sql.models import AnalysisGoalKind, CriticalPath


def escape_service_name(name: str) -> str:
    """Escape single quotes by doubling them."""
    return name.replace("'", "''")


def service_list_literal(services: Iterable[str]) -> str:
    """Render services as a quoted, comma-separated SQL list."""
    return ", ".join(f"'{escape_service_name(service)}'" for service in services)


@dataclass(frozen=True)
class PatternQuery:
    id: str
    name: str
    description: str
    kind: AnalysisGoalKind
    sql: str
    expected_schema: dict[str, str] = field(default_factory=dict)


def _latency(services: str, minutes: int) -> str:
    return f"""SELECT
  service_name,
  toStartOfMinute(start_time) AS minute,
  quantile(0.5)(duration_ns/1000000) AS p50_ms,
  quantile(0.95)(duration_ns/1000000) AS p95_ms,
  quantile(0.99)(duration_ns/1000000) AS p99_ms,
  count() AS request_count
FROM traces
WHERE
  service_name IN ({services})
  AND start_time >= now() - INTERVAL {minutes} MINUTE
GROUP BY service_name, minute
ORDER BY minute DESC, service_name
LIMIT 1000"""


def _errors(services: str, minutes: int) -> str:
    return f"""SELECT
  service_name,
  status_code,
  status_message,
  count() AS error_count,
  round(count() * 100.0 / sum(count()) OVER (), 2) AS error_percentage
FROM traces
WHERE
  service_name IN ({services})
  AND status_code != 'OK'
  AND start_time >= now() - INTERVAL {minutes} MINUTE
GROUP BY service_name, status_code, status_message
ORDER BY error_count DESC
LIMIT 100"""


def _bottlenecks(services: str, minutes: int) -> str:
    return f"""SELECT
  service_name,
  operation_name,
  quantile(0.95)(duration_ns/1000000) AS p95_ms,
  quantile(0.99)(duration_ns/1000000) AS p99_ms,
  max(duration_ns/1000000) AS max_ms,
  count() AS operation_count,
  sum(duration_ns/1000000) AS total_time_ms
FROM traces
WHERE
  service_name IN ({services})
  AND start_time >= now() - INTERVAL {minutes} MINUTE
GROUP BY service_name, operation_name
HAVING p95_ms > 100
ORDER BY p95_ms DESC
LIMIT 50"""


def _throughput(services: str, minutes: int) -> str:
    return f"""SELECT
  service_name,
  toStartOfMinute(start_time) AS minute,
  count() AS requests_per_minute,
  count() / 60.0 AS requests_per_second,
  countIf(status_code = 'OK') AS successful_requests,
  round(countIf(status_code = 'OK') * 100.0 / count(), 2) AS success_rate
FROM traces
WHERE
  service_name IN ({services})
  AND start_time >= now() - INTERVAL {minutes} MINUTE
GROUP BY service_name, minute
ORDER BY minute DESC, service_name
LIMIT 500"""


def _comparison(services: str, minutes: int) -> str:
    return f"""WITH current_period AS (
  SELECT
    service_name,
    quantile(0.95)(duration_ns/1000000) AS p95_ms,
    count() AS request_count
  FROM traces
  WHERE
    service_name IN ({services})
    AND start_time >= now() - INTERVAL {minutes} MINUTE
  GROUP BY service_name
),
previous_period AS (
  SELECT
    service_name,
    quantile(0.95)(duration_ns/1000000) AS p95_ms,
    count() AS request_count
  FROM traces
  WHERE
    service_name IN ({services})
    AND start_time >= now() - INTERVAL {minutes * 2} MINUTE
    AND start_time < now() - INTERVAL {minutes} MINUTE
  GROUP BY service_name
)
SELECT
  c.service_name,
  c.p95_ms AS current_p95_ms,
  p.p95_ms AS previous_p95_ms,
  round((c.p95_ms - p.p95_ms) / p.p95_ms * 100, 2) AS p95_change_percent,
  c.request_count AS current_requests,
  p.request_count AS previous_requests
FROM current_period c
LEFT JOIN previous_period p ON c.service_name = p.service_name
ORDER BY abs(p95_change_percent) DESC"""


def _overview(services: str, minutes: int) -> str:
    return f"""SELECT
  service_name,
  operation_name,
  count() AS request_count,
  countIf(status_code != 'OK') AS error_count,
  round(countIf(status_code != 'OK') * 100.0 / count(), 2) AS error_rate_pct,
  quantile(0.95)(duration_ns/1000000) AS p95_ms
FROM traces
WHERE
  service_name IN ({services})
  AND start_time >= now() - INTERVAL {minutes} MINUTE
GROUP BY service_name, operation_name
HAVING request_count > 5
ORDER BY error_rate_pct DESC, p95_ms DESC"""


# kind -> (title, description, template, expected schema)
PATTERNS = {
    AnalysisGoalKind.LATENCY: (
        "Service Latency Analysis",
        "Analyzes p50, p95, p99 latencies for services in the critical path",
        _latency,
        {
            "service_name": "String",
            "minute": "DateTime",
            "p50_ms": "Float64",
            "p95_ms": "Float64",
            "p99_ms": "Float64",
            "request_count": "UInt64",
        },
    ),
    AnalysisGoalKind.ERRORS: (
        "Error Distribution",
        "Analyzes error distribution across services in the critical path",
        _errors,
        {
            "service_name": "String",
            "status_code": "String",
            "status_message": "String",
            "error_count": "UInt64",
            "error_percentage": "Float64",
        },
    ),
    AnalysisGoalKind.BOTTLENECKS: (
        "Bottleneck Detection",
        "Identifies the slowest operations in the critical path",
        _bottlenecks,
        {
            "service_name": "String",
            "operation_name": "String",
            "p95_ms": "Float64",
            "p99_ms": "Float64",
            "max_ms": "Float64",
            "operation_count": "UInt64",
            "total_time_ms": "Float64",
        },
    ),
    AnalysisGoalKind.THROUGHPUT: (
        "Volume & Throughput",
        "Analyzes request rates and throughput for services",
        _throughput,
        {
            "service_name": "String",
            "minute": "DateTime",
            "requests_per_minute": "UInt64",
            "requests_per_second": "Float64",
            "successful_requests": "UInt64",
            "success_rate": "Float64",
        },
    ),
    AnalysisGoalKind.COMPARISON: (
        "Time Comparison",
        "Compares performance metrics over time periods",
        _comparison,
        {
            "service_name": "String",
            "current_p95_ms": "Float64",
            "previous_p95_ms": "Float64",
            "p95_change_percent": "Float64",
            "current_requests": "UInt64",
            "previous_requests": "UInt64",
        },
    ),
    AnalysisGoalKind.CUSTOM: (
        "Diagnostic Overview",
        "General diagnostic analysis of request volume, errors and latency",
        _overview,
        {
            "service_name": "String",
            "operation_name": "String",
            "request_count": "UInt64",
            "error_count": "UInt64",
            "error_rate_pct": "Float64",
            "p95_ms": "Float64",
        },
    ),
}


def example_sql(kind: AnalysisGoalKind, services: Iterable[str], time_range_minutes: int = 60) -> str:
    """Render the template for ``kind`` over the given services."""
    template = PATTERNS[kind][2]
    return template(service_list_literal(services), time_range_minutes)


def pattern_query(
    path: CriticalPath,
    kind: AnalysisGoalKind,
    time_range_minutes: int = 60,
) -> PatternQuery:
    """Build the rule-based query for a critical path."""
    title, description, template, schema = PATTERNS[kind]
    return PatternQuery(
        id=f"{path.id}_{kind.value}",
        name=f"{title} - {path.name}",
        description=description,
        kind=kind,
        sql=template(service_list_literal(path.services), time_range_minutes),
        expected_schema=dict(schema),
    )


def all_pattern_queries(path: CriticalPath, time_range_minutes: int = 60) -> list[PatternQuery]:
    return [
        pattern_query(path, kind, time_range_minutes)
        for kind in PATTERNS
        if kind is not AnalysisGoalKind.CUSTOM
    ]
