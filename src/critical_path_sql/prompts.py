"""
Prompt Builder
==============

Builds generation, retry and repair prompts. Every function here is pure:
identical inputs always produce identical prompt text.
"""

from typing import Optional

from critical_path_sql.capabilities import ModelCapabilityClass
from critical_path_sql.models import (
    AnalysisGoal,
    AnalysisGoalKind,
    CriticalPath,
    ExecutionError,
    ExecutionErrorCode,
    OptimizationContext,
)
from critical_path_sql.patterns import (
    PATTERNS,
    escape_service_name,
    example_sql,
    service_list_literal,
)

TRACES_SCHEMA = """Table: traces
Columns:
- trace_id (String): Unique trace identifier
- span_id (String): Unique span identifier
- parent_span_id (String): Parent span ID for trace hierarchy
- service_name (String): Name of the service
- operation_name (String): Name of the operation/endpoint
- start_time (DateTime64): Start timestamp with nanosecond precision
- end_time (DateTime64): End timestamp with nanosecond precision
- duration_ns (UInt64): Duration in nanoseconds
- status_code (String): Status code (OK, ERROR, etc.)
- status_message (String): Status message details
- span_attributes (Map(String, String)): Span-level attributes
- resource_attributes (Map(String, String)): Resource attributes"""

COMPACT_SCHEMA = (
    "traces: trace_id, span_id, parent_span_id, service_name, operation_name, "
    "start_time, end_time, duration_ns, status_code, status_message"
)

JSON_CONTRACT = """Return a JSON response with:
{
  "sql": "The complete ClickHouse query",
  "description": "Clear description of what this query analyzes",
  "expectedColumns": [
    {"name": "column_name", "type": "ClickHouse type", "description": "What this column represents"}
  ],
  "reasoning": "Why this query structure is optimal for the analysis goal"
}"""

_FOCUS = {
    AnalysisGoalKind.LATENCY: "latency percentiles",
    AnalysisGoalKind.ERRORS: "error rates",
    AnalysisGoalKind.BOTTLENECKS: "performance impact",
    AnalysisGoalKind.THROUGHPUT: "request volume",
    AnalysisGoalKind.COMPARISON: "period-over-period change",
    AnalysisGoalKind.CUSTOM: "general analysis",
}


def _escaped_chain(path: CriticalPath) -> str:
    return " → ".join(escape_service_name(service) for service in path.services)


def _path_metrics_lines(path: CriticalPath) -> list[str]:
    metrics = path.metrics
    if metrics is None:
        return []
    lines = []
    if metrics.request_count is not None:
        lines.append(f"- Request count: {metrics.request_count}")
    if metrics.avg_latency_ms is not None:
        lines.append(f"- Average latency: {metrics.avg_latency_ms}ms")
    if metrics.p95_latency_ms is not None:
        lines.append(f"- p95 latency: {metrics.p95_latency_ms}ms")
    if metrics.p99_latency_ms is not None:
        lines.append(f"- p99 latency: {metrics.p99_latency_ms}ms")
    if metrics.error_rate is not None:
        lines.append(f"- Error rate: {metrics.error_rate}")
    return lines


def build_sql_model_prompt(
    path: CriticalPath, goal: AnalysisGoal, time_range_minutes: int = 60
) -> str:
    """Compact prompt for SQL-specialized models."""
    kind = goal.example_kind
    services = service_list_literal(path.services)
    return f"""Generate a ClickHouse SQL query for diagnostic analysis: {goal.text}

Services: {services}
Focus: {_FOCUS[kind]}

Table: traces
Schema: {COMPACT_SCHEMA}

Example ({PATTERNS[kind][1]}):
{example_sql(kind, path.services, time_range_minutes)}

RULES: Filter service_name IN ({services}), use FROM traces, read-only SELECT only.

Write the complete ClickHouse SQL query only - NO explanations or examples:"""


def build_general_model_prompt(
    path: CriticalPath, goal: AnalysisGoal, time_range_minutes: int = 60
) -> str:
    """Verbose prompt with a structured-output contract for general models."""
    services = service_list_literal(path.services)
    matched = goal.example_kind

    examples = []
    # The goal-matched example goes first.
    ordered = [matched] + [kind for kind in PATTERNS if kind is not matched]
    for index, kind in enumerate(ordered, start=1):
        title, description = PATTERNS[kind][0], PATTERNS[kind][1]
        examples.append(
            f"### Example {index}: {title}\n"
            f"Goal: {description}\n"
            f"```sql\n{example_sql(kind, path.services, time_range_minutes)}\n```"
        )

    context_lines = [
        f"- Path ID: {path.id}",
        f"- Path Name: {path.name}",
        f"- Services in path: {_escaped_chain(path)}",
        f"- Start Service: {escape_service_name(path.start_service)}",
        f"- End Service: {escape_service_name(path.end_service)}",
        f"- Services to analyze: {services}",
    ]
    if path.priority:
        context_lines.append(f"- Priority: {path.priority}")
    context_lines.extend(_path_metrics_lines(path))

    example_block = "\n\n".join(examples)
    context_block = "\n".join(context_lines)

    return f"""You are a ClickHouse SQL expert generating queries for observability data analysis.
Always return valid JSON responses.

## Database Schema
{TRACES_SCHEMA}

## Critical Path Context
{context_block}

## Example Query Patterns

{example_block}

## Your Task
Generate a ClickHouse query for the following analysis goal:
"{goal.text}"

Use the examples above as patterns, but create a query specifically optimized for the given critical path and analysis goal.

{JSON_CONTRACT}

Important:
- Use the actual service names: {services}
- Ensure proper escaping of service names
- Include appropriate time filters
- Only read-only SELECT statements are allowed"""


def build_prompt(
    path: CriticalPath,
    goal: AnalysisGoal,
    capability: ModelCapabilityClass,
    time_range_minutes: int = 60,
) -> str:
    """
    Build the generation prompt for a model capability class.

    Args:
        path: Critical path whose services the query must cover
        goal: What the query must reveal
        capability: Capability class of the target model
        time_range_minutes: Look-back window used in worked examples

    Returns:
        Prompt text
    """
    if capability is ModelCapabilityClass.SQL_SPECIALIZED:
        return build_sql_model_prompt(path, goal, time_range_minutes)
    return build_general_model_prompt(path, goal, time_range_minutes)


def build_retry_prompt(prompt: str, capability: ModelCapabilityClass) -> str:
    """Templated retry after an unparseable or empty response."""
    if capability is ModelCapabilityClass.SQL_SPECIALIZED:
        instruction = (
            "Your previous answer did not contain a SQL query. "
            "Answer with one complete ClickHouse SELECT statement and nothing else."
        )
    else:
        instruction = (
            "Your previous answer could not be parsed. Respond with a single JSON "
            'object whose "sql" field holds one complete ClickHouse SELECT statement. '
            "No markdown, no commentary."
        )
    return f"{prompt}\n\n{instruction}"


ERROR_GUIDANCE = {
    ExecutionErrorCode.SYNTAX_ERROR: """SYNTAX_ERROR - ClickHouse SQL syntax issue:
1. Clause order is WITH, SELECT, FROM, WHERE, GROUP BY, HAVING, ORDER BY, LIMIT
2. HAVING must come before ORDER BY
3. Use ClickHouse-specific functions (quantile instead of percentile_cont)
4. Ensure proper quoting for string literals (single quotes)
5. Check for missing commas or parentheses
6. Verify INTERVAL syntax (e.g., INTERVAL 15 MINUTE)""",
    ExecutionErrorCode.UNKNOWN_IDENTIFIER: """UNKNOWN_IDENTIFIER - Column or alias not found:
1. Check column names match the schema exactly
2. Ensure aliases are defined before being used
3. Table should be 'traces' not 'otel.traces'
4. Common columns: service_name, operation_name, trace_id, span_id, start_time, duration_ns, status_code""",
    ExecutionErrorCode.NOT_AN_AGGREGATE: """NOT_AN_AGGREGATE - Column is neither aggregated nor grouped:
1. Every selected column must appear in GROUP BY or be wrapped in an aggregate
2. Use any(column) when a representative value is enough
3. Do not mix aggregated and row-level expressions without GROUP BY""",
    ExecutionErrorCode.ILLEGAL_AGGREGATION: """ILLEGAL_AGGREGATION - ClickHouse specific rules:
1. Aggregate functions (count, sum, avg, etc.) CANNOT be used in WHERE clauses
2. Aggregate functions cannot be nested inside other aggregates
3. To filter on aggregates, use HAVING after GROUP BY
4. Compute combined metrics in an outer query over a CTE""",
    ExecutionErrorCode.TIMEOUT: """TIMEOUT - Query exceeded the execution time limit:
1. Narrow the time window (e.g., INTERVAL 15 MINUTE)
2. Filter by service_name before joining or aggregating
3. Avoid self-joins over the full traces table""",
    ExecutionErrorCode.MEMORY_LIMIT_EXCEEDED: """MEMORY_LIMIT_EXCEEDED - Query exceeded the memory limit:
1. Reduce GROUP BY cardinality (avoid grouping by trace_id or span_id)
2. Narrow the time window and filter services early
3. Prefer approximate functions (uniq, quantile) over exact ones""",
    ExecutionErrorCode.TYPE_MISMATCH: """TYPE_MISMATCH - Data type issue:
1. duration_ns is UInt64 - divide by 1000000 for milliseconds
2. start_time is DateTime64 - use appropriate date functions
3. status_code is String - compare with 'OK' not 1 or true""",
    ExecutionErrorCode.UNKNOWN_TABLE: """UNKNOWN_TABLE:
1. Use 'traces' as the table name (not 'otel.traces')
2. Ensure the FROM clause references the correct table""",
    ExecutionErrorCode.UNKNOWN_FUNCTION: """UNKNOWN_FUNCTION - Function does not exist in ClickHouse:
1. Use quantile(0.95)(x) instead of percentile_cont(0.95) WITHIN GROUP (ORDER BY x)
2. Use uniq(x) or uniqExact(x) instead of approx_count_distinct or COUNT(DISTINCT ...) variants
3. Use toStartOfInterval, toStartOfMinute or toStartOfHour instead of date_trunc
4. Function names are case-sensitive (countIf, avgIf, quantileIf)""",
}

GENERAL_GUIDANCE = """General ClickHouse guidelines:
1. Move aggregate conditions from WHERE to HAVING
2. Use the 'traces' table name
3. Include GROUP BY when using aggregates
4. Use ClickHouse-specific functions"""


def build_repair_prompt(
    previous_sql: str,
    error: ExecutionError,
    context: Optional[OptimizationContext] = None,
) -> str:
    """
    Build the prompt asking the model to fix SQL that failed to execute.

    Args:
        previous_sql: The statement that failed
        error: Classified engine error
        context: Original services and goal, when known

    Returns:
        Prompt text requesting ``{optimizedSql, explanation, changes}`` JSON
    """
    guidance = ERROR_GUIDANCE.get(error.code, GENERAL_GUIDANCE)
    context_block = ""
    if context is not None:
        services = ", ".join(escape_service_name(service) for service in context.services)
        context_block = (
            "CONTEXT:\n"
            f"- Services: {services}\n"
            f"- Analysis Goal: {context.analysis_goal}\n\n"
        )

    return f"""You are a ClickHouse SQL optimization expert. Fix the following SQL query based on the error.

ORIGINAL SQL:
```sql
{previous_sql}
```

ERROR:
Code: {error.code.value}
Message: {error.message}

{guidance}

{context_block}Keep the query read-only and keep its analytical intent.

Return a JSON response:
{{
  "optimizedSql": "The corrected ClickHouse SQL query",
  "explanation": "Brief explanation of what was fixed",
  "changes": ["List of specific changes made"]
}}"""
