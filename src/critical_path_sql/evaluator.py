"""
Evaluator-Optimizer
===================

Executes candidate SQL against the analytics engine and, on failure, asks the
model for a repair. Repeats until a statement executes cleanly or the attempt
budget is spent.

Loop states:

    Candidate -> execute -> Valid    (record attempt, done)
                         -> Invalid  (record attempt)
    Invalid, attempts < max -> repair -> Candidate
    Invalid, attempts == max, or repair failed -> done with last executed SQL
"""

import re
import time
from typing import Optional, Union

from critical_path_sql.config import GeneratorConfig
from critical_path_sql.errors import GatewayError
from critical_path_sql.llm.base import ModelGateway, call_gateway
from critical_path_sql.models import (
    EvaluationResult,
    ExecutionError,
    ExecutionErrorCode,
    GenerationAttempt,
    LLMRequest,
    ModelPreferences,
    Optimization,
    OptimizationContext,
)
from critical_path_sql.normalizer import parse_optimization_response
from critical_path_sql.prompts import build_repair_prompt
from critical_path_sql.storage.base import QueryExecutor
from critical_path_sql.storage.errors import QueryExecutionError
from critical_path_sql.validator import check_sql, ensure_valid_sql
from observability.logging_config import get_logger
from observability.metrics import track_evaluation_metrics, track_repair
from observability.tracing import get_tracer

logger = get_logger(__name__)
tracer = get_tracer(__name__)

# ClickHouse numeric error codes (src/Common/ErrorCodes.cpp).
CLICKHOUSE_ERROR_CODES: dict[int, ExecutionErrorCode] = {
    46: ExecutionErrorCode.UNKNOWN_FUNCTION,
    47: ExecutionErrorCode.UNKNOWN_IDENTIFIER,
    53: ExecutionErrorCode.TYPE_MISMATCH,
    60: ExecutionErrorCode.UNKNOWN_TABLE,
    62: ExecutionErrorCode.SYNTAX_ERROR,
    63: ExecutionErrorCode.UNKNOWN_FUNCTION,
    159: ExecutionErrorCode.TIMEOUT,
    160: ExecutionErrorCode.TIMEOUT,
    184: ExecutionErrorCode.ILLEGAL_AGGREGATION,
    215: ExecutionErrorCode.NOT_AN_AGGREGATE,
    241: ExecutionErrorCode.MEMORY_LIMIT_EXCEEDED,
}

# Checked in order when no numeric code is recognized.
_TEXT_RULES: list[tuple[ExecutionErrorCode, tuple[str, ...]]] = [
    (ExecutionErrorCode.MEMORY_LIMIT_EXCEEDED, ("MEMORY_LIMIT_EXCEEDED", "memory limit exceeded")),
    (ExecutionErrorCode.TIMEOUT, ("TIMEOUT_EXCEEDED", "timeout exceeded", "timed out", "TOO_SLOW")),
    (ExecutionErrorCode.NOT_AN_AGGREGATE, ("NOT_AN_AGGREGATE", "is not under aggregate function")),
    (ExecutionErrorCode.UNKNOWN_FUNCTION, ("UNKNOWN_FUNCTION", "UNKNOWN_AGGREGATE_FUNCTION", "Unknown function", "Unknown aggregate function")),
    (ExecutionErrorCode.ILLEGAL_AGGREGATION, ("ILLEGAL_AGGREGATION", "Aggregate function")),
    (ExecutionErrorCode.UNKNOWN_IDENTIFIER, ("UNKNOWN_IDENTIFIER", "Unknown expression identifier", "Missing columns")),
    (ExecutionErrorCode.SYNTAX_ERROR, ("SYNTAX_ERROR", "Syntax error")),
    (ExecutionErrorCode.TYPE_MISMATCH, ("TYPE_MISMATCH",)),
    (ExecutionErrorCode.UNKNOWN_TABLE, ("UNKNOWN_TABLE", "doesn't exist")),
]

_CODE_RE = re.compile(r"Code:\s*(\d+)", re.IGNORECASE)
_POSITION_RE = re.compile(r"at position (\d+)", re.IGNORECASE)


def classify_execution_error(
    message: str,
    code: Optional[Union[int, str]] = None,
) -> ExecutionError:
    """
    Map an engine failure onto an actionable category.

    Numeric ClickHouse codes win; message text is the fallback.

    Args:
        message: Full error message from the engine
        code: Numeric code or symbolic name reported by the executor, if any

    Returns:
        ExecutionError carrying the full message and any parse position
    """
    code_number = 0
    category: Optional[ExecutionErrorCode] = None

    if isinstance(code, str) and not code.isdigit():
        category = ExecutionErrorCode.__members__.get(code.upper())
    else:
        if code is None:
            match = _CODE_RE.search(message)
            code = match.group(1) if match else None
        if code is not None:
            code_number = int(code)
            category = CLICKHOUSE_ERROR_CODES.get(code_number)

    if category is None:
        lowered = message.lower()
        for candidate, needles in _TEXT_RULES:
            if any(needle.lower() in lowered for needle in needles):
                category = candidate
                break
        else:
            category = ExecutionErrorCode.UNKNOWN_EXECUTION_ERROR

    position_match = _POSITION_RE.search(message)
    return ExecutionError(
        code=category,
        message=message,
        code_number=code_number,
        position=int(position_match.group(1)) if position_match else None,
    )


_AGGREGATE_RE = re.compile(r"\b(count|sum|avg|min|max|quantile\w*|uniq\w*)\s*\(", re.IGNORECASE)
_WHERE_GROUP_RE = re.compile(
    r"WHERE\s+(?P<where>.*?)\s+GROUP\s+BY\s+(?P<group>.*?)"
    r"(?=\s+(?:HAVING|ORDER\s+BY|LIMIT)\b|\s*;?\s*$)",
    re.IGNORECASE | re.DOTALL,
)
_HAVING_AFTER_ORDER_RE = re.compile(
    r"(?P<order>ORDER\s+BY\s+.*?)\s+(?P<having>HAVING\s+.*?)(?=\s+LIMIT\b|\s*;?\s*$)",
    re.IGNORECASE | re.DOTALL,
)
_PERCENTILE_RE = re.compile(
    r"percentile_cont\s*\(\s*(?P<level>[\d.]+)\s*\)\s*WITHIN\s+GROUP\s*\(\s*ORDER\s+BY\s+(?P<expr>[^()]+?)\s*\)",
    re.IGNORECASE,
)


def _move_aggregates_to_having(sql: str) -> str:
    match = _WHERE_GROUP_RE.search(sql)
    if not match:
        return sql
    conditions = re.split(r"\s+AND\s+", match.group("where"), flags=re.IGNORECASE)
    aggregates = [condition for condition in conditions if _AGGREGATE_RE.search(condition)]
    if not aggregates:
        return sql
    plain = [condition for condition in conditions if not _AGGREGATE_RE.search(condition)]

    where = f"WHERE {' AND '.join(plain)}\n" if plain else ""
    having = " AND ".join(aggregates)
    tail = sql[match.end():]
    existing = re.match(r"\s*HAVING\s+", tail, re.IGNORECASE)
    if existing:
        tail = f"\nHAVING {having} AND {tail[existing.end():]}"
    else:
        tail = f"\nHAVING {having}{tail}"
    return f"{sql[:match.start()]}{where}GROUP BY {match.group('group')}{tail}"


def _move_having_before_order_by(sql: str) -> str:
    return _HAVING_AFTER_ORDER_RE.sub(
        lambda m: f"{m.group('having')}\n{m.group('order')}", sql, count=1
    )


def apply_rule_based_optimization(sql: str, code: ExecutionErrorCode) -> str:
    """
    Apply deterministic fixes for common ClickHouse errors.

    Used when the model returns nothing usable. Returns ``sql`` unchanged when
    no rule applies.
    """
    optimized = sql
    if code is ExecutionErrorCode.ILLEGAL_AGGREGATION:
        optimized = _move_aggregates_to_having(optimized)
    elif code is ExecutionErrorCode.SYNTAX_ERROR:
        optimized = _move_having_before_order_by(optimized)
    elif code is ExecutionErrorCode.UNKNOWN_TABLE:
        optimized = re.sub(r"\b(FROM|JOIN)\s+otel\.traces\b", r"\1 traces", optimized, flags=re.IGNORECASE)
    elif code is ExecutionErrorCode.UNKNOWN_IDENTIFIER:
        optimized = re.sub(r"\btimestamp\b", "start_time", optimized, flags=re.IGNORECASE)
        optimized = re.sub(r"\bduration\b", "duration_ns", optimized, flags=re.IGNORECASE)
    elif code is ExecutionErrorCode.UNKNOWN_FUNCTION:
        optimized = _PERCENTILE_RE.sub(r"quantile(\g<level>)(\g<expr>)", optimized)
    return optimized


def _squash(sql: str) -> str:
    return " ".join(sql.split()).rstrip(";").strip()


class EvaluatorOptimizer:
    """
    Execute-and-repair loop.

    Strictly sequential: each repair depends on the previous execution's
    error, so at most one gateway or engine call is in flight per run.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        executor: QueryExecutor,
        config: Optional[GeneratorConfig] = None,
    ) -> None:
        self.gateway = gateway
        self.executor = executor
        self.config = config or GeneratorConfig()

    async def evaluate(self, sql: str, number: int = 1) -> GenerationAttempt:
        """
        Execute one statement under the configured limits.

        Engine failures become an invalid attempt; connectivity failures
        propagate.
        """
        statement = sql.strip().rstrip(";").rstrip()
        with tracer.start_as_current_span("sql.evaluate") as span:
            span.set_attribute("sql.attempt", number)
            started = time.perf_counter()
            try:
                result = await self.executor.execute_query(
                    statement, settings=self.config.limits.as_settings()
                )
            except QueryExecutionError as e:
                elapsed_ms = e.execution_time_ms or (time.perf_counter() - started) * 1000
                error = classify_execution_error(e.message, e.code)
                span.set_attribute("error", True)
                span.set_attribute("sql.error_code", error.code.value)
                logger.warning(
                    "sql_execution_failed",
                    attempt=number,
                    error_code=error.code.value,
                    code_number=error.code_number,
                    position=error.position,
                    message=error.message,
                )
                return GenerationAttempt(
                    number=number,
                    sql=statement,
                    is_valid=False,
                    execution_time_ms=elapsed_ms,
                    error=error,
                )

            elapsed_ms = (time.perf_counter() - started) * 1000
            span.set_attribute("sql.row_count", result.row_count)
            logger.info(
                "sql_execution_succeeded",
                attempt=number,
                row_count=result.row_count,
                execution_time_ms=round(elapsed_ms, 1),
            )
            return GenerationAttempt(
                number=number,
                sql=statement,
                is_valid=True,
                execution_time_ms=elapsed_ms,
                row_count=result.row_count,
                columns=tuple(result.columns),
            )

    async def _repair(
        self,
        sql: str,
        error: ExecutionError,
        context: Optional[OptimizationContext],
    ) -> Optional[Optimization]:
        request = LLMRequest(
            prompt=build_repair_prompt(sql, error, context),
            task_type="analysis",
            preferences=ModelPreferences(
                model=self.config.repair_model or self.config.default_model,
                max_tokens=self.config.max_tokens,
                temperature=0.0,
            ),
        )
        try:
            response = await call_gateway(self.gateway, request, self.config.gateway_timeout_seconds)
        except GatewayError as e:
            track_repair("gateway_error")
            logger.warning("repair_gateway_failed", kind=e.kind.value, message=e.message)
            return None

        optimization = parse_optimization_response(response.content)
        if optimization is not None:
            track_repair("llm")
            return optimization

        track_repair("rules")
        logger.info("repair_rule_fallback", error_code=error.code.value)
        return Optimization(
            optimized_sql=apply_rule_based_optimization(sql, error.code),
            explanation="LLM returned empty result, using rule-based optimization",
            changes=(f"Applied rule-based optimization for {error.code.value}",),
            source="rules",
        )

    async def optimize(
        self,
        initial_sql: str,
        context: Optional[OptimizationContext] = None,
        max_attempts: Optional[int] = None,
    ) -> EvaluationResult:
        """
        Run the evaluate-repair loop.

        Args:
            initial_sql: Candidate statement; must pass the validator
            context: Services and goal passed to repair prompts
            max_attempts: Execution budget (default: ``config.max_attempts``)

        Returns:
            EvaluationResult; ``final_sql`` is the last SQL executed

        Raises:
            SQLValidationError: ``initial_sql`` failed the validator
            StorageConnectionError: The engine could not be reached
        """
        limit = max_attempts if max_attempts is not None else self.config.max_attempts
        if limit < 1:
            raise ValueError("max_attempts must be at least 1")
        ensure_valid_sql(initial_sql)

        attempts: list[GenerationAttempt] = []
        optimizations: list[Optimization] = []
        current = initial_sql

        with tracer.start_as_current_span("sql.optimize") as span:
            span.set_attribute("sql.max_attempts", limit)
            for number in range(1, limit + 1):
                attempt = await self.evaluate(current, number)
                attempts.append(attempt)
                if attempt.is_valid or number == limit:
                    break

                optimization = await self._repair(current, attempt.error, context)
                if optimization is None:
                    break
                if _squash(optimization.optimized_sql) == _squash(current):
                    track_repair("unchanged")
                    logger.info("repair_unchanged", attempt=number)
                    break
                report = check_sql(optimization.optimized_sql)
                if not report.valid:
                    track_repair("rejected")
                    logger.warning("repair_rejected", attempt=number, reasons=report.reasons)
                    break

                optimizations.append(optimization)
                current = optimization.optimized_sql

            result = EvaluationResult(
                final_sql=attempts[-1].sql,
                attempts=tuple(attempts),
                optimizations=tuple(optimizations),
            )
            span.set_attribute("sql.attempts", len(attempts))
            span.set_attribute("sql.succeeded", result.succeeded)

        track_evaluation_metrics(
            succeeded=result.succeeded,
            attempts=len(attempts),
            error_codes=[a.error.code.value for a in attempts if a.error is not None],
        )
        logger.info(
            "sql_evaluation_complete",
            succeeded=result.succeeded,
            attempts=len(attempts),
            optimizations=len(optimizations),
        )
        return result
