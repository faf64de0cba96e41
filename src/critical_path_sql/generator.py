"""
Query Generator
===============

Orchestrates prompt building, the model gateway call, normalization,
validation and provenance rendering. Optionally hands the result to the
evaluator-optimizer for execution-based repair.
"""

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Union

from critical_path_sql.capabilities import CapabilityRegistry, ModelCapabilityClass
from critical_path_sql.config import GeneratorConfig
from critical_path_sql.errors import GatewayError, ResponseParseError, SQLValidationError
from critical_path_sql.evaluator import EvaluatorOptimizer
from critical_path_sql.llm.base import ModelGateway, call_gateway
from critical_path_sql.models import (
    STANDARD_GOALS,
    AnalysisGoal,
    AnalysisGoalKind,
    CriticalPath,
    GeneratedQueryArtifact,
    LLMRequest,
    LLMResponse,
    ModelPreferences,
    OptimizationContext,
    TokenUsage,
)
from critical_path_sql.normalizer import normalize
from critical_path_sql.prompts import build_prompt, build_retry_prompt
from critical_path_sql.provenance import (
    render_header,
    render_optimizations_block,
    render_validation_block,
    with_provenance,
)
from critical_path_sql.storage.base import QueryExecutor
from critical_path_sql.validator import check_sql, ensure_valid_sql
from observability.logging_config import bind_context, get_logger
from observability.metrics import track_generation_metrics
from observability.tracing import get_tracer

logger = get_logger(__name__)
tracer = get_tracer(__name__)

GoalLike = Union[AnalysisGoal, AnalysisGoalKind, str]


def coerce_goal(goal: GoalLike) -> AnalysisGoal:
    """Accept a goal object, a standard kind, or free text."""
    if isinstance(goal, AnalysisGoal):
        return goal
    if isinstance(goal, AnalysisGoalKind):
        return AnalysisGoal.standard(goal)
    for kind, text in STANDARD_GOALS.items():
        if goal.strip() == text:
            return AnalysisGoal.standard(kind)
    return AnalysisGoal.custom(goal)


def _add_usage(first: TokenUsage, second: TokenUsage) -> TokenUsage:
    return TokenUsage(
        prompt_tokens=first.prompt_tokens + second.prompt_tokens,
        completion_tokens=first.completion_tokens + second.completion_tokens,
        total_tokens=first.total_tokens + second.total_tokens,
    )


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class QueryGenerator:
    """
    Generates analytical SQL for critical paths.

    The generator:
    1. Resolves the model's capability class
    2. Builds the matching prompt and calls the gateway
    3. Normalizes the reply, retrying once with a templated prompt
    4. Validates the SQL and prefixes provenance comments
    5. Optionally runs the evaluator-optimizer against a live executor
    """

    def __init__(
        self,
        gateway: ModelGateway,
        config: Optional[GeneratorConfig] = None,
        executor: Optional[QueryExecutor] = None,
        registry: Optional[CapabilityRegistry] = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or GeneratorConfig()
        self.executor = executor
        self.registry = registry or CapabilityRegistry()

    def _request(self, prompt: str, preferences: Optional[ModelPreferences]) -> LLMRequest:
        preferences = preferences or ModelPreferences()
        return LLMRequest(
            prompt=prompt,
            task_type="analysis",
            preferences=ModelPreferences(
                model=preferences.model or self.config.default_model,
                max_tokens=preferences.max_tokens or self.config.max_tokens,
                temperature=(
                    preferences.temperature
                    if preferences.temperature is not None
                    else self.config.temperature
                ),
            ),
        )

    async def _call(self, request: LLMRequest, capability: ModelCapabilityClass, started: float) -> LLMResponse:
        try:
            return await call_gateway(self.gateway, request, self.config.gateway_timeout_seconds)
        except GatewayError:
            track_generation_metrics("gateway_error", capability.value, time.perf_counter() - started)
            raise

    def _header(self, artifact: GeneratedQueryArtifact, path: CriticalPath) -> list[str]:
        return render_header(
            model=artifact.model,
            generated_at=artifact.generated_at,
            analysis_goal=artifact.goal.text,
            services=[" ".join(service.split()) for service in path.services],
            usage=artifact.usage,
            generation_time_ms=artifact.latency_ms,
            reasoning=artifact.reasoning,
        )

    async def generate(
        self,
        path: CriticalPath,
        goal: GoalLike,
        preferences: Optional[ModelPreferences] = None,
    ) -> GeneratedQueryArtifact:
        """
        Generate one validated query.

        Args:
            path: Critical path to analyze
            goal: Analysis goal (object, standard kind, or free text)
            preferences: Model, token and temperature overrides

        Returns:
            GeneratedQueryArtifact whose ``sql`` carries provenance comments

        Raises:
            GatewayError: The gateway call failed or timed out
            ResponseParseError: No SQL found after one retry
            SQLValidationError: The SQL failed the validator
        """
        goal = coerce_goal(goal)
        model = (preferences.model if preferences else None) or self.config.default_model
        capability = self.registry.capability_of(model)
        prompt = build_prompt(path, goal, capability, self.config.time_range_minutes)
        request = self._request(prompt, preferences)

        started = time.perf_counter()
        with tracer.start_as_current_span("query.generate") as span:
            span.set_attribute("path.id", path.id)
            span.set_attribute("goal.kind", goal.kind.value)
            span.set_attribute("llm.capability", capability.value)

            response = await self._call(request, capability, started)
            usage = response.usage
            try:
                parsed = normalize(response.content, capability)
            except ResponseParseError as e:
                logger.warning("response_parse_retry", path_id=path.id, model=response.model, error=str(e))
                retry = replace(request, prompt=build_retry_prompt(prompt, capability))
                response = await self._call(retry, capability, started)
                usage = _add_usage(usage, response.usage)
                try:
                    parsed = normalize(response.content, capability)
                except ResponseParseError:
                    track_generation_metrics("parse_error", capability.value, time.perf_counter() - started)
                    raise

            report = check_sql(parsed.sql)
            if not report.valid:
                track_generation_metrics("validation_error", capability.value, time.perf_counter() - started)
                logger.warning("generated_sql_rejected", path_id=path.id, reasons=report.reasons)
                raise SQLValidationError(parsed.sql, report.reasons)

            elapsed = time.perf_counter() - started
            artifact = GeneratedQueryArtifact(
                id=f"{path.id}_{int(time.time() * 1000)}_llm",
                name=f"{goal.text[:50]} - {path.name}",
                description=parsed.description,
                sql=parsed.sql,
                query=parsed.sql,
                expected_schema={column.name: column.type for column in parsed.expected_columns},
                model=response.model,
                goal=goal,
                generated_at=_utc_timestamp(),
                reasoning=parsed.reasoning,
                usage=usage,
                latency_ms=elapsed * 1000,
            )
            artifact = replace(artifact, sql=with_provenance(parsed.sql, self._header(artifact, path)))

        track_generation_metrics("success", capability.value, elapsed)
        logger.info(
            "query_generated",
            path_id=path.id,
            goal=goal.kind.value,
            model=artifact.model,
            total_tokens=usage.total_tokens,
        )
        return artifact

    async def generate_and_optimize(
        self,
        path: CriticalPath,
        goal: GoalLike,
        preferences: Optional[ModelPreferences] = None,
        use_evaluator: bool = False,
    ) -> GeneratedQueryArtifact:
        """
        Generate a query and, when ``use_evaluator`` is set, execute and repair it.

        Unresolved runs still return the best-effort SQL; the validation block
        records that it may have issues.

        Raises:
            ValueError: ``use_evaluator`` without an executor
        """
        if use_evaluator and self.executor is None:
            raise ValueError("use_evaluator requires a QueryExecutor")
        artifact = await self.generate(path, goal, preferences)
        if not use_evaluator:
            return artifact

        evaluator = EvaluatorOptimizer(self.gateway, self.executor, self.config)
        context = OptimizationContext(services=path.services, analysis_goal=artifact.goal.text)
        result = await evaluator.optimize(artifact.query, context)
        final_sql = ensure_valid_sql(result.final_sql)

        expected_schema = artifact.expected_schema
        if not expected_schema and result.succeeded:
            expected_schema = {column.name: column.type for column in result.attempts[-1].columns}

        if not result.succeeded:
            logger.warning(
                "query_unresolved",
                path_id=path.id,
                attempts=len(result.attempts),
                last_error=result.attempts[-1].error.code.value if result.attempts[-1].error else None,
            )

        return replace(
            artifact,
            query=final_sql,
            expected_schema=expected_schema,
            evaluation=result,
            sql=with_provenance(
                final_sql,
                self._header(artifact, path),
                render_validation_block(result.attempts),
                render_optimizations_block(result.optimizations),
            ),
        )

    async def generate_for_goals(
        self,
        path: CriticalPath,
        goals: Iterable[GoalLike],
        preferences: Optional[ModelPreferences] = None,
        use_evaluator: bool = False,
    ) -> list[GeneratedQueryArtifact]:
        """Generate one artifact per goal, at most ``config.concurrency`` at a time."""
        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def bounded(goal: GoalLike) -> GeneratedQueryArtifact:
            async with semaphore:
                bind_context(path_id=path.id)
                return await self.generate_and_optimize(path, goal, preferences, use_evaluator)

        return list(await asyncio.gather(*(bounded(goal) for goal in goals)))

    async def generate_standard_queries(
        self,
        path: CriticalPath,
        preferences: Optional[ModelPreferences] = None,
        use_evaluator: bool = False,
    ) -> list[GeneratedQueryArtifact]:
        goals = [AnalysisGoal.standard(kind) for kind in STANDARD_GOALS]
        return await self.generate_for_goals(path, goals, preferences, use_evaluator)
