"""
Unit Tests for the Query Generator
==================================

End-to-end generation against a scripted MockGateway and a fake executor.
"""

import asyncio
import json

import pytest

from critical_path_sql.config import GeneratorConfig
from critical_path_sql.errors import (
    GatewayError,
    GatewayErrorKind,
    ResponseParseError,
    SQLValidationError,
)
from critical_path_sql.generator import QueryGenerator, coerce_goal
from critical_path_sql.llm.base import ModelGateway
from critical_path_sql.llm.mock import MockGateway
from critical_path_sql.models import (
    STANDARD_GOALS,
    AnalysisGoal,
    AnalysisGoalKind,
    CriticalPath,
    LLMRequest,
    LLMResponse,
    ModelPreferences,
    ResultColumn,
)
from critical_path_sql.storage.base import QueryResult
from critical_path_sql.storage.errors import QueryExecutionError
from critical_path_sql.validator import validate_sql

GENERAL_KEY = "ClickHouse SQL expert"
SQL_MODEL_KEY = "diagnostic analysis"
REPAIR_KEY = "optimization expert"

LATENCY_SQL = (
    "SELECT service_name, quantile(0.95)(duration_ns/1000000) AS p95_ms "
    "FROM traces WHERE service_name IN ('frontend', 'cart', 'payment') "
    "GROUP BY service_name"
)

LATENCY_REPLY = json.dumps(
    {
        "sql": LATENCY_SQL,
        "description": "p95 latency per service",
        "expectedColumns": [
            {"name": "service_name", "type": "String", "description": "Service"},
            {"name": "p95_ms", "type": "Float64", "description": "p95 latency"},
        ],
        "reasoning": "Percentiles show tail latency",
    }
)

BROKEN_SQL = "SELECT service_name, count() AS n FROM traces GROUP BY service_name ORDER BY n HAVING n > 1"
FIXED_SQL = "SELECT service_name, count() AS n FROM traces GROUP BY service_name HAVING n > 1 ORDER BY n"


def syntax_error() -> QueryExecutionError:
    return QueryExecutionError("Code: 62. DB::Exception: Syntax error: failed at position 80", code=62)


@pytest.fixture
def latency_goal() -> AnalysisGoal:
    return AnalysisGoal.standard(AnalysisGoalKind.LATENCY)


class TestCoerceGoal:
    def test_standard_text_maps_to_kind(self) -> None:
        goal = coerce_goal(STANDARD_GOALS[AnalysisGoalKind.ERRORS])
        assert goal.kind is AnalysisGoalKind.ERRORS

    def test_free_text_is_custom(self) -> None:
        goal = coerce_goal("  Which endpoints regressed?  ")
        assert goal.kind is AnalysisGoalKind.CUSTOM
        assert goal.text == "Which endpoints regressed?"

    def test_kind(self) -> None:
        assert coerce_goal(AnalysisGoalKind.THROUGHPUT).text == STANDARD_GOALS[AnalysisGoalKind.THROUGHPUT]


class TestGenerate:
    @pytest.mark.asyncio
    async def test_general_model_artifact(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        gateway = MockGateway(responses={GENERAL_KEY: [LATENCY_REPLY]})
        generator = QueryGenerator(gateway, general_config)

        artifact = await generator.generate(checkout_path, latency_goal)

        assert artifact.query == LATENCY_SQL
        assert artifact.sql.endswith(LATENCY_SQL)
        assert artifact.sql.startswith("-- Model: gpt-4o\n")
        assert "-- Services: frontend, cart, payment" in artifact.sql
        assert f"-- Analysis Goal: {latency_goal.text}" in artifact.sql
        assert "-- Reasoning: Percentiles show tail latency" in artifact.sql
        assert validate_sql(artifact.sql)
        assert artifact.description == "p95 latency per service"
        assert artifact.expected_schema == {"service_name": "String", "p95_ms": "Float64"}
        assert artifact.id.startswith("checkout-flow_")
        assert artifact.id.endswith("_llm")
        assert artifact.name == f"{latency_goal.text[:50]} - Checkout Flow"
        assert artifact.model == "gpt-4o"
        assert artifact.goal == latency_goal
        assert artifact.generated_at.endswith("Z")
        assert artifact.evaluation is None

    @pytest.mark.asyncio
    async def test_request_preferences(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        gateway = MockGateway(responses={GENERAL_KEY: [LATENCY_REPLY]})
        generator = QueryGenerator(gateway, general_config)

        await generator.generate(checkout_path, latency_goal, ModelPreferences(max_tokens=500))

        request = gateway.requests[0]
        assert request.task_type == "analysis"
        assert request.preferences.model == "gpt-4o"
        assert request.preferences.max_tokens == 500
        assert request.preferences.temperature == 0.0

    @pytest.mark.asyncio
    async def test_sql_model_raw_reply(
        self, checkout_path: CriticalPath, sql_model_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        gateway = MockGateway(responses={SQL_MODEL_KEY: [f"```sql\n{LATENCY_SQL}\n```"]})
        generator = QueryGenerator(gateway, sql_model_config)

        artifact = await generator.generate(checkout_path, latency_goal)

        assert artifact.query == LATENCY_SQL
        assert artifact.description == "Direct SQL generation"
        assert artifact.expected_schema == {}
        assert "-- Model: sqlcoder-7b-2" in artifact.sql
        assert gateway.requests[0].prompt.endswith("NO explanations or examples:")

    @pytest.mark.asyncio
    async def test_preferences_model_overrides_config(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        gateway = MockGateway(responses={SQL_MODEL_KEY: [LATENCY_SQL]})
        generator = QueryGenerator(gateway, general_config)

        artifact = await generator.generate(
            checkout_path, latency_goal, ModelPreferences(model="codellama-7b")
        )

        assert artifact.model == "codellama-7b"
        assert artifact.query == LATENCY_SQL

    @pytest.mark.asyncio
    async def test_one_retry_after_unparseable_reply(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        gateway = MockGateway(
            responses={
                "could not be parsed": [LATENCY_REPLY],
                GENERAL_KEY: ["I would rather not."],
            }
        )
        generator = QueryGenerator(gateway, general_config)

        artifact = await generator.generate(checkout_path, latency_goal)

        assert artifact.query == LATENCY_SQL
        assert len(gateway.requests) == 2
        first_tokens = len(gateway.requests[0].prompt.split()) + len("I would rather not.".split())
        assert artifact.usage.total_tokens > first_tokens

    @pytest.mark.asyncio
    async def test_second_parse_failure_surfaces(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        gateway = MockGateway(responses={GENERAL_KEY: ["I would rather not."]})
        generator = QueryGenerator(gateway, general_config)

        with pytest.raises(ResponseParseError):
            await generator.generate(checkout_path, latency_goal)
        assert len(gateway.requests) == 2

    @pytest.mark.asyncio
    async def test_unsafe_sql_rejected(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        reply = json.dumps({"sql": "SELECT * FROM traces; DROP TABLE traces"})
        gateway = MockGateway(responses={GENERAL_KEY: [reply]})
        generator = QueryGenerator(gateway, general_config)

        with pytest.raises(SQLValidationError) as exc_info:
            await generator.generate(checkout_path, latency_goal)
        assert "Forbidden operation: DROP" in exc_info.value.reasons
        assert len(gateway.requests) == 1

    @pytest.mark.asyncio
    async def test_gateway_error_propagates(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        failure = GatewayError(GatewayErrorKind.MODEL_UNAVAILABLE, "no such model", model="gpt-4o")
        gateway = MockGateway(responses={GENERAL_KEY: [failure]})
        generator = QueryGenerator(gateway, general_config)

        with pytest.raises(GatewayError) as exc_info:
            await generator.generate(checkout_path, latency_goal)
        assert exc_info.value.kind is GatewayErrorKind.MODEL_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_gateway_timeout(self, checkout_path: CriticalPath, latency_goal: AnalysisGoal) -> None:
        gateway = MockGateway(default=LATENCY_REPLY, delay_seconds=0.5)
        generator = QueryGenerator(gateway, GeneratorConfig(gateway_timeout_seconds=0.01))

        with pytest.raises(GatewayError) as exc_info:
            await generator.generate(checkout_path, latency_goal)
        assert exc_info.value.kind is GatewayErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_hostile_service_names_escaped(
        self, hostile_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        gateway = MockGateway(responses={GENERAL_KEY: [LATENCY_REPLY]})
        generator = QueryGenerator(gateway, general_config)

        await generator.generate(hostile_path, latency_goal)

        prompt = gateway.requests[0].prompt
        assert "'frontend'' OR ''1''=''1'" in prompt
        assert "frontend' OR '1'='1" not in prompt


class TestGenerateAndOptimize:
    @pytest.mark.asyncio
    async def test_without_evaluator_matches_generate(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        gateway = MockGateway(responses={GENERAL_KEY: [LATENCY_REPLY]})
        generator = QueryGenerator(gateway, general_config)

        artifact = await generator.generate_and_optimize(checkout_path, latency_goal)

        assert artifact.evaluation is None
        assert "VALIDATION ATTEMPTS" not in artifact.sql

    @pytest.mark.asyncio
    async def test_evaluator_requires_executor(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal
    ) -> None:
        gateway = MockGateway(responses={GENERAL_KEY: [LATENCY_REPLY]})
        generator = QueryGenerator(gateway, general_config)

        with pytest.raises(ValueError):
            await generator.generate_and_optimize(checkout_path, latency_goal, use_evaluator=True)
        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_repair_recorded_in_provenance(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal, make_executor
    ) -> None:
        repair = json.dumps(
            {
                "optimizedSql": FIXED_SQL,
                "explanation": "Reordered clauses",
                "changes": ["Moved HAVING before ORDER BY"],
            }
        )
        gateway = MockGateway(
            responses={
                REPAIR_KEY: [repair],
                GENERAL_KEY: [json.dumps({"sql": BROKEN_SQL, "description": "Counts"})],
            }
        )
        executor = make_executor(
            syntax_error(),
            QueryResult(
                rows=[{"service_name": "cart", "n": 4}],
                columns=[ResultColumn("service_name", "String"), ResultColumn("n", "UInt64")],
            ),
        )
        generator = QueryGenerator(gateway, general_config, executor=executor)

        artifact = await generator.generate_and_optimize(checkout_path, latency_goal, use_evaluator=True)

        assert artifact.query == FIXED_SQL
        assert artifact.sql.endswith(FIXED_SQL)
        assert artifact.expected_schema == {"service_name": "String", "n": "UInt64"}
        assert artifact.evaluation.succeeded
        assert "-- Total Attempts: 2" in artifact.sql
        assert "-- Attempt 1: ❌ INVALID" in artifact.sql
        assert "--   Error Code: SYNTAX_ERROR" in artifact.sql
        assert "-- Attempt 2: ✅ VALID" in artifact.sql
        assert "-- Final Status: ✅ Query validated successfully" in artifact.sql
        assert "-- ========== OPTIMIZATIONS APPLIED ==========" in artifact.sql
        assert "--   - Moved HAVING before ORDER BY" in artifact.sql
        assert validate_sql(artifact.sql)

    @pytest.mark.asyncio
    async def test_model_schema_kept_when_present(
        self, checkout_path: CriticalPath, general_config: GeneratorConfig, latency_goal: AnalysisGoal, make_executor
    ) -> None:
        gateway = MockGateway(responses={GENERAL_KEY: [LATENCY_REPLY]})
        executor = make_executor(QueryResult(columns=[ResultColumn("other", "String")]))
        generator = QueryGenerator(gateway, general_config, executor=executor)

        artifact = await generator.generate_and_optimize(checkout_path, latency_goal, use_evaluator=True)

        assert artifact.expected_schema == {"service_name": "String", "p95_ms": "Float64"}
        assert "OPTIMIZATIONS APPLIED" not in artifact.sql

    @pytest.mark.asyncio
    async def test_unresolved_returns_best_effort(
        self, checkout_path: CriticalPath, latency_goal: AnalysisGoal, make_executor
    ) -> None:
        gateway = MockGateway(responses={GENERAL_KEY: [LATENCY_REPLY]})
        config = GeneratorConfig(default_model="gpt-4o", max_attempts=1)
        generator = QueryGenerator(gateway, config, executor=make_executor(syntax_error()))

        artifact = await generator.generate_and_optimize(checkout_path, latency_goal, use_evaluator=True)

        assert artifact.query == LATENCY_SQL
        assert not artifact.evaluation.succeeded
        assert "❌ Query may have issues - validation failed after 1 attempts" in artifact.sql


class ConcurrencyProbe(ModelGateway):
    """Gateway that records how many calls overlap."""

    def __init__(self) -> None:
        self.in_flight = 0
        self.peak = 0
        self.prompts: list[str] = []

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        self.prompts.append(request.prompt)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        return LLMResponse(content=LATENCY_REPLY, model="probe")


class TestBatchGeneration:
    @pytest.mark.asyncio
    async def test_sequential_by_default(self, checkout_path: CriticalPath) -> None:
        gateway = ConcurrencyProbe()
        generator = QueryGenerator(gateway)

        artifacts = await generator.generate_standard_queries(checkout_path)

        assert gateway.peak == 1
        assert [a.goal.kind for a in artifacts] == list(STANDARD_GOALS)

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, checkout_path: CriticalPath) -> None:
        gateway = ConcurrencyProbe()
        generator = QueryGenerator(gateway, GeneratorConfig(concurrency=3))

        goals = [AnalysisGoal.custom(f"Goal number {n}") for n in range(6)]
        artifacts = await generator.generate_for_goals(checkout_path, goals)

        assert gateway.peak == 3
        assert [a.goal.text for a in artifacts] == [g.text for g in goals]

    @pytest.mark.asyncio
    async def test_failure_propagates(self, checkout_path: CriticalPath, general_config: GeneratorConfig) -> None:
        gateway = MockGateway(
            responses={
                "Goal that fails": [GatewayError(GatewayErrorKind.RATE_LIMIT_EXCEEDED, "busy")],
                GENERAL_KEY: [LATENCY_REPLY],
            }
        )
        generator = QueryGenerator(gateway, general_config)

        with pytest.raises(GatewayError):
            await generator.generate_for_goals(checkout_path, ["Fine goal", "Goal that fails"])
