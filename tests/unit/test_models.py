"""
Unit Tests for Data Models
==========================
"""

import pytest

from critical_path_sql.models import (
    STANDARD_GOALS,
    AnalysisGoal,
    AnalysisGoalKind,
    CriticalPath,
    EvaluationResult,
    GenerationAttempt,
)


class TestAnalysisGoal:
    def test_standard(self) -> None:
        goal = AnalysisGoal.standard(AnalysisGoalKind.LATENCY)
        assert goal.text == STANDARD_GOALS[AnalysisGoalKind.LATENCY]
        assert goal.example_kind is AnalysisGoalKind.LATENCY

    def test_standard_rejects_custom(self) -> None:
        with pytest.raises(ValueError):
            AnalysisGoal.standard(AnalysisGoalKind.CUSTOM)

    def test_custom_rejects_blank(self) -> None:
        with pytest.raises(ValueError):
            AnalysisGoal.custom("   ")

    @pytest.mark.parametrize(
        "text, kind",
        [
            ("Compare this week against last week", AnalysisGoalKind.COMPARISON),
            ("Find the slowest operations", AnalysisGoalKind.BOTTLENECKS),
            ("Where do failures come from?", AnalysisGoalKind.ERRORS),
            ("What is our request volume?", AnalysisGoalKind.THROUGHPUT),
            ("Show p99 latency", AnalysisGoalKind.LATENCY),
            ("Something unrelated", AnalysisGoalKind.CUSTOM),
        ],
    )
    def test_custom_example_kind(self, text: str, kind: AnalysisGoalKind) -> None:
        assert AnalysisGoal.custom(text).example_kind is kind


class TestCriticalPath:
    def test_from_camel_case_dict(self) -> None:
        path = CriticalPath.from_dict(
            {
                "id": "checkout",
                "name": "Checkout",
                "services": ["frontend", "cart"],
                "startService": "frontend",
                "endService": "cart",
                "edges": [{"source": "frontend", "target": "cart", "callCount": 10}],
                "metrics": {"requestCount": 100, "avgLatency": 12.5, "errorRate": 0.01},
                "priority": "high",
            }
        )
        assert path.services == ("frontend", "cart")
        assert path.edges[0].call_count == 10
        assert path.metrics.avg_latency_ms == 12.5
        assert path.priority == "high"

    def test_from_snake_case_dict_defaults_endpoints(self) -> None:
        path = CriticalPath.from_dict({"id": "p", "name": "P", "services": ["a", "b", "c"]})
        assert path.start_service == "a"
        assert path.end_service == "c"
        assert path.metrics is None

    def test_lists_become_tuples(self) -> None:
        path = CriticalPath(id="p", name="P", services=["a"], start_service="a", end_service="a")
        assert path.services == ("a",)

    def test_requires_services(self) -> None:
        with pytest.raises(ValueError):
            CriticalPath(id="p", name="P", services=(), start_service="", end_service="")


class TestEvaluationResult:
    def test_succeeded_follows_last_attempt(self) -> None:
        failed = GenerationAttempt(number=1, sql="s", is_valid=False, execution_time_ms=1.0)
        passed = GenerationAttempt(number=2, sql="s", is_valid=True, execution_time_ms=1.0)
        assert EvaluationResult("s", (failed, passed)).succeeded
        assert not EvaluationResult("s", (passed, failed)).succeeded
        assert not EvaluationResult("s", ()).succeeded
