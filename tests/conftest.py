"""
Pytest Fixtures
===============

Shared fixtures for critical-path SQL tests.
"""

import sys
from pathlib import Path
from typing import Mapping, Optional, Union

import pytest

# Add src and the repository root (observability) to path for imports
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

from critical_path_sql.config import GeneratorConfig
from critical_path_sql.llm.mock import MockGateway
from critical_path_sql.models import (
    CriticalPath,
    PathMetrics,
    VerificationStatus,
)
from critical_path_sql.storage.base import QueryExecutor, QueryResult
from critical_path_sql.verifiers.base import VerificationChain
from critical_path_sql.verifiers.safety import SafetyVerifier
from critical_path_sql.verifiers.structure import StructureVerifier

ExecutionOutcome = Union[QueryResult, Exception]


class ExecutorCall:
    def __init__(self, sql: str, settings: dict) -> None:
        self.sql = sql
        self.settings = settings


class FakeExecutor(QueryExecutor):
    """Executor that replays scripted outcomes; the last one repeats."""

    def __init__(self, outcomes: Optional[list[ExecutionOutcome]] = None) -> None:
        self.outcomes = outcomes or [QueryResult()]
        self.calls: list[ExecutorCall] = []

    async def execute_query(
        self,
        sql: str,
        settings: Optional[Mapping[str, str]] = None,
    ) -> QueryResult:
        self.calls.append(ExecutorCall(sql, dict(settings or {})))
        outcome = self.outcomes[min(len(self.calls) - 1, len(self.outcomes) - 1)]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def checkout_path() -> CriticalPath:
    """Return a three-service checkout path."""
    return CriticalPath(
        id="checkout-flow",
        name="Checkout Flow",
        services=("frontend", "cart", "payment"),
        start_service="frontend",
        end_service="payment",
        metrics=PathMetrics(request_count=1200, avg_latency_ms=85.0, error_rate=0.02),
        priority="critical",
    )


@pytest.fixture
def hostile_path() -> CriticalPath:
    """Return a path whose service name tries to break out of a SQL literal."""
    return CriticalPath(
        id="hostile",
        name="Hostile Path",
        services=("frontend' OR '1'='1", "cart"),
        start_service="frontend' OR '1'='1",
        end_service="cart",
    )


@pytest.fixture
def make_executor():
    """Factory for a FakeExecutor scripted with the given outcomes."""

    def _make(*outcomes: ExecutionOutcome) -> FakeExecutor:
        return FakeExecutor(list(outcomes) or None)

    return _make


@pytest.fixture
def general_config() -> GeneratorConfig:
    return GeneratorConfig(default_model="gpt-4o")


@pytest.fixture
def sql_model_config() -> GeneratorConfig:
    return GeneratorConfig(default_model="sqlcoder-7b-2")


@pytest.fixture
def mock_gateway() -> MockGateway:
    """Create an empty mock gateway; tests script the replies they need."""
    return MockGateway()


@pytest.fixture
def verification_chain() -> VerificationChain:
    """Create a default verification chain."""
    return VerificationChain()


@pytest.fixture
def structure_verifier() -> StructureVerifier:
    return StructureVerifier()


@pytest.fixture
def safety_verifier() -> SafetyVerifier:
    return SafetyVerifier()


@pytest.fixture
def valid_select_sql() -> str:
    """Return a valid read-only SELECT."""
    return (
        "SELECT service_name, count(*) FROM traces "
        "WHERE service_name IN ('a','b') GROUP BY service_name"
    )


@pytest.fixture
def dangerous_sql() -> str:
    return "DROP TABLE traces; SELECT * FROM traces"


def assert_verification_passed(result) -> None:
    """Helper assertion for verification results."""
    assert result.status == VerificationStatus.PASSED, f"Expected PASSED, got: {result.message}"


def assert_verification_failed(result) -> None:
    """Helper assertion for verification failures."""
    assert result.status == VerificationStatus.FAILED, f"Expected FAILED, got: {result.message}"
