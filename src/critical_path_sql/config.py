"""
Configuration
=============

Value objects injected into the generator, evaluator and executors.
Only ``from_env`` touches the process environment.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


@dataclass(frozen=True)
class ExecutionLimits:
    """Per-statement ceilings enforced by the analytics engine."""

    max_memory_usage: int = 1_000_000_000  # bytes
    max_execution_time: int = 30  # seconds
    max_result_rows: int = 1000

    def as_settings(self) -> dict[str, str]:
        return {
            "max_memory_usage": str(self.max_memory_usage),
            "max_execution_time": str(self.max_execution_time),
            "max_result_rows": str(self.max_result_rows),
            "result_overflow_mode": "break",
            "readonly": "1",
        }


@dataclass(frozen=True)
class GeneratorConfig:
    """Settings for generation and repair."""

    default_model: Optional[str] = None
    repair_model: Optional[str] = None
    max_tokens: int = 2000
    temperature: float = 0.0
    gateway_timeout_seconds: float = 30.0
    max_attempts: int = 3
    concurrency: int = 1
    time_range_minutes: int = 60
    limits: ExecutionLimits = field(default_factory=ExecutionLimits)
    gateway_url: Optional[str] = None
    gateway_api_key: Optional[str] = None
    clickhouse_url: str = "http://localhost:8123"
    clickhouse_user: str = "default"
    clickhouse_password: str = ""
    clickhouse_database: str = "otel"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GeneratorConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read from (default: ``os.environ``)

        Returns:
            GeneratorConfig with defaults for anything unset
        """
        env = os.environ if environ is None else environ
        environment = env.get("ENVIRONMENT", "development")

        # Local gateways answer slowly under test load.
        default_timeout = 120.0 if environment == "test" else 30.0

        limits = ExecutionLimits(
            max_memory_usage=int(env.get("CLICKHOUSE_MAX_MEMORY_USAGE", 1_000_000_000)),
            max_execution_time=int(env.get("CLICKHOUSE_MAX_EXECUTION_TIME", 30)),
            max_result_rows=int(env.get("CLICKHOUSE_MAX_RESULT_ROWS", 1000)),
        )
        return cls(
            default_model=env.get("LLM_DEFAULT_MODEL") or None,
            repair_model=env.get("LLM_REPAIR_MODEL") or None,
            max_tokens=int(env.get("LLM_MAX_TOKENS", 2000)),
            temperature=float(env.get("LLM_TEMPERATURE", 0.0)),
            gateway_timeout_seconds=float(env.get("LLM_GATEWAY_TIMEOUT_SECONDS", default_timeout)),
            max_attempts=int(env.get("SQL_EVALUATOR_MAX_ATTEMPTS", 3)),
            concurrency=int(env.get("QUERY_GENERATION_CONCURRENCY", 1)),
            limits=limits,
            gateway_url=env.get("LLM_GATEWAY_URL") or None,
            gateway_api_key=env.get("LLM_GATEWAY_API_KEY") or None,
            clickhouse_url=env.get("CLICKHOUSE_URL", "http://localhost:8123"),
            clickhouse_user=env.get("CLICKHOUSE_USER", "default"),
            clickhouse_password=env.get("CLICKHOUSE_PASSWORD", ""),
            clickhouse_database=env.get("CLICKHOUSE_DATABASE", "otel"),
        )
