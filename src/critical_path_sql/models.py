"""
Data Models
===========

Core data structures for critical-path query generation and repair.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class VerificationStatus(Enum):
    """Status of a verification check."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class VerificationResult:
    """Result of a single verification step."""

    verifier_name: str
    status: VerificationStatus
    message: str
    details: dict = field(default_factory=dict)


class AnalysisGoalKind(Enum):
    """Enumerated analysis goals with canned prompt text."""

    LATENCY = "latency"
    ERRORS = "errors"
    BOTTLENECKS = "bottlenecks"
    THROUGHPUT = "throughput"
    COMPARISON = "comparison"
    CUSTOM = "custom"


STANDARD_GOALS: dict[AnalysisGoalKind, str] = {
    AnalysisGoalKind.LATENCY: (
        "Analyze service latency patterns showing p50, p95, p99 percentiles "
        "over time for performance monitoring"
    ),
    AnalysisGoalKind.ERRORS: (
        "Identify error patterns, distribution, and root causes across services "
        "to improve reliability"
    ),
    AnalysisGoalKind.BOTTLENECKS: (
        "Detect performance bottlenecks by finding slowest operations and their "
        "impact on the critical path"
    ),
    AnalysisGoalKind.THROUGHPUT: (
        "Measure request volume, throughput rates, and success ratios to "
        "understand system capacity"
    ),
    AnalysisGoalKind.COMPARISON: (
        "Compare current performance metrics with previous time periods to "
        "identify trends and regressions"
    ),
}

# Checked in order; the first keyword hit decides the kind of a free-text goal.
_GOAL_KEYWORDS: list[tuple[AnalysisGoalKind, tuple[str, ...]]] = [
    (AnalysisGoalKind.COMPARISON, ("compar", "previous period", "regression", "trend")),
    (AnalysisGoalKind.BOTTLENECKS, ("bottleneck", "slowest", "impact")),
    (AnalysisGoalKind.ERRORS, ("error", "failure", "reliability")),
    (AnalysisGoalKind.THROUGHPUT, ("throughput", "volume", "request rate", "capacity")),
    (AnalysisGoalKind.LATENCY, ("latency", "performance", "percentile", "duration")),
]


@dataclass(frozen=True)
class AnalysisGoal:
    """What the generated query must reveal."""

    kind: AnalysisGoalKind
    text: str

    @classmethod
    def standard(cls, kind: AnalysisGoalKind) -> "AnalysisGoal":
        if kind is AnalysisGoalKind.CUSTOM:
            raise ValueError("custom goals need text; use AnalysisGoal.custom()")
        return cls(kind=kind, text=STANDARD_GOALS[kind])

    @classmethod
    def custom(cls, text: str) -> "AnalysisGoal":
        if not text or not text.strip():
            raise ValueError("analysis goal text must not be empty")
        return cls(kind=AnalysisGoalKind.CUSTOM, text=text.strip())

    @property
    def example_kind(self) -> AnalysisGoalKind:
        """Closest enumerated kind, used to pick worked examples."""
        if self.kind is not AnalysisGoalKind.CUSTOM:
            return self.kind
        lowered = self.text.lower()
        for kind, keywords in _GOAL_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return kind
        return AnalysisGoalKind.CUSTOM


@dataclass(frozen=True)
class ServiceEdge:
    """Directed call edge between two services on a path."""

    source: str
    target: str
    call_count: Optional[int] = None


@dataclass(frozen=True)
class PathMetrics:
    """Traffic metrics observed for a critical path."""

    request_count: Optional[int] = None
    avg_latency_ms: Optional[float] = None
    p95_latency_ms: Optional[float] = None
    p99_latency_ms: Optional[float] = None
    error_rate: Optional[float] = None


@dataclass(frozen=True)
class CriticalPath:
    """Named, ordered chain of services for one business transaction."""

    id: str
    name: str
    services: tuple[str, ...]
    start_service: str
    end_service: str
    edges: tuple[ServiceEdge, ...] = ()
    metrics: Optional[PathMetrics] = None
    priority: Optional[str] = None
    severity: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.services:
            raise ValueError(f"critical path {self.id!r} has no services")
        # Accept lists from callers but keep the stored value immutable.
        object.__setattr__(self, "services", tuple(self.services))
        object.__setattr__(self, "edges", tuple(self.edges))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CriticalPath":
        """Build a path from a camelCase or snake_case payload."""

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        services = list(pick("services", default=[]))
        edges = tuple(
            ServiceEdge(
                source=edge.get("source") or edge.get("from"),
                target=edge.get("target") or edge.get("to"),
                call_count=edge.get("callCount", edge.get("call_count")),
            )
            for edge in pick("edges", default=[])
        )
        raw_metrics = pick("metrics")
        metrics = None
        if raw_metrics:
            metrics = PathMetrics(
                request_count=raw_metrics.get("requestCount", raw_metrics.get("request_count")),
                avg_latency_ms=raw_metrics.get("avgLatency", raw_metrics.get("avg_latency_ms")),
                p95_latency_ms=raw_metrics.get("p95Latency", raw_metrics.get("p95_latency_ms")),
                p99_latency_ms=raw_metrics.get("p99Latency", raw_metrics.get("p99_latency_ms")),
                error_rate=raw_metrics.get("errorRate", raw_metrics.get("error_rate")),
            )
        return cls(
            id=pick("id"),
            name=pick("name"),
            services=tuple(services),
            start_service=pick("startService", "start_service", default=services[0] if services else ""),
            end_service=pick("endService", "end_service", default=services[-1] if services else ""),
            edges=edges,
            metrics=metrics,
            priority=pick("priority"),
            severity=pick("severity"),
        )


@dataclass(frozen=True)
class ExpectedColumn:
    """Column the model promises the query will return."""

    name: str
    type: str
    description: str = ""


@dataclass(frozen=True)
class ParsedQueryResponse:
    """Normalized model output."""

    sql: str
    description: str
    expected_columns: tuple[ExpectedColumn, ...] = ()
    reasoning: str = ""


class ExecutionErrorCode(Enum):
    """Actionable categories for analytics engine failures."""

    SYNTAX_ERROR = "SYNTAX_ERROR"
    UNKNOWN_IDENTIFIER = "UNKNOWN_IDENTIFIER"
    NOT_AN_AGGREGATE = "NOT_AN_AGGREGATE"
    TIMEOUT = "TIMEOUT"
    MEMORY_LIMIT_EXCEEDED = "MEMORY_LIMIT_EXCEEDED"
    ILLEGAL_AGGREGATION = "ILLEGAL_AGGREGATION"
    UNKNOWN_TABLE = "UNKNOWN_TABLE"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    UNKNOWN_FUNCTION = "UNKNOWN_FUNCTION"
    UNKNOWN_EXECUTION_ERROR = "UNKNOWN_EXECUTION_ERROR"


@dataclass(frozen=True)
class ExecutionError:
    """A classified execution failure."""

    code: ExecutionErrorCode
    message: str
    code_number: int = 0
    position: Optional[int] = None


@dataclass(frozen=True)
class ResultColumn:
    name: str
    type: str


@dataclass(frozen=True)
class GenerationAttempt:
    """One execution in the repair loop. Never mutated once recorded."""

    number: int
    sql: str
    is_valid: bool
    execution_time_ms: float
    error: Optional[ExecutionError] = None
    row_count: Optional[int] = None
    columns: tuple[ResultColumn, ...] = ()


@dataclass(frozen=True)
class Optimization:
    """A repair applied between two attempts."""

    optimized_sql: str
    explanation: str
    changes: tuple[str, ...] = ()
    source: str = "llm"


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of an evaluate-repair run."""

    final_sql: str
    attempts: tuple[GenerationAttempt, ...]
    optimizations: tuple[Optimization, ...] = ()

    @property
    def succeeded(self) -> bool:
        return bool(self.attempts) and self.attempts[-1].is_valid


@dataclass(frozen=True)
class OptimizationContext:
    """Original generation context handed to repair prompts."""

    services: tuple[str, ...]
    analysis_goal: str


@dataclass(frozen=True)
class ModelPreferences:
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


@dataclass(frozen=True)
class LLMRequest:
    """Request sent to the model gateway."""

    prompt: str
    task_type: str = "analysis"
    preferences: ModelPreferences = field(default_factory=ModelPreferences)


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class ResponseMetadata:
    latency_ms: float = 0.0
    retry_count: int = 0
    cached: bool = False


@dataclass(frozen=True)
class LLMResponse:
    """Response from a model gateway call."""

    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)


@dataclass(frozen=True)
class GeneratedQueryArtifact:
    """Final, validated query plus provenance."""

    id: str
    name: str
    description: str
    sql: str
    query: str
    expected_schema: dict[str, str]
    model: str
    goal: AnalysisGoal
    generated_at: str
    reasoning: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: float = 0.0
    evaluation: Optional[EvaluationResult] = None
