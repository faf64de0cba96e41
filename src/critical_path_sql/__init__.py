"""
Critical-Path SQL
=================

LLM-driven generation and execution-based repair of ClickHouse queries for
critical-path trace analysis.
"""

from critical_path_sql.capabilities import (
    CapabilityRegistry,
    ModelCapabilityClass,
    ModelProfile,
    is_sql_specialized_model,
)
from critical_path_sql.config import ExecutionLimits, GeneratorConfig
from critical_path_sql.errors import (
    GatewayError,
    GatewayErrorKind,
    QueryGenerationError,
    ResponseParseError,
    SQLValidationError,
)
from critical_path_sql.evaluator import (
    EvaluatorOptimizer,
    apply_rule_based_optimization,
    classify_execution_error,
)
from critical_path_sql.generator import QueryGenerator
from critical_path_sql.llm import HTTPModelGateway, MockGateway, ModelGateway
from critical_path_sql.models import (
    AnalysisGoal,
    AnalysisGoalKind,
    CriticalPath,
    EvaluationResult,
    ExecutionError,
    ExecutionErrorCode,
    GeneratedQueryArtifact,
    GenerationAttempt,
    ModelPreferences,
    Optimization,
    OptimizationContext,
    ParsedQueryResponse,
)
from critical_path_sql.normalizer import normalize, serialize
from critical_path_sql.storage import ClickHouseExecutor, QueryExecutor
from critical_path_sql.validator import validate_sql

__version__ = "0.1.0"

__all__ = [
    # Models
    "AnalysisGoal",
    "AnalysisGoalKind",
    "CriticalPath",
    "EvaluationResult",
    "ExecutionError",
    "ExecutionErrorCode",
    "GeneratedQueryArtifact",
    "GenerationAttempt",
    "ModelPreferences",
    "Optimization",
    "OptimizationContext",
    "ParsedQueryResponse",
    # Configuration
    "ExecutionLimits",
    "GeneratorConfig",
    # Capabilities
    "CapabilityRegistry",
    "ModelCapabilityClass",
    "ModelProfile",
    "is_sql_specialized_model",
    # Errors
    "QueryGenerationError",
    "GatewayError",
    "GatewayErrorKind",
    "ResponseParseError",
    "SQLValidationError",
    # Pipeline
    "QueryGenerator",
    "EvaluatorOptimizer",
    "classify_execution_error",
    "apply_rule_based_optimization",
    "normalize",
    "serialize",
    "validate_sql",
    # Gateways and executors
    "ModelGateway",
    "HTTPModelGateway",
    "MockGateway",
    "QueryExecutor",
    "ClickHouseExecutor",
]
