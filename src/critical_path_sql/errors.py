"""
Errors
======

Exception hierarchy for query generation. Storage-layer failures live in
``critical_path_sql.storage.errors``.
"""

from enum import Enum
from typing import Optional


class QueryGenerationError(Exception):
    """Base class for failures surfaced by the generation pipeline."""


class GatewayErrorKind(Enum):
    """Typed failures reported by the model gateway."""

    MODEL_UNAVAILABLE = "ModelUnavailable"
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    TIMEOUT = "TimeoutError"
    CONTEXT_TOO_LARGE = "ContextTooLarge"
    NETWORK_ERROR = "NetworkError"
    CONFIGURATION_ERROR = "ConfigurationError"


class GatewayError(QueryGenerationError):
    """A model gateway call failed."""

    def __init__(
        self,
        kind: GatewayErrorKind,
        message: str,
        model: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.model = model
        super().__init__(f"{kind.value}: {message}" + (f" (model={model})" if model else ""))


class ResponseParseError(QueryGenerationError):
    """Model output contained no interpretable SQL."""

    def __init__(self, message: str, raw_content: str = "") -> None:
        self.raw_content = raw_content
        super().__init__(message)


class SQLValidationError(QueryGenerationError):
    """SQL was rejected by the structural/safety validator."""

    def __init__(self, sql: str, reasons: list[str]) -> None:
        self.sql = sql
        self.reasons = list(reasons)
        super().__init__(f"SQL failed validation: {'; '.join(self.reasons)}")
