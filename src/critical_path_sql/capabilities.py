"""
Model Capabilities
==================

Static registry mapping model identifiers to a capability class and the
generation profile used for that class.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ModelCapabilityClass(Enum):
    """How a model should be prompted and how its answers are encoded."""

    SQL_SPECIALIZED = "sql-specialized"
    GENERAL_PURPOSE = "general-purpose"


@dataclass(frozen=True)
class ModelProfile:
    """Per-class generation settings."""

    capability: ModelCapabilityClass
    context_length: int
    max_tokens: int
    temperature: float = 0.0
    response_format: str = "json"

    @property
    def is_sql_specialized(self) -> bool:
        return self.capability is ModelCapabilityClass.SQL_SPECIALIZED


SQL_MODEL_PROFILE = ModelProfile(
    capability=ModelCapabilityClass.SQL_SPECIALIZED,
    context_length=8192,
    max_tokens=2048,
    response_format="sql",
)

DEFAULT_PROFILE = ModelProfile(
    capability=ModelCapabilityClass.GENERAL_PURPOSE,
    context_length=4096,
    max_tokens=2048,
)

DEFAULT_REGISTRY_ENTRIES: list[tuple[tuple[str, ...], ModelProfile]] = [
    (("sqlcoder", "codellama", "starcoder"), SQL_MODEL_PROFILE),
    (
        ("gpt-4",),
        ModelProfile(ModelCapabilityClass.GENERAL_PURPOSE, context_length=128000, max_tokens=4096),
    ),
    (
        ("gpt-3.5",),
        ModelProfile(ModelCapabilityClass.GENERAL_PURPOSE, context_length=16384, max_tokens=4096),
    ),
    (
        ("claude",),
        ModelProfile(ModelCapabilityClass.GENERAL_PURPOSE, context_length=200000, max_tokens=4096),
    ),
]


class CapabilityRegistry:
    """Resolves a model identifier to its profile by substring match."""

    def __init__(
        self,
        entries: Optional[list[tuple[tuple[str, ...], ModelProfile]]] = None,
        default: ModelProfile = DEFAULT_PROFILE,
    ) -> None:
        self.entries = entries if entries is not None else DEFAULT_REGISTRY_ENTRIES
        self.default = default

    def resolve(self, model: Optional[str]) -> ModelProfile:
        if not model:
            return self.default
        lowered = model.lower()
        for patterns, profile in self.entries:
            if any(pattern in lowered for pattern in patterns):
                return profile
        return self.default

    def capability_of(self, model: Optional[str]) -> ModelCapabilityClass:
        return self.resolve(model).capability


def is_sql_specialized_model(model: Optional[str]) -> bool:
    """Check if a model identifier names a SQL-specialized model."""
    return CapabilityRegistry().resolve(model).is_sql_specialized
