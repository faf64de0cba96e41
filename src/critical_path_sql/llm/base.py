"""
Model Gateway Interface
=======================

Abstract interface for the model routing gateway, plus the bounded call
helper every caller goes through.
"""

import asyncio
import time
from abc import ABC, abstractmethod

from critical_path_sql.errors import GatewayError, GatewayErrorKind
from critical_path_sql.models import LLMRequest, LLMResponse
from observability.logging_config import get_logger
from observability.metrics import track_gateway_failure
from observability.tracing import get_tracer

logger = get_logger(__name__)
tracer = get_tracer(__name__)


class ModelGateway(ABC):
    """Dispatches prompts to model providers."""

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Generate a response for a request.

        Args:
            request: Prompt, task type and model preferences

        Returns:
            LLMResponse with generated content

        Raises:
            GatewayError: Typed gateway failure
        """
        pass


async def call_gateway(
    gateway: ModelGateway,
    request: LLMRequest,
    timeout_seconds: float,
) -> LLMResponse:
    """
    Call the gateway with a bounded timeout.

    A timed-out call surfaces as ``GatewayError(kind=TIMEOUT)``.
    """
    model = request.preferences.model
    with tracer.start_as_current_span("llm.generate") as span:
        span.set_attribute("llm.task_type", request.task_type)
        span.set_attribute("llm.model", model or "default")
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(gateway.generate(request), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            error = GatewayError(
                GatewayErrorKind.TIMEOUT,
                f"Gateway call exceeded {timeout_seconds}s",
                model=model,
            )
            span.set_attribute("error", True)
            track_gateway_failure(error.kind.value)
            logger.warning("gateway_timeout", model=model, timeout_seconds=timeout_seconds)
            raise error
        except GatewayError as error:
            span.set_attribute("error", True)
            span.set_attribute("error.kind", error.kind.value)
            track_gateway_failure(error.kind.value)
            logger.warning("gateway_error", model=model, kind=error.kind.value, message=error.message)
            raise

        span.set_attribute("llm.response_model", response.model)
        span.set_attribute("llm.total_tokens", response.usage.total_tokens)
        logger.debug(
            "gateway_response",
            model=response.model,
            total_tokens=response.usage.total_tokens,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response
