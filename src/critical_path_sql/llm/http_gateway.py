"""
HTTP Gateway Client
===================

Client for an OpenAI-compatible chat-completions gateway (Portkey, LM Studio,
vLLM and similar). HTTP and transport failures map onto ``GatewayErrorKind``.
"""

import time
from typing import Any, Optional

import httpx

from critical_path_sql.errors import GatewayError, GatewayErrorKind
from critical_path_sql.llm.base import ModelGateway
from critical_path_sql.models import LLMRequest, LLMResponse, ResponseMetadata, TokenUsage


def _error_kind_for_status(status_code: int, body: str) -> GatewayErrorKind:
    lowered = body.lower()
    if status_code in (401, 403):
        return GatewayErrorKind.AUTHENTICATION_FAILED
    if status_code == 429:
        return GatewayErrorKind.RATE_LIMIT_EXCEEDED
    if status_code == 413 or "context_length" in lowered or "context length" in lowered:
        return GatewayErrorKind.CONTEXT_TOO_LARGE
    if status_code in (404, 502, 503) or ("model" in lowered and "not found" in lowered):
        return GatewayErrorKind.MODEL_UNAVAILABLE
    if status_code in (408, 504):
        return GatewayErrorKind.TIMEOUT
    if status_code == 400:
        return GatewayErrorKind.CONFIGURATION_ERROR
    return GatewayErrorKind.NETWORK_ERROR


class HTTPModelGateway(ModelGateway):
    """Gateway backed by an OpenAI-compatible HTTP endpoint."""

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        timeout_seconds: float = 30.0,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.default_model = default_model
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def __aenter__(self) -> "HTTPModelGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _payload(self, request: LLMRequest, model: Optional[str]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if model:
            payload["model"] = model
        if request.preferences.max_tokens is not None:
            payload["max_tokens"] = request.preferences.max_tokens
        if request.preferences.temperature is not None:
            payload["temperature"] = request.preferences.temperature
        return payload

    async def generate(self, request: LLMRequest) -> LLMResponse:
        model = request.preferences.model or self.default_model
        if not self.base_url:
            raise GatewayError(
                GatewayErrorKind.CONFIGURATION_ERROR,
                "No gateway URL configured",
                model=model,
            )

        started = time.perf_counter()
        try:
            response = await self.client.post(
                f"{self.base_url}/chat/completions",
                json=self._payload(request, model),
                headers=self.headers,
            )
        except httpx.TimeoutException as e:
            raise GatewayError(GatewayErrorKind.TIMEOUT, str(e) or "Gateway request timed out", model=model) from e
        except httpx.HTTPError as e:
            raise GatewayError(GatewayErrorKind.NETWORK_ERROR, str(e) or type(e).__name__, model=model) from e
        latency_ms = (time.perf_counter() - started) * 1000

        if response.status_code >= 400:
            raise GatewayError(
                _error_kind_for_status(response.status_code, response.text),
                f"HTTP {response.status_code}: {response.text}",
                model=model,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise GatewayError(
                GatewayErrorKind.NETWORK_ERROR,
                f"Malformed gateway response: {response.text[:200]}",
                model=model,
            ) from e

        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("prompt_tokens", 0))
        completion_tokens = int(usage.get("completion_tokens", 0))
        return LLMResponse(
            content=content,
            model=data.get("model") or model or "unknown",
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=int(usage.get("total_tokens", prompt_tokens + completion_tokens)),
            ),
            metadata=ResponseMetadata(
                latency_ms=latency_ms,
                retry_count=int(response.headers.get("x-portkey-retry-attempt-count", 0)),
                cached=response.headers.get("x-portkey-cache-status", "").upper() == "HIT",
            ),
        )
