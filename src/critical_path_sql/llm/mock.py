"""
Mock Gateway
============

Scripted gateway for tests and offline demos.
"""

import asyncio
from typing import Optional, Union

from critical_path_sql.llm.base import ModelGateway
from critical_path_sql.models import LLMRequest, LLMResponse, TokenUsage

ScriptedReply = Union[str, Exception]


class MockGateway(ModelGateway):
    """
    Gateway that replays canned responses.

    Responses are keyed by prompt substrings; each key maps to a list of
    replies returned in sequence (the last one repeats). A reply that is an
    exception instance is raised instead of returned.
    """

    def __init__(
        self,
        responses: Optional[dict[str, list[ScriptedReply]]] = None,
        default: ScriptedReply = "SELECT * FROM unknown_table",
        model: str = "mock-llm-v1",
        delay_seconds: float = 0.0,
    ) -> None:
        self.responses = responses or {}
        self.default = default
        self.model = model
        self.delay_seconds = delay_seconds
        self.call_counts: dict[str, int] = {}
        self.requests: list[LLMRequest] = []

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        reply = self.default
        for key, replies in self.responses.items():
            if key.lower() in request.prompt.lower():
                count = self.call_counts.get(key, 0)
                self.call_counts[key] = count + 1
                reply = replies[min(count, len(replies) - 1)]
                break

        if isinstance(reply, Exception):
            raise reply

        prompt_tokens = len(request.prompt.split())
        completion_tokens = len(reply.split())
        return LLMResponse(
            content=reply,
            model=request.preferences.model or self.model,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    def reset(self) -> None:
        """Reset call counts and recorded requests."""
        self.call_counts = {}
        self.requests = []
