"""
Test Fixtures

Shared test data and helpers for the Lumen AI test suite.
Contains sample provider streams and a scripted provider client that
stands in for HTTP in dispatcher and service tests.
"""

import asyncio
import json
from types import SimpleNamespace

from lumen_ai.config import Settings
from lumen_ai.errors import ProviderError
from lumen_ai.providers.base import ChatUsage, ProviderClient, ProviderStreamResult
from lumen_ai.registry.models import AIProvider


# Sample OpenAI-format stream: two fragments, then usage, then [DONE]
OPENAI_STREAM = [
    {"choices": [{"delta": {"role": "assistant"}}]},
    {"choices": [{"delta": {"content": "Hello"}}]},
    {"choices": [{"delta": {"content": " world"}}]},
    {"choices": [], "usage": {"prompt_tokens": 12, "completion_tokens": 2, "total_tokens": 14}},
]

# Sample Anthropic Messages stream
ANTHROPIC_STREAM = [
    {
        "type": "message_start",
        "message": {"usage": {"input_tokens": 25, "output_tokens": 1}},
    },
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Bon"}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "jour"}},
    {"type": "content_block_stop", "index": 0},
    {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 9}},
    {"type": "message_stop"},
]


def sse_body(*payloads, terminator: bool = True) -> bytes:
    """Encode payloads (dicts or raw strings) as an SSE response body."""
    parts = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        parts.append(f"data: {data}\n\n")
    if terminator:
        parts.append("data: [DONE]\n\n")
    return "".join(parts).encode("utf-8")


async def chunked(*chunks: bytes):
    """Async byte stream yielding the given chunks."""
    for chunk in chunks:
        yield chunk


async def settle(rounds: int = 25) -> None:
    """Let scheduled tasks run up to their next real wait."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def provider_error(status: int, message: str = "boom", **kwargs) -> ProviderError:
    return ProviderError(status=status, message=message, **kwargs)


class ScriptedProvider(ProviderClient):
    """
    Provider client driven by a script instead of HTTP.

    Each call pops the next outcome: an exception is raised, anything
    else counts as success. When block is set, calls wait for release()
    before producing output.
    """

    def __init__(
        self,
        settings: Settings,
        tokens: list[str] | None = None,
        usage: ChatUsage | None = None,
        outcomes: list | None = None,
        block: bool = False,
        provider: AIProvider = AIProvider.OPENAI,
    ):
        super().__init__(http_client=None, settings=settings)
        self.provider = provider
        self.tokens = list(tokens if tokens is not None else ["Hello", " world"])
        self.usage = usage
        self.outcomes = list(outcomes or [])
        self.block = block
        self.calls: list[SimpleNamespace] = []
        self.active = 0
        self.max_active = 0
        self._release = asyncio.Event()

    def release(self) -> None:
        self._release.set()

    @property
    def started(self) -> list[str]:
        """Last message of each call, in start order."""
        return [call.messages[-1].content for call in self.calls]

    async def stream_chat(self, api_key, model, messages, options, on_token, token):
        self.calls.append(
            SimpleNamespace(api_key=api_key, model=model, messages=messages, options=options)
        )
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.block:
                await self._release.wait()
            outcome = self.outcomes.pop(0) if self.outcomes else None
            if isinstance(outcome, BaseException):
                raise outcome
            for fragment in self.tokens:
                on_token(fragment)
            return ProviderStreamResult(usage=self.usage)
        finally:
            self.active -= 1
