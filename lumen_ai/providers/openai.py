"""
OpenAI-compatible chat completions client.

OpenAI, xAI, OpenRouter and OpenClaw all speak this wire format:
token fragments arrive as choices[0].delta.content, the stream ends
with a literal [DONE] payload, and usage (when requested through
stream_options.include_usage) arrives in a late event.
"""

import logging
from typing import Any

from lumen_ai.cancellation import CancellationToken
from lumen_ai.providers.base import (
    ChatOptions,
    ChatUsage,
    ProviderClient,
    ProviderStreamResult,
    TokenCallback,
    parse_json_payload,
)
from lumen_ai.registry.models import AIProvider
from lumen_ai.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class OpenAICompatibleProvider(ProviderClient):
    """Shared streaming logic for OpenAI-shaped endpoints."""

    endpoint: str = ""
    include_usage: bool = True

    def build_headers(self, api_key: str | None, model: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def build_body(
        self, model: str, messages: list[ChatMessage], options: ChatOptions
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": model,
            "stream": True,
            "messages": [m.model_dump(mode="json") for m in messages],
            "temperature": options.temperature,
        }
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        if self.include_usage:
            body["stream_options"] = {"include_usage": True}
        return body

    async def stream_to(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        on_token: TokenCallback,
        token: CancellationToken,
    ) -> ProviderStreamResult:
        """Run one streamed request against url and collect usage."""
        result = ProviderStreamResult()

        def _handle(payload: str) -> bool:
            if payload == DONE_SENTINEL:
                return True

            data = parse_json_payload(payload, self.display_name)

            choices = data.get("choices") or []
            if choices and isinstance(choices[0], dict):
                delta = choices[0].get("delta") or {}
                content = delta.get("content")
                if content:
                    on_token(content)

            usage = data.get("usage")
            if isinstance(usage, dict):
                result.usage = ChatUsage.from_openai(usage)
            return False

        await self._post_stream(url, headers, body, token, _handle)
        return result

    async def stream_chat(
        self,
        api_key: str | None,
        model: str,
        messages: list[ChatMessage],
        options: ChatOptions,
        on_token: TokenCallback,
        token: CancellationToken,
    ) -> ProviderStreamResult:
        return await self.stream_to(
            self.endpoint,
            self.build_headers(api_key, model),
            self.build_body(model, messages, options),
            on_token,
            token,
        )


class OpenAIProvider(OpenAICompatibleProvider):
    provider = AIProvider.OPENAI
    endpoint = "https://api.openai.com/v1/chat/completions"
