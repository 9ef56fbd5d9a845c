"""
Anthropic Messages API client.

Differences from the OpenAI wire format:
- System messages go in the top-level "system" field
- Message content is a list of text blocks
- max_tokens is required (defaults to ANTHROPIC_DEFAULT_MAX_TOKENS)
- Text arrives in content_block_delta events; prompt token usage in
  message_start, completion token usage in message_delta
- Failures mid-stream arrive as "error" events
"""

import logging
from typing import Any

from lumen_ai.cancellation import CancellationToken
from lumen_ai.errors import ProviderError
from lumen_ai.providers.base import (
    ChatOptions,
    ChatUsage,
    ProviderClient,
    ProviderStreamResult,
    TokenCallback,
    parse_json_payload,
)
from lumen_ai.registry.models import AIProvider
from lumen_ai.schemas.chat import ChatMessage, ChatRole

logger = logging.getLogger(__name__)


class AnthropicProvider(ProviderClient):
    provider = AIProvider.ANTHROPIC
    endpoint = "https://api.anthropic.com/v1/messages"

    def build_body(
        self, model: str, messages: list[ChatMessage], options: ChatOptions
    ) -> dict[str, Any]:
        system = "\n\n".join(
            m.content for m in messages if m.role == ChatRole.SYSTEM and m.content.strip()
        )
        chat_messages = [
            {
                "role": "assistant" if m.role == ChatRole.ASSISTANT else "user",
                "content": [{"type": "text", "text": m.content}],
            }
            for m in messages
            if m.role != ChatRole.SYSTEM
        ]

        body: dict[str, Any] = {
            "model": model,
            "stream": True,
            "messages": chat_messages,
            "max_tokens": options.max_tokens or self._settings.anthropic_default_max_tokens,
            "temperature": options.temperature,
        }
        if system:
            body["system"] = system
        return body

    async def stream_chat(
        self,
        api_key: str | None,
        model: str,
        messages: list[ChatMessage],
        options: ChatOptions,
        on_token: TokenCallback,
        token: CancellationToken,
    ) -> ProviderStreamResult:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": api_key or "",
            "anthropic-version": self._settings.anthropic_version,
        }
        body = self.build_body(model, messages, options)

        prompt_tokens: int | None = None
        completion_tokens: int | None = None

        def _handle(payload: str) -> bool:
            nonlocal prompt_tokens, completion_tokens

            if payload == "[DONE]":
                return True

            data = parse_json_payload(payload, self.display_name)
            event_type = data.get("type")

            if event_type == "content_block_delta":
                text = (data.get("delta") or {}).get("text")
                if text:
                    on_token(text)
            elif event_type == "message_start":
                usage = (data.get("message") or {}).get("usage") or {}
                prompt_tokens = usage.get("input_tokens", prompt_tokens)
                completion_tokens = usage.get("output_tokens", completion_tokens)
            elif event_type == "message_delta":
                usage = data.get("usage") or {}
                prompt_tokens = usage.get("input_tokens", prompt_tokens)
                completion_tokens = usage.get("output_tokens", completion_tokens)
            elif event_type == "message_stop":
                return True
            elif event_type == "error":
                error = data.get("error") or {}
                error_type = error.get("type")
                raise ProviderError(
                    status=529 if error_type == "overloaded_error" else 500,
                    message=f"{self.display_name} stream error: "
                    f"{error.get('message') or error_type or 'unknown error'}",
                    error_type=error_type,
                )
            return False

        await self._post_stream(self.endpoint, headers, body, token, _handle)

        if prompt_tokens is None and completion_tokens is None:
            return ProviderStreamResult(usage=None)
        return ProviderStreamResult(
            usage=ChatUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=(prompt_tokens or 0) + (completion_tokens or 0),
            )
        )
