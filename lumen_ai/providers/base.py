"""
Provider Client Contract

Every provider exposes the same streaming call:

    result = await client.stream_chat(api_key, model, messages, options, on_token, token)

One POST with stream=true is made. Each text fragment from the response
is handed to on_token once, in arrival order, and the call returns the
usage reported by the provider (if any) once the stream ends.

Failures are raised as ProviderError with a human-readable message built
from the HTTP status and the provider's error body. Network failures are
reported with status 0.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from lumen_ai.cancellation import CancellationToken
from lumen_ai.config import Settings
from lumen_ai.errors import DecodeError, ProviderError
from lumen_ai.providers.sse import iter_sse_payloads
from lumen_ai.registry.models import AIProvider, PROVIDER_DISPLAY_NAMES
from lumen_ai.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]

# Error codes that mean "out of credit" rather than "slow down"
QUOTA_ERROR_CODES = frozenset(
    {
        "insufficient_quota",
        "quota_exceeded",
        "billing_hard_limit_reached",
        "insufficient_funds",
        "credit_balance_too_low",
    }
)


@dataclass
class ChatOptions:
    """
    Per-call sampling options.

    Attributes:
        max_tokens: Completion token limit, omitted from the body when None
        temperature: Sampling temperature
    """

    max_tokens: int | None = None
    temperature: float = 0.4


@dataclass
class ChatUsage:
    """Token usage as reported by the provider. Any field may be missing."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    @classmethod
    def from_openai(cls, data: dict[str, Any]) -> "ChatUsage":
        prompt = data.get("prompt_tokens")
        completion = data.get("completion_tokens")
        total = data.get("total_tokens")
        if total is None and prompt is not None and completion is not None:
            total = prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


@dataclass
class ProviderStreamResult:
    """Terminal value of one provider call."""

    usage: ChatUsage | None = None


def parse_json_payload(payload: str, provider_name: str) -> dict[str, Any]:
    """
    Parse one SSE payload as a JSON object.

    Raises:
        DecodeError: If the payload is not a JSON object
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeError(f"{provider_name} sent an unreadable stream event: {e}") from e
    if not isinstance(data, dict):
        raise DecodeError(f"{provider_name} sent an unexpected stream event")
    return data


def _parse_error_body(text: str) -> tuple[str | None, str | None]:
    """Extract (code or type, message) from a provider error body."""
    try:
        data = json.loads(text)
    except ValueError:
        return None, text.strip()[:300] or None

    if not isinstance(data, dict):
        return None, None

    error = data.get("error")
    if isinstance(error, dict):
        code = error.get("code") or error.get("type")
        message = error.get("message")
    else:
        code = data.get("code") or data.get("type")
        message = data.get("message") or (error if isinstance(error, str) else None)

    return (str(code) if code else None), (str(message) if message else None)


class ProviderClient(ABC):
    """
    Base class for streaming provider clients.

    Subclasses build the request and interpret payloads. The base class
    owns the HTTP exchange, error mapping and SSE decoding.
    """

    provider: AIProvider

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings):
        self._http = http_client
        self._settings = settings

    @property
    def display_name(self) -> str:
        return PROVIDER_DISPLAY_NAMES[self.provider]

    @abstractmethod
    async def stream_chat(
        self,
        api_key: str | None,
        model: str,
        messages: list[ChatMessage],
        options: ChatOptions,
        on_token: TokenCallback,
        token: CancellationToken,
    ) -> ProviderStreamResult:
        """Stream a chat completion, calling on_token for each fragment."""

    def _error_from_response(self, status: int, body: str) -> ProviderError:
        error_type, server_message = _parse_error_body(body)
        name = self.display_name
        quota_exceeded = False

        if status == 401:
            message = f"{name} rejected the API key. Check the key in settings."
        elif status == 429:
            lowered = (error_type or "").lower()
            quota_exceeded = lowered in QUOTA_ERROR_CODES or "quota" in lowered
            if quota_exceeded:
                message = f"{name} quota exceeded. Check your plan and billing details."
            else:
                message = f"{name} rate limit reached. Try again in a moment."
        elif status >= 500:
            message = f"{name} is temporarily unavailable ({status})."
        else:
            message = f"{name} request failed ({status})"
            if server_message:
                message = f"{message}: {server_message}"

        return ProviderError(
            status=status,
            message=message,
            error_type=error_type,
            quota_exceeded=quota_exceeded,
        )

    async def _post_stream(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        token: CancellationToken,
        on_payload: Callable[[str], bool],
    ) -> None:
        """
        POST body and feed each SSE payload to on_payload.

        on_payload returns True to stop reading early.

        Raises:
            ProviderError: On a non-2xx status or a network failure
        """
        try:
            async with self._http.stream("POST", url, headers=headers, json=body) as response:
                if not response.is_success:
                    raw = await response.aread()
                    error = self._error_from_response(
                        response.status_code, raw.decode("utf-8", errors="replace")
                    )
                    logger.debug(f"{self.display_name} returned {response.status_code}: {error}")
                    raise error

                async for payload in iter_sse_payloads(response.aiter_bytes(), token):
                    if on_payload(payload):
                        break
        except httpx.TransportError as e:
            raise ProviderError(
                status=0,
                message=f"Could not reach {self.display_name}: {e.__class__.__name__}",
            ) from e
