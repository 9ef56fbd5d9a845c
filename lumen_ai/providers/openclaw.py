"""
OpenClaw gateway client.

OpenClaw is a self-hosted agent gateway with an OpenAI-compatible
chat completions endpoint. Differences from the hosted providers:

- Bearer auth is sent only for a non-blank key.
- The agent can be chosen with the x-openclaw-agent-id header, taken
  from OPENCLAW_AGENT_ID or from a model named openclaw:<agent>.
- Gateways mount the endpoint at different paths. The configured URL is
  tried first, then the common layouts under the same root. Candidates
  answering 404 or 405 are skipped and the first one that works is
  remembered for later calls.
"""

import logging

from lumen_ai.cancellation import CancellationToken
from lumen_ai.errors import ProviderError
from lumen_ai.providers.base import (
    ChatOptions,
    ProviderStreamResult,
    TokenCallback,
)
from lumen_ai.providers.openai import OpenAICompatibleProvider
from lumen_ai.registry.models import AIProvider
from lumen_ai.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)

AGENT_HEADER = "x-openclaw-agent-id"
AGENT_MODEL_PREFIX = "openclaw:"

_ENDPOINT_SUFFIXES = (
    "/api/v1/chat/completions",
    "/v1/chat/completions",
    "/chat/completions",
)

_FALLBACK_STATUSES = (404, 405)


def candidate_endpoints(base_url: str) -> list[str]:
    """
    Endpoints to try for a configured OpenClaw URL, in order.

    The configured URL always comes first. The common layouts follow,
    appended to the gateway root: the URL minus a recognized endpoint
    suffix, or the URL itself when it has none.

    Args:
        base_url: A gateway root, a full chat completions URL or any
            custom endpoint path

    Returns:
        Unique URLs, the configured one first
    """
    url = base_url.strip().rstrip("/")
    root = url
    for suffix in _ENDPOINT_SUFFIXES:
        if url.endswith(suffix):
            root = url[: -len(suffix)]
            break

    candidates = [url]
    for suffix in ("/v1/chat/completions", "/chat/completions", "/api/v1/chat/completions"):
        endpoint = root + suffix
        if endpoint not in candidates:
            candidates.append(endpoint)
    return candidates


class OpenClawProvider(OpenAICompatibleProvider):
    provider = AIProvider.OPENCLAW
    include_usage = False

    def __init__(self, http_client, settings):
        super().__init__(http_client, settings)
        self._candidates = candidate_endpoints(settings.openclaw_base_url)
        self._resolved_endpoint: str | None = None

    @property
    def resolved_endpoint(self) -> str | None:
        return self._resolved_endpoint

    def agent_id(self, model: str) -> str | None:
        if self._settings.openclaw_agent_id:
            return self._settings.openclaw_agent_id.strip() or None
        if model.startswith(AGENT_MODEL_PREFIX):
            return model[len(AGENT_MODEL_PREFIX):].strip() or None
        return None

    def build_headers(self, api_key: str | None, model: str) -> dict[str, str]:
        headers = super().build_headers((api_key or "").strip() or None, model)
        agent = self.agent_id(model)
        if agent:
            headers[AGENT_HEADER] = agent
        return headers

    async def stream_chat(
        self,
        api_key: str | None,
        model: str,
        messages: list[ChatMessage],
        options: ChatOptions,
        on_token: TokenCallback,
        token: CancellationToken,
    ) -> ProviderStreamResult:
        headers = self.build_headers(api_key, model)
        body = self.build_body(model, messages, options)

        if self._resolved_endpoint is not None:
            return await self.stream_to(self._resolved_endpoint, headers, body, on_token, token)

        # The last candidate's error propagates as-is
        *fallbacks, final = self._candidates
        for endpoint in fallbacks:
            try:
                result = await self.stream_to(endpoint, headers, body, on_token, token)
            except ProviderError as e:
                if e.status not in _FALLBACK_STATUSES:
                    raise
                logger.info(f"OpenClaw endpoint {endpoint} returned {e.status}, trying next")
                continue
            return self._resolve(endpoint, result)

        result = await self.stream_to(final, headers, body, on_token, token)
        return self._resolve(final, result)

    def _resolve(self, endpoint: str, result: ProviderStreamResult) -> ProviderStreamResult:
        self._resolved_endpoint = endpoint
        logger.info(f"OpenClaw endpoint resolved to {endpoint}")
        return result
