"""
Providers module: Streaming clients for each supported AI provider.

This module contains:
- base.py: Shared contract, usage types and HTTP error mapping
- sse.py: Incremental server-sent events decoder
- openai.py, xai.py, openrouter.py, openclaw.py: OpenAI-compatible clients
- anthropic.py: Anthropic Messages API client

All clients share one httpx.AsyncClient owned by ProviderClients.
"""

import logging

import httpx

from lumen_ai.config import Settings, get_settings
from lumen_ai.providers.anthropic import AnthropicProvider
from lumen_ai.providers.base import (
    ChatOptions,
    ChatUsage,
    ProviderClient,
    ProviderStreamResult,
    TokenCallback,
)
from lumen_ai.providers.openai import OpenAIProvider
from lumen_ai.providers.openclaw import OpenClawProvider
from lumen_ai.providers.openrouter import OpenRouterProvider
from lumen_ai.providers.sse import SSEDecoder, iter_sse_payloads
from lumen_ai.providers.xai import XAIProvider
from lumen_ai.registry.models import AIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[AIProvider, type[ProviderClient]] = {
    AIProvider.OPENAI: OpenAIProvider,
    AIProvider.ANTHROPIC: AnthropicProvider,
    AIProvider.XAI: XAIProvider,
    AIProvider.OPENROUTER: OpenRouterProvider,
    AIProvider.OPENCLAW: OpenClawProvider,
}


class ProviderClients:
    """
    Lazy-initialized provider clients.

    Clients are created on first use and share a single
    httpx.AsyncClient, so connections are pooled across providers.

    Args:
        http_client: Shared HTTP client. Created from settings when None.
        settings: Application settings. Uses the global settings when None.
        overrides: Ready-made clients to use instead of the defaults
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
        overrides: dict[AIProvider, ProviderClient] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._owns_http = http_client is None
        self._http = http_client
        self._clients: dict[AIProvider, ProviderClient] = dict(overrides or {})

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self._settings.request_timeout_seconds,
                    connect=self._settings.connect_timeout_seconds,
                )
            )
            logger.debug("Initialized shared HTTP client")
        return self._http

    def get(self, provider: AIProvider | str) -> ProviderClient:
        """
        Get the client for a provider (lazy initialization).

        Args:
            provider: Provider enum or its string value

        Returns:
            The provider's client
        """
        provider = AIProvider(provider)
        client = self._clients.get(provider)
        if client is None:
            client = PROVIDER_CLASSES[provider](self.http, self._settings)
            self._clients[provider] = client
            logger.debug(f"Initialized {client.display_name} client")
        return client

    async def aclose(self) -> None:
        """Close the shared HTTP client if this instance created it."""
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None


# Global client instance (singleton pattern)
_clients: ProviderClients | None = None


def get_clients() -> ProviderClients:
    """
    Get the global provider clients instance.

    Returns:
        The singleton ProviderClients instance.
    """
    global _clients
    if _clients is None:
        _clients = ProviderClients()
    return _clients


__all__ = [
    "AIProvider",
    "AnthropicProvider",
    "ChatOptions",
    "ChatUsage",
    "OpenAIProvider",
    "OpenClawProvider",
    "OpenRouterProvider",
    "PROVIDER_CLASSES",
    "ProviderClient",
    "ProviderClients",
    "ProviderStreamResult",
    "SSEDecoder",
    "TokenCallback",
    "XAIProvider",
    "get_clients",
    "iter_sse_payloads",
]
