"""
OpenRouter client.

OpenAI wire format, plus the HTTP-Referer and X-Title attribution
headers OpenRouter uses to identify the calling application.
"""

from lumen_ai.providers.openai import OpenAICompatibleProvider
from lumen_ai.registry.models import AIProvider


class OpenRouterProvider(OpenAICompatibleProvider):
    provider = AIProvider.OPENROUTER
    endpoint = "https://openrouter.ai/api/v1/chat/completions"

    def build_headers(self, api_key: str | None, model: str) -> dict[str, str]:
        headers = super().build_headers(api_key, model)
        headers["HTTP-Referer"] = self._settings.openrouter_referer
        headers["X-Title"] = self._settings.openrouter_title
        return headers
