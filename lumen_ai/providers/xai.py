"""xAI (Grok) client. Same wire format as OpenAI."""

from lumen_ai.providers.openai import OpenAICompatibleProvider
from lumen_ai.registry.models import AIProvider


class XAIProvider(OpenAICompatibleProvider):
    provider = AIProvider.XAI
    endpoint = "https://api.x.ai/v1/chat/completions"
