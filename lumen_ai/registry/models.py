"""
Model Registry

This module defines the models Lumen AI knows about, grouped by provider:
- OpenAI (GPT-5, GPT-4.1, GPT-4o, o-series)
- Anthropic (Claude Opus, Sonnet, Haiku)
- xAI (Grok)
- OpenRouter (hosted open models, some of them free)
- OpenClaw (self-hosted agent gateway, no published pricing)

Each model entry includes:
- Model ID and provider
- Cost per 1M tokens (prompt/completion)
- Whether it is part of the provider's default model list

The registry is the only source of prices. Models missing from it cost
nothing, which is also how self-hosted OpenClaw models are treated.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class AIProvider(str, Enum):
    """Supported inference providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    XAI = "xai"
    OPENROUTER = "openrouter"
    OPENCLAW = "openclaw"


PROVIDER_DISPLAY_NAMES: dict[AIProvider, str] = {
    AIProvider.OPENAI: "OpenAI",
    AIProvider.ANTHROPIC: "Anthropic",
    AIProvider.XAI: "xAI",
    AIProvider.OPENROUTER: "OpenRouter",
    AIProvider.OPENCLAW: "OpenClaw",
}


class ModelMetadata(BaseModel):
    """
    Metadata for a registered model.

    This class holds all information needed to:
    1. Offer the model in the provider's model list
    2. Estimate the cost of a finished request
    """

    model_config = ConfigDict(protected_namespaces=())

    model_id: str = Field(
        ...,
        description="Model name used in provider API calls",
    )

    provider: AIProvider = Field(
        ...,
        description="Provider serving this model",
    )

    cost_per_1m_prompt_tokens: float = Field(
        default=0.0,
        ge=0,
        description="Cost in USD per 1 million prompt tokens",
    )

    cost_per_1m_completion_tokens: float = Field(
        default=0.0,
        ge=0,
        description="Cost in USD per 1 million completion tokens",
    )

    default: bool = Field(
        default=False,
        description="Listed in the provider's default model list",
    )

    @property
    def is_free(self) -> bool:
        return self.cost_per_1m_prompt_tokens == 0 and self.cost_per_1m_completion_tokens == 0


class ModelRegistry:
    """
    Central registry of all known models.

    Model definitions are loaded once and reused throughout the
    application lifecycle. Registration order is significant: a
    provider's default models are listed in the order they were
    registered, and the first one is used for connection tests.

    Attributes:
        _models: Dictionary mapping model IDs to their metadata
    """

    def __init__(self) -> None:
        self._models: dict[str, ModelMetadata] = {}
        self._initialize_models()

    def _initialize_models(self) -> None:
        """Register all known models with their pricing."""

        # OpenAI
        self._add(AIProvider.OPENAI, "gpt-5", 5.0, 15.0, default=True)
        self._add(AIProvider.OPENAI, "gpt-5-mini", 0.25, 1.2, default=True)
        self._add(AIProvider.OPENAI, "gpt-4.1", 2.0, 8.0, default=True)
        self._add(AIProvider.OPENAI, "o3", 2.0, 8.0, default=True)
        self._add(AIProvider.OPENAI, "o4-mini", 0.4, 1.6, default=True)
        self._add(AIProvider.OPENAI, "gpt-4o", 5.0, 15.0, default=True)
        self._add(AIProvider.OPENAI, "gpt-4o-mini", 0.15, 0.6)
        self._add(AIProvider.OPENAI, "gpt-4.1-mini", 0.4, 1.6)
        self._add(AIProvider.OPENAI, "o3-mini", 1.1, 4.4)

        # Anthropic (dated aliases share the undated price)
        self._add(AIProvider.ANTHROPIC, "claude-opus-4-1", 15.0, 75.0, default=True)
        self._add(AIProvider.ANTHROPIC, "claude-sonnet-4", 3.0, 15.0, default=True)
        self._add(AIProvider.ANTHROPIC, "claude-opus-4-0", 15.0, 75.0, default=True)
        self._add(AIProvider.ANTHROPIC, "claude-haiku-4-5", 1.0, 5.0, default=True)
        self._add(AIProvider.ANTHROPIC, "claude-sonnet-4-20250514", 3.0, 15.0)
        self._add(AIProvider.ANTHROPIC, "claude-opus-4-0-20250514", 15.0, 75.0)
        self._add(AIProvider.ANTHROPIC, "claude-haiku-4-5-20251001", 1.0, 5.0)

        # xAI
        self._add(AIProvider.XAI, "grok-4", 6.0, 18.0, default=True)
        self._add(AIProvider.XAI, "grok-3", 5.0, 15.0, default=True)
        self._add(AIProvider.XAI, "grok-3-mini", 0.3, 0.7, default=True)

        # OpenRouter
        self._add(AIProvider.OPENROUTER, "moonshotai/kimi-k2:free", 0.0, 0.0, default=True)
        self._add(AIProvider.OPENROUTER, "qwen/qwen3-coder:free", 0.0, 0.0, default=True)
        self._add(
            AIProvider.OPENROUTER, "qwen/qwen-2.5-72b-instruct:free", 0.0, 0.0, default=True
        )
        self._add(AIProvider.OPENROUTER, "moonshotai/kimi-k2", 1.0, 3.0, default=True)

        # OpenClaw: self-hosted, unpriced
        self._add(AIProvider.OPENCLAW, "openclaw:main", default=True)
        self._add(AIProvider.OPENCLAW, "openclaw:reasoning", default=True)
        self._add(AIProvider.OPENCLAW, "qwen3-coder", default=True)

    def _add(
        self,
        provider: AIProvider,
        model_id: str,
        prompt_per_1m: float = 0.0,
        completion_per_1m: float = 0.0,
        default: bool = False,
    ) -> None:
        self._register(
            ModelMetadata(
                model_id=model_id,
                provider=provider,
                cost_per_1m_prompt_tokens=prompt_per_1m,
                cost_per_1m_completion_tokens=completion_per_1m,
                default=default,
            )
        )

    def _register(self, model: ModelMetadata) -> None:
        """Register a model in the registry."""
        self._models[model.model_id] = model

    def get_model(self, model_id: str) -> ModelMetadata | None:
        """
        Retrieve model metadata by ID.

        Args:
            model_id: The model name as sent to the provider

        Returns:
            ModelMetadata if found, None otherwise
        """
        return self._models.get(model_id)

    def list_models(self, provider: AIProvider | None = None) -> list[ModelMetadata]:
        """
        Get all registered models, optionally for a single provider.

        Returns:
            List of ModelMetadata in registration order
        """
        models = list(self._models.values())
        if provider is not None:
            models = [m for m in models if m.provider == provider]
        return models

    def available_models(self, provider: AIProvider) -> list[str]:
        """
        Default model list offered for a provider.

        Args:
            provider: The provider to list

        Returns:
            Model IDs in display order
        """
        return [m.model_id for m in self.list_models(provider) if m.default]

    def get_model_ids(self) -> list[str]:
        """Get list of all registered model IDs."""
        return list(self._models.keys())


_registry_instance: ModelRegistry | None = None


def get_model_registry() -> ModelRegistry:
    """
    Get the singleton model registry instance.

    Returns:
        The global ModelRegistry instance
    """
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = ModelRegistry()
    return _registry_instance
