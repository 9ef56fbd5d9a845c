"""
Registry module: Model catalogue and pricing.

This module contains:
- models.py: Per-provider model lists with per-1M-token prices

Public API:
- AIProvider: Enum for inference providers
- PROVIDER_DISPLAY_NAMES: Human-readable provider names
- ModelMetadata: Pydantic model for model pricing
- ModelRegistry: Central registry class
- get_model_registry: Singleton accessor function
"""

from lumen_ai.registry.models import (
    AIProvider,
    ModelMetadata,
    ModelRegistry,
    PROVIDER_DISPLAY_NAMES,
    get_model_registry,
)

__all__ = [
    "AIProvider",
    "PROVIDER_DISPLAY_NAMES",
    "ModelMetadata",
    "ModelRegistry",
    "get_model_registry",
]
