"""
Schemas module: Pydantic request/response and event models.

This module provides validated data models for the Lumen AI API:
- Chat request and stream event models
- Persisted settings and usage models
- Config, connection test, error and health response models

Example usage:
    from lumen_ai.schemas import ChatRequest, ChatMessage

    request = ChatRequest(
        conversation_id="tab-1",
        messages=[ChatMessage(role="user", content="Hello")],
    )
"""

from lumen_ai.schemas.chat import (
    DEFAULT_SYSTEM_PROMPT,
    # Enums
    ChatFeature,
    ChatRole,
    # Request models
    ChatMessage,
    ChatRequest,
    # Settings & usage
    AISettings,
    AIUsage,
    StoredConfig,
    # Events
    RequestUsage,
    StreamEvent,
    # Config models
    BudgetStatus,
    CancelChatResponse,
    ConfigResponse,
    ConnectionTestRequest,
    ConnectionTestResponse,
    SaveConfigRequest,
    SaveConfigResponse,
    StartChatResponse,
    # Error models
    ErrorCodes,
    ErrorDetail,
    ErrorResponse,
    # Health models
    ComponentHealth,
    HealthResponse,
)

# Re-export AIProvider from registry for convenience
from lumen_ai.registry.models import AIProvider

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    # Enums
    "AIProvider",
    "ChatFeature",
    "ChatRole",
    # Request models
    "ChatMessage",
    "ChatRequest",
    # Settings & usage
    "AISettings",
    "AIUsage",
    "StoredConfig",
    # Events
    "RequestUsage",
    "StreamEvent",
    # Config models
    "BudgetStatus",
    "CancelChatResponse",
    "ConfigResponse",
    "ConnectionTestRequest",
    "ConnectionTestResponse",
    "SaveConfigRequest",
    "SaveConfigResponse",
    "StartChatResponse",
    # Error models
    "ErrorCodes",
    "ErrorDetail",
    "ErrorResponse",
    # Health models
    "ComponentHealth",
    "HealthResponse",
]
