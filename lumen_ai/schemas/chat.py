"""
Pydantic Schemas for the Chat API

This module defines the request, response and event models for Lumen AI:
- ChatRequest: Conversation messages with per-request overrides
- AISettings / AIUsage: Persisted provider settings and monthly usage
- StreamEvent: Token, queue and completion events delivered to callers
- Config, connection test, error and health check schemas

All schemas follow Pydantic v2 patterns with field validation and
OpenAPI documentation support.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lumen_ai.registry.models import AIProvider


DEFAULT_SYSTEM_PROMPT = (
    "You are Lumen AI, a helpful browser assistant. Be concise and direct."
)


# =============================================================================
# ENUMERATIONS
# =============================================================================


class ChatRole(str, Enum):
    """Author of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatFeature(str, Enum):
    """
    Browser feature a request originates from.

    Used as the key of the per-feature cost breakdown in the usage ledger.
    """

    CHAT = "chat"
    URL_BAR = "url_bar"
    SUMMARY = "summary"
    TAB_INTELLIGENCE = "tab_intelligence"
    CONTEXT_MENU = "context_menu"
    TAB_SEARCH = "tab_search"


# =============================================================================
# REQUEST MODELS
# =============================================================================


class ChatMessage(BaseModel):
    """A single conversation turn. Immutable once sent."""

    model_config = ConfigDict(frozen=True)

    role: ChatRole = Field(..., description="Message author")
    content: str = Field(..., description="Message text")


class ChatRequest(BaseModel):
    """
    Request body for starting a streamed chat completion.

    The provider and model default to the saved settings and can be
    overridden per request.
    """

    conversation_id: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Caller-side conversation identifier",
    )

    messages: list[ChatMessage] = Field(
        ...,
        min_length=1,
        description="Conversation so far, oldest first",
    )

    max_tokens: int | None = Field(
        default=None,
        gt=0,
        description="Upper bound on completion tokens",
    )

    temperature: float | None = Field(
        default=None,
        ge=0.0,
        le=2.0,
        description="Sampling temperature (defaults to 0.4)",
    )

    feature: ChatFeature | None = Field(
        default=None,
        description="Originating feature, used for cost attribution",
    )

    provider_override: AIProvider | None = Field(
        default=None,
        description="Use this provider instead of the configured one",
    )

    model_override: str | None = Field(
        default=None,
        max_length=200,
        description="Use this model instead of the configured one",
    )

    model_config = ConfigDict(
        protected_namespaces=(),
        json_schema_extra={
            "examples": [
                {
                    "conversation_id": "tab-42",
                    "messages": [
                        {"role": "user", "content": "Summarize this page in one line."}
                    ],
                    "feature": "summary",
                }
            ]
        }
    )


# =============================================================================
# SETTINGS & USAGE MODELS
# =============================================================================


class AISettings(BaseModel):
    """User-facing AI settings persisted in the settings store."""

    provider: AIProvider = Field(
        default=AIProvider.OPENAI,
        description="Provider used when a request has no override",
    )

    model: str = Field(
        default="gpt-4o-mini",
        min_length=1,
        description="Model used when a request has no override",
    )

    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="Prepended as a system message when the request has none",
    )

    monthly_budget_usd: float = Field(
        default=20.0,
        gt=0.0,
        description="Monthly spend cap in USD",
    )

    @field_validator("model")
    @classmethod
    def strip_model(cls, v: str) -> str:
        """Reject blank model names."""
        v = v.strip()
        if not v:
            raise ValueError("model cannot be blank")
        return v


class AIUsage(BaseModel):
    """
    Token and cost totals for one calendar month (UTC).

    estimated_cost_usd equals the sum of daily and the sum of
    feature_costs, to 4 decimal places.
    """

    period_key: str = Field(..., description="Month in YYYY-MM form")
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    estimated_cost_usd: float = Field(default=0.0, ge=0.0)
    daily: dict[str, float] = Field(
        default_factory=dict,
        description="Cost per UTC day (YYYY-MM-DD)",
    )
    feature_costs: dict[str, float] = Field(
        default_factory=dict,
        description="Cost per originating feature",
    )


class StoredConfig(BaseModel):
    """Everything the settings store keeps on disk."""

    settings: AISettings = Field(default_factory=AISettings)
    usage: AIUsage | None = None
    usage_history: dict[str, AIUsage] = Field(
        default_factory=dict,
        description="Closed-out months keyed by period_key",
    )


# =============================================================================
# STREAM EVENTS
# =============================================================================


class RequestUsage(BaseModel):
    """Token usage reported by the provider for one request."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class StreamEvent(BaseModel):
    """
    Event delivered to the caller for a request.

    Each request produces zero or more token events, at most one queued
    event, and exactly one event with done=True.
    """

    request_id: str
    token: str | None = None
    done: bool = False
    error: str | None = None
    error_code: str | None = None
    canceled: bool | None = None
    usage: AIUsage | None = None
    request_usage: RequestUsage | None = None
    estimated_cost_usd: float | None = None
    queued: bool | None = None
    message: str | None = None
    budget_reached: bool | None = None
    budget_warning: bool | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"request_id": "4f1c", "token": "Hello", "done": False},
                {
                    "request_id": "4f1c",
                    "done": True,
                    "estimated_cost_usd": 0.000125,
                    "budget_reached": False,
                    "budget_warning": False,
                },
            ]
        }
    )


# =============================================================================
# CONFIG MODELS
# =============================================================================


class BudgetStatus(BaseModel):
    """Budget position for the current month."""

    limit_usd: float
    warning_usd: float
    spent_usd: float
    remaining_usd: float
    reached: bool
    warning: bool


class ConfigResponse(BaseModel):
    """Response from get_config."""

    settings: AISettings
    usage: AIUsage
    has_api_key: bool
    available_models: list[str]
    budget: BudgetStatus


class SaveConfigRequest(BaseModel):
    """Request body for save_config. A blank api_key leaves the stored key alone."""

    settings: AISettings
    api_key: str | None = Field(
        default=None,
        description="API key for settings.provider",
    )


class SaveConfigResponse(BaseModel):
    """Response from save_config."""

    settings: AISettings
    has_api_key: bool
    available_models: list[str]


class ConnectionTestRequest(BaseModel):
    """Request body for test_connection."""

    provider: AIProvider


class ConnectionTestResponse(BaseModel):
    """Outcome of a connection probe."""

    ok: bool
    message: str


class StartChatResponse(BaseModel):
    """Response from start_chat."""

    request_id: str


class CancelChatResponse(BaseModel):
    """Response from cancel_chat. Always ok, even for unknown ids."""

    ok: bool = True


# =============================================================================
# ERROR MODELS
# =============================================================================


class ErrorCodes:
    """
    Standard error codes for API responses and stream events.

    These codes enable programmatic error handling by clients
    without parsing human-readable messages.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_CREDENTIAL = "MISSING_CREDENTIAL"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    DECODE_ERROR = "DECODE_ERROR"
    CANCELED = "CANCELED"
    TIMEOUT = "TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    """
    Detailed error information for API error responses.

    Provides machine-readable error codes, human-readable messages,
    and optional field information for validation errors.
    """

    code: str = Field(
        ...,
        description="Machine-readable error code for programmatic handling",
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
    )

    field: str | None = Field(
        default=None,
        description="Field that caused the error (for validation errors)",
    )


class ErrorResponse(BaseModel):
    """
    Standard error response format for all API errors.

    Example:
        {
            "error": {
                "code": "BUDGET_EXCEEDED",
                "message": "Monthly AI budget reached"
            }
        }
    """

    error: ErrorDetail


# =============================================================================
# HEALTH MODELS
# =============================================================================


class ComponentHealth(BaseModel):
    """Health status of an individual system component."""

    name: str = Field(
        ...,
        description="Component name (e.g., 'dispatcher', 'settings_store')",
    )

    status: Literal["healthy", "degraded", "unhealthy"]

    message: str | None = None


class HealthResponse(BaseModel):
    """
    Response from the /health endpoint.

    Example:
        {
            "status": "healthy",
            "service": "lumen-ai",
            "version": "0.1.0",
            "components": [
                {"name": "dispatcher", "status": "healthy", "message": "1 running, 0 queued"}
            ],
            "uptime_seconds": 3600.5
        }
    """

    status: Literal["healthy", "degraded", "unhealthy"]
    service: str = "lumen-ai"
    version: str
    components: list[ComponentHealth] = Field(default_factory=list)
    uptime_seconds: float | None = Field(default=None, ge=0.0)
