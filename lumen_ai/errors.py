"""
Error types raised along the request path.

Pre-flight rejections (missing key, budget reached) propagate to the
caller of submit. Everything raised once a request is running is turned
into the request's terminal stream event by the dispatcher.
"""

from enum import Enum

from lumen_ai.schemas.chat import ErrorCodes


class LumenAIError(Exception):
    """Base class for all gateway errors."""

    code: str = ErrorCodes.INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingCredentialError(LumenAIError):
    """The selected provider needs an API key and none is stored."""

    code = ErrorCodes.MISSING_CREDENTIAL

    def __init__(self, provider: str):
        super().__init__(f"No API key configured for {provider}")
        self.provider = provider


class BudgetExceededError(LumenAIError):
    """Spend for the current month already reached the budget."""

    code = ErrorCodes.BUDGET_EXCEEDED

    def __init__(self, spent_usd: float, limit_usd: float):
        super().__init__("Monthly AI budget reached")
        self.spent_usd = spent_usd
        self.limit_usd = limit_usd


class DecodeError(LumenAIError):
    """A stream payload was not valid JSON."""

    code = ErrorCodes.DECODE_ERROR


class ProviderError(LumenAIError):
    """
    A provider call failed.

    Attributes:
        status: HTTP status code, or 0 when the provider was unreachable
        error_type: Provider-specific code or type from the error body
        quota_exceeded: True when a 429 means the account is out of credit
    """

    def __init__(
        self,
        status: int,
        message: str,
        error_type: str | None = None,
        quota_exceeded: bool = False,
    ):
        super().__init__(message)
        self.status = status
        self.error_type = error_type
        self.quota_exceeded = quota_exceeded

    @property
    def code(self) -> str:
        if self.status == 401:
            return ErrorCodes.AUTHENTICATION_FAILED
        if self.status == 429:
            return ErrorCodes.QUOTA_EXCEEDED if self.quota_exceeded else ErrorCodes.RATE_LIMITED
        if self.status >= 500:
            return ErrorCodes.PROVIDER_UNAVAILABLE
        return ErrorCodes.PROVIDER_ERROR


class CancelReason(str, Enum):
    """Why a cancellation token fired."""

    USER = "user"
    TIMEOUT = "timeout"
    SHUTDOWN = "shutdown"


class RequestCanceled(LumenAIError):
    """The request was canceled by the caller, the timeout or shutdown."""

    def __init__(self, reason: CancelReason = CancelReason.USER, timeout_seconds: float = 30):
        if reason is CancelReason.TIMEOUT:
            message = f"Request timed out after {timeout_seconds:g}s"
        elif reason is CancelReason.SHUTDOWN:
            message = "Request canceled by shutdown"
        else:
            message = "Request canceled by user"
        super().__init__(message)
        self.reason = reason

    @property
    def code(self) -> str:
        if self.reason is CancelReason.TIMEOUT:
            return ErrorCodes.TIMEOUT
        return ErrorCodes.CANCELED
