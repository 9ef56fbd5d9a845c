"""
Retry Policy for Provider Calls

Retries transient provider failures with exponential backoff:

    delay(attempt) = min(base * 2 ** (attempt - 1), cap)

With the defaults (3 attempts, 1s base, 4s cap) a request that keeps
failing waits 1s, then 2s, and gives up after the third attempt.

Only HTTP 429 and 5xx responses are retried. Authentication failures,
other 4xx responses, undecodable streams and network failures fail at
once. A request is never retried after its first token has reached the
caller, since a second attempt would repeat output already shown.
Once the cancellation token fires, no further attempt is started and the
backoff sleep is interrupted.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from lumen_ai.cancellation import CancellationToken
from lumen_ai.config import Settings
from lumen_ai.errors import ProviderError, RequestCanceled
from lumen_ai.providers.base import (
    ChatOptions,
    ProviderClient,
    ProviderStreamResult,
    TokenCallback,
)
from lumen_ai.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """
    Retry limits for one request.

    Attributes:
        max_attempts: Attempts including the first
        base_delay: Delay in seconds after the first failure
        max_delay: Upper bound on any single delay
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 4.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        if not isinstance(error, ProviderError):
            return False
        return error.status == 429 or error.status >= 500


async def stream_with_retry(
    client: ProviderClient,
    api_key: str | None,
    model: str,
    messages: list[ChatMessage],
    options: ChatOptions,
    on_token: TokenCallback,
    token: CancellationToken,
    policy: RetryPolicy | None = None,
    sleep: SleepFunc | None = None,
) -> ProviderStreamResult:
    """
    Call client.stream_chat, retrying transient failures.

    Each attempt runs through token.run(), so firing the token aborts
    the in-flight HTTP read.

    Args:
        client: Provider client to call
        api_key: Provider API key
        model: Model name
        messages: Prepared conversation
        options: Sampling options
        on_token: Receives each text fragment
        token: Cancellation token for the request
        policy: Retry limits (defaults to RetryPolicy())
        sleep: Backoff sleep; defaults to token.sleep

    Returns:
        Result of the first successful attempt

    Raises:
        RequestCanceled: If the token fired
        ProviderError: If the last attempt failed or the failure was terminal
    """
    policy = policy or RetryPolicy()
    delivered = False

    def _on_token(fragment: str) -> None:
        nonlocal delivered
        delivered = True
        on_token(fragment)

    attempt = 1
    while True:
        try:
            return await token.run(
                client.stream_chat(api_key, model, messages, options, _on_token, token)
            )
        except RequestCanceled:
            raise
        except Exception as e:
            if token.cancelled:
                raise token.error() from e

            if delivered or attempt >= policy.max_attempts or not policy.is_retryable(e):
                if attempt > 1:
                    logger.error(
                        f"{client.display_name} request failed after {attempt} attempts: {e}"
                    )
                raise

            wait_time = policy.backoff_delay(attempt)
            logger.warning(
                f"{client.display_name} request failed (attempt {attempt}/"
                f"{policy.max_attempts}), retrying in {wait_time:g}s: {e}"
            )

            if sleep is None:
                await token.sleep(wait_time)
            else:
                await sleep(wait_time)
                token.raise_if_cancelled()
            attempt += 1
