"""
Cancellation Token

One token is created per admitted request. Firing it:
- cancels every task started through run(), which aborts in-flight HTTP reads
- wakes any backoff sleep so no further attempt starts
- records why the request stopped (user, timeout or shutdown)

Tokens are only touched from the event loop thread.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from lumen_ai.errors import CancelReason, RequestCanceled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    Cooperative cancellation signal for a single request.

    Example:
        token = CancellationToken(timeout_seconds=30)
        loop.call_later(30, token.cancel, CancelReason.TIMEOUT)
        result = await token.run(client.stream_chat(...))
    """

    def __init__(self, timeout_seconds: float = 30.0):
        self.timeout_seconds = timeout_seconds
        self._event = asyncio.Event()
        self._reason: CancelReason | None = None
        self._tasks: set[asyncio.Task] = set()
        self._callbacks: list[Callable[[CancelReason], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> CancelReason | None:
        return self._reason

    def cancel(self, reason: CancelReason = CancelReason.USER) -> bool:
        """
        Fire the token. Only the first call has any effect.

        Args:
            reason: Why the request is being stopped

        Returns:
            True if this call fired the token
        """
        if self._reason is not None:
            return False

        self._reason = reason
        self._event.set()

        for task in list(self._tasks):
            task.cancel()

        for callback in list(self._callbacks):
            try:
                callback(reason)
            except Exception:
                logger.exception("Cancellation callback failed")
        return True

    def add_callback(self, callback: Callable[[CancelReason], None]) -> None:
        """Call callback(reason) when the token fires, at once if it already has."""
        if self._reason is not None:
            callback(self._reason)
        else:
            self._callbacks.append(callback)

    def error(self) -> RequestCanceled:
        """Exception describing why the token fired."""
        return RequestCanceled(self._reason or CancelReason.USER, self.timeout_seconds)

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise self.error()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """
        Sleep for the given time unless the token fires first.

        Raises:
            RequestCanceled: If the token fired before or during the sleep
        """
        self.raise_if_cancelled()
        if seconds > 0:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                return
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Run a coroutine as a task that firing the token cancels.

        Raises:
            RequestCanceled: If the token fired before or while it ran
        """
        if self._reason is not None:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise self.error()

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self._reason is not None and task.cancelled():
                raise self.error() from None
            raise
        finally:
            self._tasks.discard(task)
