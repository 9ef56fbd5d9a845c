"""
Dispatcher module: Admission, queueing, retry and cancellation.

This module contains:
- queue.py: Bounded-concurrency FIFO dispatcher
- retry.py: Exponential backoff for transient provider failures

Public API:
- Dispatcher: Request orchestrator
- StreamController / QueueItem: Per-request bookkeeping
- RetryPolicy / stream_with_retry: Retry handling for one provider call
- with_system_prompt: Message preparation helper
- QUEUED_MESSAGE: Text of the queued event
"""

from lumen_ai.dispatcher.queue import (
    QUEUED_MESSAGE,
    Dispatcher,
    QueueItem,
    RequestPlan,
    StreamController,
    with_system_prompt,
)
from lumen_ai.dispatcher.retry import RetryPolicy, stream_with_retry

__all__ = [
    "QUEUED_MESSAGE",
    "Dispatcher",
    "QueueItem",
    "RequestPlan",
    "StreamController",
    "RetryPolicy",
    "stream_with_retry",
    "with_system_prompt",
]
