"""
Lumen AI Gateway: Streaming Chat Orchestration

Dispatches chat requests to OpenAI, Anthropic, xAI, OpenRouter and a
self-hosted OpenClaw gateway. Requests are admitted against a monthly
spend cap, run with bounded concurrency behind a FIFO queue, and stream
their tokens back to callers as server-sent events.
"""

__version__ = "0.1.0"
