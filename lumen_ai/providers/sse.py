"""
Server-Sent Events Decoder

Turns a stream of byte chunks into the data payloads of complete SSE
events. Chunks may split anywhere, including inside a multi-byte UTF-8
sequence or between the two newlines that end an event.

Payloads are returned as text; parsing them is up to the provider.
"""

import codecs
import re
from typing import AsyncIterator

from lumen_ai.cancellation import CancellationToken

_EVENT_BOUNDARY = re.compile(r"\r?\n\r?\n")
_LINE_BREAK = re.compile(r"\r?\n")


class SSEDecoder:
    """
    Incremental SSE decoder.

    Example:
        decoder = SSEDecoder()
        for chunk in chunks:
            for payload in decoder.feed(chunk):
                handle(json.loads(payload))
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text of the incomplete trailing event."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """
        Add a chunk and return payloads of every event it completed.

        Args:
            chunk: Raw bytes from the response body

        Returns:
            Trimmed, non-empty data payloads in document order
        """
        self._buffer += self._decoder.decode(chunk)
        segments = _EVENT_BOUNDARY.split(self._buffer)
        self._buffer = segments.pop()

        payloads: list[str] = []
        for segment in segments:
            for line in _LINE_BREAK.split(segment):
                if not line.startswith("data:"):
                    continue
                payload = line[5:].strip()
                if payload:
                    payloads.append(payload)
        return payloads


async def iter_sse_payloads(
    chunks: AsyncIterator[bytes], token: CancellationToken | None = None
) -> AsyncIterator[str]:
    """
    Yield SSE payloads from an async byte stream.

    Stops at end of stream or as soon as the token fires. An incomplete
    trailing event is discarded.
    """
    decoder = SSEDecoder()
    async for chunk in chunks:
        if token is not None and token.cancelled:
            return
        for payload in decoder.feed(chunk):
            if token is not None and token.cancelled:
                return
            yield payload
