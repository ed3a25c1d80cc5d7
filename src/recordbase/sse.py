"""
Server-sent events decoding.

Turns the raw byte stream of a text/event-stream response into events.
Lines end with LF or CRLF; comment lines start with a colon.
"""

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Optional


@dataclass
class ServerSentEvent:
    """A single dispatched event."""
    event: str = "message"
    data: str = ""
    id: str = ""
    retry: Optional[int] = None


class EventStreamDecoder:
    """Incremental decoder; feed it chunks as they arrive."""

    def __init__(self):
        self._buffer = bytearray()
        self._last_id = ""
        self._reset()

    def _reset(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._retry: Optional[int] = None
        self._pending = False

    def feed(self, chunk: bytes) -> list[ServerSentEvent]:
        """Consume a chunk and return the events it completes."""
        # Only the unterminated tail is buffered; each chunk is split once
        end = chunk.rfind(b"\n")
        if end < 0:
            self._buffer += chunk
            return []
        self._buffer += chunk[:end]
        lines = self._buffer.split(b"\n")
        self._buffer = bytearray(chunk[end + 1:])

        events = []
        for line in lines:
            if line.endswith(b"\r"):
                line = line[:-1]
            event = self.decode_line(line.decode("utf-8", errors="replace"))
            if event is not None:
                events.append(event)
        return events

    def decode_line(self, line: str) -> Optional[ServerSentEvent]:
        """Process one line (without terminator); a blank line dispatches."""
        if not line:
            if not self._pending:
                return None
            event = ServerSentEvent(
                event=self._event or "message",
                data="\n".join(self._data),
                id=self._last_id,
                retry=self._retry,
            )
            self._reset()
            return event

        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self._last_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        else:
            # Unknown fields are ignored
            return None
        self._pending = True
        return None


async def iter_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[ServerSentEvent]:
    """Yield events from an async iterable of raw byte chunks.

    An event left incomplete at end of stream is discarded.
    """
    decoder = EventStreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
