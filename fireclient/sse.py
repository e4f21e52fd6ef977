"""Server-sent event frame reader.

The realtime database streams changes as repeated three line frames::

    event: put
    data: {"path": "/", "data": {"a": 1}}
    <blank line>

Only this subset of the SSE format is understood. Every anomaly ends the
stream: instead of raising, the reader returns a synthesized terminal event
so that the consumer can decide whether to reconnect.
"""

import logging
from typing import AsyncIterable, AsyncIterator

import httpx

from fireclient.events import Event, EventType

logger = logging.getLogger(__name__)

EVENT_PREFIX = b"event: "
DATA_PREFIX = b"data: "


class _EndOfStream(Exception):
    pass


class FrameReader:
    """Reads one ``event``/``data``/blank frame at a time from a byte stream."""

    def __init__(self, chunks: AsyncIterable[bytes]):
        self._chunks: AsyncIterator[bytes] = chunks.__aiter__()
        self._buffer = bytearray()
        self._eof = False
        self._done = False
        self._needs_terminator = False

    @property
    def done(self) -> bool:
        """True once a terminal event has been returned."""
        return self._done

    async def readline(self) -> bytes:
        """Return the next line, including its trailing newline.

        A trailing fragment without a newline at end of stream is discarded;
        raises _EndOfStream when no complete line is left.
        """
        while True:
            idx = self._buffer.find(b"\n")
            if idx >= 0:
                line = bytes(self._buffer[: idx + 1])
                del self._buffer[: idx + 1]
                return line
            if self._eof:
                raise _EndOfStream
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._eof = True
                continue
            self._buffer.extend(chunk)

    async def _read_field(
        self, prefix: bytes, error_type: EventType
    ) -> tuple[bytes | None, Event | None]:
        try:
            line = await self.readline()
        except _EndOfStream:
            return None, Event(EventType.CLOSED, b"connection closed")
        except (httpx.HTTPError, OSError) as e:
            return None, Event(EventType.UNKNOWN_ERROR, str(e).encode())

        # blank terminator line
        if not prefix:
            line = line.strip()
            if line:
                logger.warning("Expected empty line in event stream, got %r", line)
                return None, Event(
                    error_type, b"expected empty line, got: " + line
                )
            return line, None

        if not line.startswith(prefix):
            logger.warning("Event stream line missing %r prefix: %r", prefix, line)
            return None, Event(error_type, b"missing prefix")

        return line[len(prefix):].strip(), None

    async def read_event(self) -> Event:
        """Read one frame, returning the parsed or synthesized terminal event.

        A frame is returned as soon as its ``data`` line is read. The blank
        line terminating it is consumed at the start of the next call, so a
        bad terminator surfaces as the terminal event after the frame.
        """
        if self._done:
            raise RuntimeError("frame reader already reached a terminal event")

        if self._needs_terminator:
            _, err = await self._read_field(b"", EventType.UNKNOWN_ERROR)
            if err is not None:
                self._done = True
                return err
            self._needs_terminator = False

        typ, err = await self._read_field(EVENT_PREFIX, EventType.MALFORMED_EVENT_ERROR)
        if err is None:
            data, err = await self._read_field(DATA_PREFIX, EventType.MALFORMED_DATA_ERROR)
        if err is not None:
            self._done = True
            return err

        self._needs_terminator = True
        return Event(EventType.parse(typ.decode("utf-8", errors="replace")), data)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        if self._done:
            raise StopAsyncIteration
        return await self.read_event()
