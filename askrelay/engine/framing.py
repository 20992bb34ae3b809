"""Line framing over a worker's byte stream.

Built on ``asyncio.StreamReader.readuntil`` so partial reads are
buffered by the reader itself. The reader's ``limit`` must be at least
``max_frame_bytes``; transports create their readers that way.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from .errors import FrameTooLargeError

logger = logging.getLogger(__name__)

LINE_TERMINATOR = b"\n"
DEFAULT_MAX_FRAME_BYTES = 1024 * 1024
MIN_MAX_FRAME_BYTES = DEFAULT_MAX_FRAME_BYTES


class LineFramer:
    """Yields one worker line at a time, without its terminator.

    ``next_line()`` returns ``None`` once the stream is exhausted and
    keeps returning ``None`` afterwards. Empty lines come back as
    ``b""``.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
    ) -> None:
        self._reader = reader
        self._max_frame_bytes = max_frame_bytes
        self._exhausted = False
        self.lines_read = 0

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    async def next_line(self) -> bytes | None:
        """Return the next line, or None at end of stream.

        Raises FrameTooLargeError when a line grows past
        ``max_frame_bytes`` before its terminator shows up.
        """
        if self._exhausted:
            return None

        try:
            chunk = await self._reader.readuntil(LINE_TERMINATOR)
        except asyncio.IncompleteReadError as exc:
            # EOF. A trailing fragment without terminator is still a line.
            self._exhausted = True
            if not exc.partial:
                return None
            chunk = exc.partial
        except asyncio.LimitOverrunError as exc:
            self._exhausted = True
            raise FrameTooLargeError(self._max_frame_bytes, exc.consumed) from exc

        if chunk.endswith(LINE_TERMINATOR):
            chunk = chunk[:-1]
        if chunk.endswith(b"\r"):
            chunk = chunk[:-1]

        if len(chunk) > self._max_frame_bytes:
            self._exhausted = True
            raise FrameTooLargeError(self._max_frame_bytes, len(chunk))

        self.lines_read += 1
        return chunk

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        while True:
            line = await self.next_line()
            if line is None:
                return
            yield line


def make_stream_reader(
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
) -> asyncio.StreamReader:
    """StreamReader sized so one full frame plus its terminator fits."""
    return asyncio.StreamReader(limit=max_frame_bytes + len(LINE_TERMINATOR))
