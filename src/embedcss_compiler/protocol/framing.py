"""Length-prefixed frame extraction.

Input arrives in chunks of arbitrary size. FrameReader buffers them and hands
out complete frames (u32 little-endian length followed by that many bytes),
keeping any trailing partial frame until more data arrives.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator

_U32 = struct.Struct("<I")
LENGTH_PREFIX_SIZE = _U32.size


class FrameReader:
    """Incremental frame extractor.

    Usage:
        reader = FrameReader()
        reader.feed(chunk)
        for payload in reader.frames():
            handle(payload)

    The consumed prefix of the buffer is dropped lazily, once per ``feed``,
    so the unconsumed tail is moved at most once per read no matter how many
    frames the read contained.
    """

    __slots__ = ("_buffer", "_offset")

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._offset = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet returned as a frame."""
        return len(self._buffer) - self._offset

    def feed(self, data: bytes | bytearray | memoryview) -> None:
        """Append a chunk read from the stream."""
        if self._offset:
            del self._buffer[: self._offset]
            self._offset = 0
        self._buffer += data

    def next_frame(self) -> bytes | None:
        """Return the next complete frame payload, or None if incomplete.

        Nothing is consumed when None is returned.
        """
        available = len(self._buffer) - self._offset
        if available < LENGTH_PREFIX_SIZE:
            return None
        (length,) = _U32.unpack_from(self._buffer, self._offset)
        if available - LENGTH_PREFIX_SIZE < length:
            return None
        start = self._offset + LENGTH_PREFIX_SIZE
        end = start + length
        # Copy out: the buffer is mutated by the next feed
        payload = bytes(self._buffer[start:end])
        self._offset = end
        return payload

    def frames(self) -> Iterator[bytes]:
        """Yield every complete frame currently buffered."""
        while (payload := self.next_frame()) is not None:
            yield payload
