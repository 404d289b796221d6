"""
Frame reassembler for the serial sink stream.

This module provides FrameReassembler, which accumulates raw bytes read from
a byte-oriented transport (serial line, pipe, socket) and yields the payloads
of complete frames produced by recorder.framing.codec.

The reassembler:
1. Appends every incoming chunk to an internal bytearray buffer
2. Scans the buffer for the magic marker
3. Drops any bytes in front of the marker (resynchronization)
4. Waits until the 8-byte header and then the full payload are buffered
5. Yields the payload and continues with the rest of the buffer

When no marker is present, only the last len(MAGIC) - 1 bytes are kept,
since a marker may be split across two chunks.

Output guarantees:
- Payloads are emitted in stream order, byte-for-byte as encoded
- A payload is never emitted before all of its declared bytes have arrived
- Works for any chunking of the input, including one byte at a time
"""

from __future__ import annotations

import struct
from typing import BinaryIO, Iterable, Iterator, Optional

from recorder.framing.codec import HEADER_SIZE, LENGTH_FORMAT, MAGIC


class FrameReassembler:
    """
    Streaming decoder for magic + length + payload frames.

    Attributes:
        discarded: Total number of bytes dropped while resynchronizing
    """

    def __init__(self, max_frame_size: Optional[int] = None) -> None:
        """
        Initialize the reassembler.

        Args:
            max_frame_size: Optional upper bound for a declared payload length.
                            A header declaring more than this is treated as a
                            false marker and skipped. None disables the check,
                            so a corrupted length makes the reassembler wait
                            for that many bytes.
        """
        if max_frame_size is not None and max_frame_size < 0:
            raise ValueError(f"max_frame_size must be >= 0, got {max_frame_size}")
        self._buffer = bytearray()
        self._max_frame_size = max_frame_size
        self.discarded = 0

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of a frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> Iterator[bytes]:
        """
        Feed raw bytes, yield complete frame payloads.

        Args:
            data: Raw bytes from the transport (may be empty)

        Yields:
            Frame payloads in stream order
        """
        if data:
            self._buffer.extend(data)

        while True:
            start = self._buffer.find(MAGIC)

            if start < 0:
                # Keep a possible partial marker at the tail
                keep = len(MAGIC) - 1
                if len(self._buffer) > keep:
                    self.discarded += len(self._buffer) - keep
                    del self._buffer[:len(self._buffer) - keep]
                return

            if start > 0:
                self.discarded += start
                del self._buffer[:start]
                continue

            if len(self._buffer) < HEADER_SIZE:
                return

            (length,) = struct.unpack_from(LENGTH_FORMAT, self._buffer, len(MAGIC))

            if self._max_frame_size is not None and length > self._max_frame_size:
                # Not a real header; skip past this marker and look again
                self.discarded += 1
                del self._buffer[0]
                continue

            end = HEADER_SIZE + length
            if len(self._buffer) < end:
                return

            payload = bytes(self._buffer[HEADER_SIZE:end])
            del self._buffer[:end]
            yield payload

    def iter_frames(self, chunks: Iterable[bytes]) -> Iterator[bytes]:
        """Lazily reassemble payloads from an iterable of chunks."""
        for chunk in chunks:
            yield from self.feed(chunk)

    def read_frames(self, stream: BinaryIO, chunk_size: int = 65536) -> Iterator[bytes]:
        """
        Lazily reassemble payloads read from a binary stream until EOF.

        Uses read1() when the stream provides it so data is decoded as soon
        as it arrives instead of waiting for a full chunk.
        """
        read = getattr(stream, "read1", stream.read)
        while True:
            chunk = read(chunk_size)
            if not chunk:
                return
            yield from self.feed(chunk)

    def reset(self) -> None:
        """Drop all buffered bytes."""
        self._buffer.clear()
