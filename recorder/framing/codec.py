"""
Frame encoder for the serial sink.

Each chunk of raw media read from the transcoder is wrapped as:

    Offset  Size  Type      Field
    ------  ----  --------  ---------------------------
    0       4     bytes     magic (AA BB CC DD)
    4       4     uint32    payload length (big-endian)
    8       N     bytes     payload
    ------
    Total:  8 + N bytes

There is no checksum. Receivers rely on the magic marker and the length
field to find frame boundaries (see reassembler.py).
"""

from __future__ import annotations

import struct
from typing import Iterable, Iterator

MAGIC = b"\xAA\xBB\xCC\xDD"
LENGTH_FORMAT = ">I"
LENGTH_SIZE = struct.calcsize(LENGTH_FORMAT)
HEADER_SIZE = len(MAGIC) + LENGTH_SIZE  # 8 bytes
MAX_PAYLOAD_SIZE = 0xFFFFFFFF


def encode(chunk: bytes) -> bytes:
    """
    Wrap one chunk into a frame.

    Chunk boundaries carry no meaning; each chunk is framed as it arrives,
    without batching or coalescing.

    Raises:
        ValueError: If the chunk does not fit in a 32-bit length field
    """
    if len(chunk) > MAX_PAYLOAD_SIZE:
        raise ValueError(f"Chunk too large for frame: {len(chunk)} bytes")
    return MAGIC + struct.pack(LENGTH_FORMAT, len(chunk)) + bytes(chunk)


class FrameCodec:
    """Stateful wrapper around encode() that keeps simple counters."""

    def __init__(self) -> None:
        self.frames_encoded = 0
        self.bytes_encoded = 0

    def encode(self, chunk: bytes) -> bytes:
        frame = encode(chunk)
        self.frames_encoded += 1
        self.bytes_encoded += len(chunk)
        return frame

    def iter_encode(self, chunks: Iterable[bytes]) -> Iterator[bytes]:
        for chunk in chunks:
            yield self.encode(chunk)
