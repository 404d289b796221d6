"""
Framed byte-stream protocol for the serial sink.

- encode / FrameCodec: wrap raw chunks as magic + length + payload frames
- FrameReassembler: recover payloads from an arbitrarily chunked stream
"""

from recorder.framing.codec import FrameCodec, HEADER_SIZE, MAGIC, encode
from recorder.framing.reassembler import FrameReassembler

__all__ = [
    "FrameCodec",
    "FrameReassembler",
    "HEADER_SIZE",
    "MAGIC",
    "encode",
]
