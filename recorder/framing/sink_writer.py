"""
Serial sink writer.

Runs as the second process of a serial recording pipeline:

    ffmpeg (raw video on stdout) -> python -m recorder.framing.sink_writer -> device

Every chunk read from stdin is framed with recorder.framing.codec and written
to the sink device. Write errors are logged and the chunk is dropped; the
writer keeps running until stdin reaches EOF or SIGINT arrives.

Usage:
    python -m recorder.framing.sink_writer --device /dev/ttyACM0 \
        --baud-rate 921600 --buffer-size 4096
"""

import argparse
import logging
import os
import stat
import sys
from typing import BinaryIO, Optional

import serial

from recorder.framing.codec import FrameCodec

logger = logging.getLogger(__name__)


def open_sink(device: str, baud_rate: int) -> BinaryIO:
    """
    Open the sink device for writing.

    Character devices (ttys, USB gadget serial ports, ptys) are opened with
    pyserial at the given baud rate. Anything else is opened as a plain binary
    file, which is how the stream is captured to disk for testing.
    """
    try:
        is_char_device = stat.S_ISCHR(os.stat(device).st_mode)
    except FileNotFoundError:
        is_char_device = False

    if is_char_device:
        logger.info(f"Opening serial device {device} at {baud_rate} baud")
        return serial.Serial(device, baudrate=baud_rate, write_timeout=None)

    logger.info(f"Opening sink file {device}")
    return open(device, "wb")


class SinkWriter:
    """Frames chunks from a source file descriptor onto a sink."""

    def __init__(self, sink: BinaryIO, buffer_size: int = 4096) -> None:
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be > 0, got {buffer_size}")
        self._sink = sink
        self._buffer_size = buffer_size
        self._codec = FrameCodec()
        self.write_errors = 0

    @property
    def frames_written(self) -> int:
        return self._codec.frames_encoded

    def write_chunk(self, chunk: bytes) -> None:
        frame = self._codec.encode(chunk)
        try:
            self._sink.write(frame)
            self._sink.flush()
        except (OSError, serial.SerialException) as e:
            self.write_errors += 1
            logger.error(f"Error writing to sink: {e}")

    def pump(self, source_fd: int) -> None:
        """
        Read chunks from source_fd until EOF and write them framed.

        os.read() returns whatever is available (up to buffer_size), so each
        frame carries exactly one read's worth of data.
        """
        while True:
            try:
                chunk = os.read(source_fd, self._buffer_size)
            except OSError as e:
                logger.error(f"stdin error: {e}")
                break
            if not chunk:
                logger.info("Input stream ended")
                break
            self.write_chunk(chunk)

    def close(self) -> None:
        try:
            self._sink.close()
        except (OSError, serial.SerialException) as e:
            logger.warning(f"Error closing sink: {e}")


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Frame raw media from stdin onto a serial sink"
    )
    parser.add_argument("--device", required=True, help="Sink device or file path")
    parser.add_argument("--baud-rate", type=int, default=921600, help="Serial baud rate (default: 921600)")
    parser.add_argument("--buffer-size", type=int, default=4096, help="Read size in bytes (default: 4096)")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        sink = open_sink(args.device, args.baud_rate)
    except (OSError, serial.SerialException) as e:
        logger.error(f"Failed to open sink {args.device}: {e}")
        return 1

    writer = SinkWriter(sink, buffer_size=args.buffer_size)
    try:
        writer.pump(sys.stdin.fileno())
    except KeyboardInterrupt:
        logger.info("Shutting down serial connection")
    finally:
        writer.close()
        logger.info(f"Wrote {writer.frames_written} frames ({writer.write_errors} write errors)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
