"""
Serial stream receiver.

Reads a framed byte stream written by the serial sink, reassembles the raw
frames and saves them to disk. Every Nth frame is also converted to a JPEG
with ffmpeg so the stream can be checked by eye.

Usage:
    python -m recorder.framing.receiver --device /tmp/vserial2

    # Decode a captured stream file once and exit at EOF
    python -m recorder.framing.receiver --device capture.bin --once
"""

import argparse
import logging
import os
import stat
import subprocess
import sys
import time
from pathlib import Path
from typing import BinaryIO, Optional

import serial

from recorder.framing.reassembler import FrameReassembler

logger = logging.getLogger(__name__)

READ_SIZE = 65536
RETRY_DELAY_SEC = 3.0
SERIAL_TIMEOUT_SEC = 1.0


class FrameReceiver:
    """Saves reassembled frames as numbered .yuv files."""

    def __init__(
        self,
        output_dir: Path,
        video_size: str = "320x240",
        pixel_format: str = "yuv420p",
        convert_every: int = 30,
        ffmpeg_bin: str = "ffmpeg",
    ) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.video_size = video_size
        self.pixel_format = pixel_format
        self.convert_every = convert_every
        self.ffmpeg_bin = ffmpeg_bin
        self.frame_count = 0
        self.reassembler = FrameReassembler()

    def receive(self, chunk: bytes) -> int:
        """Feed one chunk; returns the number of frames saved."""
        saved = 0
        for payload in self.reassembler.feed(chunk):
            self.save_frame(payload)
            saved += 1
        return saved

    def save_frame(self, payload: bytes) -> Path:
        index = self.frame_count
        path = self.output_dir / f"frame_{index}.yuv"
        path.write_bytes(payload)
        self.frame_count += 1
        logger.info(f"Saved frame {index}, size: {len(payload)} bytes")

        if self.convert_every > 0 and index % self.convert_every == 0:
            self.convert_to_jpeg(path)
        return path

    def convert_to_jpeg(self, yuv_path: Path) -> Optional[Path]:
        jpeg_path = yuv_path.with_suffix(".jpg")
        cmd = [
            self.ffmpeg_bin, "-y",
            "-f", "rawvideo",
            "-pixel_format", self.pixel_format,
            "-video_size", self.video_size,
            "-i", str(yuv_path),
            str(jpeg_path),
        ]
        try:
            subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            logger.error(f"Failed to convert frame to JPEG: {e}")
            return None
        logger.info(f"Converted {yuv_path.name} to JPEG")
        return jpeg_path


def open_source(device: str, baud_rate: int = 921600) -> BinaryIO:
    """
    Open the framed stream for reading.

    Character devices are opened with pyserial, which puts the port in raw
    mode so the line discipline leaves binary frames alone. Anything else is
    read as a captured stream file.
    """
    try:
        is_char_device = stat.S_ISCHR(os.stat(device).st_mode)
    except FileNotFoundError:
        is_char_device = False

    if is_char_device:
        return serial.Serial(device, baudrate=baud_rate, timeout=SERIAL_TIMEOUT_SEC)
    return open(device, "rb", buffering=0)


def _pump(receiver: FrameReceiver, stream: BinaryIO) -> None:
    if isinstance(stream, serial.Serial):
        # An empty read is a timeout; the port only ends with an error
        while True:
            chunk = stream.read(stream.in_waiting or 1)
            if chunk:
                receiver.receive(chunk)
    else:
        while True:
            chunk = stream.read(READ_SIZE)
            if not chunk:
                break
            receiver.receive(chunk)


def run(receiver: FrameReceiver, device: str, once: bool = False, baud_rate: int = 921600) -> None:
    """
    Read from device forever, reopening it whenever it is missing or closes.

    With once=True the loop stops at the first EOF, disconnect or open failure.
    """
    while True:
        try:
            with open_source(device, baud_rate) as stream:
                logger.info(f"Successfully opened serial device: {device}")
                _pump(receiver, stream)
            logger.info("Serial stream closed")
        except (OSError, serial.SerialException) as e:
            logger.error(f"Serial stream error on {device}: {e}")

        if once:
            return
        logger.info(f"Retrying in {RETRY_DELAY_SEC:.0f} seconds...")
        time.sleep(RETRY_DELAY_SEC)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Receive and decode frames from the serial sink"
    )
    parser.add_argument(
        "--device",
        default=os.getenv("RECORDER_SERIAL_DEVICE", "/tmp/vserial2"),
        help="Serial device or capture file (default: $RECORDER_SERIAL_DEVICE or /tmp/vserial2)"
    )
    parser.add_argument(
        "--baud-rate",
        type=int,
        default=int(os.getenv("RECORDER_SERIAL_BAUD_RATE", "921600")),
        help="Serial baud rate for character devices (default: $RECORDER_SERIAL_BAUD_RATE or 921600)"
    )
    parser.add_argument("--output-dir", default="received_frames", help="Directory for saved frames")
    parser.add_argument("--video-size", default="320x240", help="Raw frame size for JPEG conversion")
    parser.add_argument("--convert-every", type=int, default=30, help="Convert every Nth frame to JPEG (0 disables)")
    parser.add_argument("--once", action="store_true", help="Exit at EOF instead of reopening the device")
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    receiver = FrameReceiver(
        output_dir=Path(args.output_dir),
        video_size=args.video_size,
        convert_every=args.convert_every,
    )
    logger.info(f"Serial receiver started. Saving frames to {receiver.output_dir}")

    try:
        run(receiver, args.device, once=args.once, baud_rate=args.baud_rate)
    except KeyboardInterrupt:
        logger.info("Receiver stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
