"""
Tests for the serial sink writer process.

Covers: framing of stdin chunks, write error handling, sink selection
(pyserial for character devices, plain file otherwise), CLI entry point.
"""

import io
import logging
import os
import stat
from unittest.mock import MagicMock, patch

import pytest
import serial

from recorder.framing import sink_writer
from recorder.framing.codec import encode
from recorder.framing.reassembler import FrameReassembler
from recorder.framing.sink_writer import SinkWriter, open_sink


def pipe_with(data: bytes) -> int:
    """Return the read end of a pipe that yields data then EOF."""
    read_fd, write_fd = os.pipe()
    os.write(write_fd, data)
    os.close(write_fd)
    return read_fd


class FailingSink(io.BytesIO):

    def __init__(self, fail_times: int):
        super().__init__()
        self.fail_times = fail_times

    def write(self, data):
        if self.fail_times > 0:
            self.fail_times -= 1
            raise serial.SerialTimeoutException("Write timeout")
        return super().write(data)


class TestSinkWriter:

    def test_write_chunk_frames_data(self):
        sink = io.BytesIO()
        writer = SinkWriter(sink)
        writer.write_chunk(b"hello")
        assert sink.getvalue() == encode(b"hello")
        assert writer.frames_written == 1

    @pytest.mark.timeout(5)
    def test_pump_frames_everything_until_eof(self):
        data = bytes(range(256)) * 40
        read_fd = pipe_with(data)
        sink = io.BytesIO()
        writer = SinkWriter(sink, buffer_size=1000)
        try:
            writer.pump(read_fd)
        finally:
            os.close(read_fd)

        frames = list(FrameReassembler().feed(sink.getvalue()))
        assert b"".join(frames) == data
        assert all(len(frame) <= 1000 for frame in frames)
        assert writer.frames_written == len(frames)

    def test_write_error_is_logged_and_skipped(self, caplog):
        sink = FailingSink(fail_times=1)
        writer = SinkWriter(sink)
        with caplog.at_level(logging.ERROR, logger="recorder.framing.sink_writer"):
            writer.write_chunk(b"lost")
            writer.write_chunk(b"kept")

        assert writer.write_errors == 1
        assert list(FrameReassembler().feed(sink.getvalue())) == [b"kept"]
        assert "Error writing to sink" in caplog.text

    def test_invalid_buffer_size(self):
        with pytest.raises(ValueError):
            SinkWriter(io.BytesIO(), buffer_size=0)


class TestOpenSink:

    def test_regular_path_opens_file(self, tmp_path):
        path = tmp_path / "capture.bin"
        sink = open_sink(str(path), 921600)
        try:
            sink.write(b"x")
        finally:
            sink.close()
        assert path.read_bytes() == b"x"

    def test_character_device_uses_pyserial(self):
        fake_stat = MagicMock(st_mode=stat.S_IFCHR | 0o660)
        with patch("recorder.framing.sink_writer.os.stat", return_value=fake_stat), \
                patch("recorder.framing.sink_writer.serial.Serial") as mock_serial:
            sink = open_sink("/dev/ttyACM0", 115200)

        mock_serial.assert_called_once_with("/dev/ttyACM0", baudrate=115200, write_timeout=None)
        assert sink is mock_serial.return_value


class TestSinkWriterMain:

    @pytest.mark.timeout(5)
    def test_main_frames_stdin_to_device(self, tmp_path, monkeypatch):
        device = tmp_path / "serial.out"
        read_fd = pipe_with(b"raw video bytes")
        monkeypatch.setattr(sink_writer.sys, "stdin", os.fdopen(read_fd, "rb"))

        code = sink_writer.main(["--device", str(device), "--buffer-size", "4096"])

        assert code == 0
        assert list(FrameReassembler().feed(device.read_bytes())) == [b"raw video bytes"]

    def test_main_returns_error_when_sink_cannot_open(self, tmp_path):
        device = tmp_path / "missing-dir" / "serial.out"
        assert sink_writer.main(["--device", str(device)]) == 1

    def test_parse_args_defaults(self):
        args = sink_writer.parse_args(["--device", "/dev/ttyACM0"])
        assert args.baud_rate == 921600
        assert args.buffer_size == 4096
