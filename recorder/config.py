"""
Configuration management for the recorder.

Reads configuration from an optional .env file and environment variables with
sensible defaults.
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/recorder/recorder.env")

SINK_MODES = ("file", "socket", "serial")

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_CODECS: List[Dict[str, Any]] = [
    {
        "kind": "audio",
        "mimeType": "audio/opus",
        "clockRate": 48000,
        "channels": 2,
    },
    {
        "kind": "video",
        "mimeType": "video/VP8",
        "clockRate": 90000,
        "parameters": {"x-google-start-bitrate": 1000},
    },
    {
        "kind": "video",
        "mimeType": "video/H264",
        "clockRate": 90000,
        "parameters": {
            "packetization-mode": 1,
            "profile-level-id": "42e01f",
            "level-asymmetry-allowed": 1,
        },
    },
]


def _load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("RECORDER_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _get_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


def _get_float(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be a number)")


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


@dataclass
class RecorderConfig:
    """Recorder configuration loaded from .env file and environment variables."""

    # Signaling server
    host: str = "0.0.0.0"
    port: int = 3000
    ssl_cert: Optional[str] = None
    ssl_key: Optional[str] = None
    error_responses: bool = False

    # Media engine ("package.module:factory")
    media_engine: Optional[str] = None
    media_codecs: List[Dict[str, Any]] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_MEDIA_CODECS)
    )

    # Sink
    sink_mode: str = "file"
    record_dir: str = "./files"
    socket_target: str = "udp://127.0.0.1:5004"
    serial_device: str = "/dev/ttyACM0"
    serial_baud_rate: int = 921600
    buffer_size: int = 4096
    video_size: str = "320x240"

    # Transcoder
    ffmpeg_bin: str = "ffmpeg"
    ffmpeg_log_level: str = "info"

    # Plain RTP transports
    rtp_port_min: int = 20000
    rtp_port_max: int = 30000
    plain_listen_ip: str = "0.0.0.0"
    plain_announced_ip: str = "127.0.0.1"
    rtcp_mux: bool = True

    # Timing
    settle_delay_ms: int = 1000
    process_stop_timeout_sec: float = 2.0

    # Logging
    log_level: str = "INFO"

    @property
    def settle_delay_sec(self) -> float:
        return self.settle_delay_ms / 1000.0

    @property
    def ssl_enabled(self) -> bool:
        return bool(self.ssl_cert and self.ssl_key)

    def plain_transport_options(self) -> Dict[str, Any]:
        """
        Options for one plain RTP transport.

        Returns a new dict on every call; callers may modify it freely
        without affecting other sessions.
        """
        return {
            "listenIp": {
                "ip": self.plain_listen_ip,
                "announcedIp": self.plain_announced_ip,
            },
            "rtcpMux": self.rtcp_mux,
            "comedia": False,
        }

    @classmethod
    def load_config(cls) -> "RecorderConfig":
        """
        Load configuration from environment variables.

        Returns:
            RecorderConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        ssl_cert = os.getenv("RECORDER_SSL_CERT") or None
        ssl_key = os.getenv("RECORDER_SSL_KEY") or None
        media_engine = os.getenv("RECORDER_MEDIA_ENGINE") or None

        config = cls(
            host=os.getenv("RECORDER_HOST", "0.0.0.0"),
            port=_get_int("RECORDER_PORT", "3000"),
            ssl_cert=ssl_cert,
            ssl_key=ssl_key,
            error_responses=_get_bool("RECORDER_ERROR_RESPONSES", "0"),
            media_engine=media_engine,
            sink_mode=os.getenv("RECORDER_SINK_MODE", "file").lower(),
            record_dir=os.getenv("RECORDER_RECORD_DIR", "./files"),
            socket_target=os.getenv("RECORDER_SOCKET_TARGET", "udp://127.0.0.1:5004"),
            serial_device=os.getenv("RECORDER_SERIAL_DEVICE", "/dev/ttyACM0"),
            serial_baud_rate=_get_int("RECORDER_SERIAL_BAUD_RATE", "921600"),
            buffer_size=_get_int("RECORDER_BUFFER_SIZE", "4096"),
            video_size=os.getenv("RECORDER_VIDEO_SIZE", "320x240"),
            ffmpeg_bin=os.getenv("RECORDER_FFMPEG_BIN", "ffmpeg"),
            ffmpeg_log_level=os.getenv("RECORDER_FFMPEG_LOG_LEVEL", "info"),
            rtp_port_min=_get_int("RECORDER_RTP_PORT_MIN", "20000"),
            rtp_port_max=_get_int("RECORDER_RTP_PORT_MAX", "30000"),
            plain_listen_ip=os.getenv("RECORDER_PLAIN_LISTEN_IP", "0.0.0.0"),
            plain_announced_ip=os.getenv("RECORDER_PLAIN_ANNOUNCED_IP", "127.0.0.1"),
            rtcp_mux=_get_bool("RECORDER_RTCP_MUX", "1"),
            settle_delay_ms=_get_int("RECORDER_SETTLE_DELAY_MS", "1000"),
            process_stop_timeout_sec=_get_float("RECORDER_PROCESS_STOP_TIMEOUT_SEC", "2.0"),
            log_level=os.getenv("RECORDER_LOG_LEVEL", "INFO"),
        )

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
            FileNotFoundError: If a configured TLS file does not exist
        """
        if self.port < 1 or self.port > 65535:
            raise ValueError(f"Invalid port: {self.port} (must be 1-65535)")

        if not self.media_engine:
            raise ValueError("RECORDER_MEDIA_ENGINE is required (format: 'package.module:factory')")

        if ":" not in self.media_engine:
            raise ValueError(
                f"Invalid RECORDER_MEDIA_ENGINE: {self.media_engine} "
                f"(format: 'package.module:factory')"
            )

        if self.sink_mode not in SINK_MODES:
            raise ValueError(
                f"Invalid RECORDER_SINK_MODE: {self.sink_mode} "
                f"(must be one of: {', '.join(SINK_MODES)})"
            )

        if self.sink_mode == "serial" and not self.serial_device:
            raise ValueError("RECORDER_SERIAL_DEVICE is required when RECORDER_SINK_MODE is 'serial'")

        if self.serial_baud_rate <= 0:
            raise ValueError(f"Invalid serial baud rate: {self.serial_baud_rate} (must be > 0)")

        if self.buffer_size <= 0:
            raise ValueError(f"Invalid buffer size: {self.buffer_size} (must be > 0)")

        width, sep, height = self.video_size.partition("x")
        if not sep or not width.isdigit() or not height.isdigit():
            raise ValueError(f"Invalid video size: {self.video_size} (expected WIDTHxHEIGHT)")

        if self.rtp_port_min < 1 or self.rtp_port_max > 65535 or self.rtp_port_min > self.rtp_port_max:
            raise ValueError(
                f"Invalid RTP port range: {self.rtp_port_min}-{self.rtp_port_max}"
            )

        if self.settle_delay_ms < 0:
            raise ValueError(f"Invalid settle delay: {self.settle_delay_ms} (must be >= 0)")

        if self.process_stop_timeout_sec <= 0:
            raise ValueError(
                f"Invalid process stop timeout: {self.process_stop_timeout_sec} (must be > 0)"
            )

        if bool(self.ssl_cert) != bool(self.ssl_key):
            raise ValueError("RECORDER_SSL_CERT and RECORDER_SSL_KEY must be set together")

        for path in (self.ssl_cert, self.ssl_key):
            if path is not None and not Path(path).exists():
                raise FileNotFoundError(f"TLS file does not exist: {path}")

        # Validate log level
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config() -> RecorderConfig:
    """
    Load and validate recorder configuration from environment variables.

    Raises:
        ValueError: If configuration is invalid
        FileNotFoundError: If a configured file does not exist
    """
    try:
        return RecorderConfig.load_config()
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        raise
