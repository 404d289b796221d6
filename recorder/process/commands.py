"""
Command lines for the supervised processes.

One transcoder command per sink mode:
- file:   remux RTP into a file under RECORDER_RECORD_DIR
- socket: transcode to MPEG-TS and send it to RECORDER_SOCKET_TARGET
- serial: decode video to raw yuv420p on stdout, framed by the sink writer
"""

import os
import sys
from typing import List

from recorder.config import RecorderConfig
from recorder.process.sdp import MediaDescriptor, codec_info

SDP_INPUT_ARGS = [
    "-protocol_whitelist", "pipe,udp,rtp",
    "-fflags", "+genpts",
    "-f", "sdp",
    "-i", "pipe:0",
]


def record_file_path(config: RecorderConfig, descriptor: MediaDescriptor) -> str:
    """Output path for file mode; H264 video goes to Matroska, everything else to WebM."""
    extension = "webm"
    video = descriptor.stream("video")
    if video is not None and codec_info("video", video.rtp_parameters).codec_name.upper() == "H264":
        extension = "mkv"
    return os.path.join(config.record_dir, f"{descriptor.file_name}.{extension}")


def build_transcoder_cmd(config: RecorderConfig, descriptor: MediaDescriptor) -> List[str]:
    """
    Build the transcoder command for the configured sink mode.

    Raises:
        ValueError: If the descriptor cannot be handled in this sink mode
    """
    cmd = [config.ffmpeg_bin, "-hide_banner", "-loglevel", config.ffmpeg_log_level]
    cmd += SDP_INPUT_ARGS

    has_video = descriptor.stream("video") is not None
    has_audio = descriptor.stream("audio") is not None

    if config.sink_mode == "file":
        if has_video:
            cmd += ["-map", "0:v:0", "-c:v", "copy"]
        if has_audio:
            cmd += ["-map", "0:a:0", "-strict", "-2", "-c:a", "copy"]
        cmd += ["-flags", "+global_header", "-y", record_file_path(config, descriptor)]

    elif config.sink_mode == "socket":
        if has_video:
            cmd += ["-map", "0:v:0", "-c:v", "libx264", "-preset", "ultrafast", "-tune", "zerolatency"]
        if has_audio:
            cmd += ["-map", "0:a:0", "-c:a", "aac"]
        cmd += ["-f", "mpegts", config.socket_target]

    elif config.sink_mode == "serial":
        if not has_video:
            raise ValueError("Serial sink requires a video stream")
        width, _, height = config.video_size.partition("x")
        cmd += [
            "-map", "0:v:0",
            "-vf", f"scale={width}:{height}",
            "-pix_fmt", "yuv420p",
            "-f", "rawvideo",
            "-",
        ]

    else:
        raise ValueError(f"Unknown sink mode: {config.sink_mode}")

    return cmd


def build_sink_writer_cmd(config: RecorderConfig) -> List[str]:
    """Command for the framing sink writer that follows the transcoder in serial mode."""
    return [
        sys.executable, "-m", "recorder.framing.sink_writer",
        "--device", config.serial_device,
        "--baud-rate", str(config.serial_baud_rate),
        "--buffer-size", str(config.buffer_size),
    ]


def uses_sink_writer(config: RecorderConfig) -> bool:
    return config.sink_mode == "serial"
