"""
Session description synthesis for the transcoder.

The transcoder learns where to listen for RTP and how to depacketize it from
an SDP document written to its stdin. The document is built from the
parameters negotiated for each plain transport / consumer pair.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SDP_ADDRESS = "127.0.0.1"
CRLF = "\r\n"

# Media sections are emitted in this order
KIND_ORDER = ("video", "audio")


@dataclass
class MediaStream:
    """One consumed producer as seen by the transcoder."""
    kind: str
    remote_rtp_port: int
    rtp_parameters: Dict[str, Any]
    rtp_capabilities: Dict[str, Any] = field(default_factory=dict)
    remote_rtcp_port: Optional[int] = None
    local_rtcp_port: Optional[int] = None


@dataclass
class MediaDescriptor:
    """Aggregate media description handed to the ProcessSupervisor."""
    streams: List[MediaStream]
    file_name: str

    def stream(self, kind: str) -> Optional[MediaStream]:
        for stream in self.streams:
            if stream.kind == kind:
                return stream
        return None

    @property
    def kinds(self) -> List[str]:
        return [stream.kind for stream in self.ordered_streams()]

    def ordered_streams(self) -> List[MediaStream]:
        def rank(stream: MediaStream) -> int:
            return KIND_ORDER.index(stream.kind) if stream.kind in KIND_ORDER else len(KIND_ORDER)
        return sorted(self.streams, key=rank)


@dataclass
class CodecInfo:
    payload_type: int
    codec_name: str
    clock_rate: int
    channels: Optional[int] = None
    parameters: Dict[str, Any] = field(default_factory=dict)


def codec_info(kind: str, rtp_parameters: Dict[str, Any]) -> CodecInfo:
    """
    Extract the first codec of a consumer's RTP parameters.

    Raises:
        ValueError: If the parameters contain no codec
    """
    codecs = rtp_parameters.get("codecs") or []
    if not codecs:
        raise ValueError(f"No codec in {kind} rtp parameters")

    codec = codecs[0]
    mime_type = codec["mimeType"]
    prefix = f"{kind}/"
    codec_name = mime_type[len(prefix):] if mime_type.lower().startswith(prefix) else mime_type

    return CodecInfo(
        payload_type=codec["payloadType"],
        codec_name=codec_name,
        clock_rate=codec["clockRate"],
        channels=codec.get("channels", 2) if kind == "audio" else None,
        parameters=dict(codec.get("parameters") or {}),
    )


def create_sdp_text(descriptor: MediaDescriptor) -> str:
    """
    Build the SDP document describing every stream of a recording.

    Raises:
        ValueError: If the descriptor has no streams or a stream has no codec
    """
    if not descriptor.streams:
        raise ValueError("Cannot create SDP without media streams")

    sdp_lines = [
        "v=0",
        f"o=- 0 0 IN IP4 {SDP_ADDRESS}",
        "s=FFmpeg",
        f"c=IN IP4 {SDP_ADDRESS}",
        "t=0 0",
    ]

    for stream in descriptor.ordered_streams():
        info = codec_info(stream.kind, stream.rtp_parameters)
        rtpmap = f"{info.codec_name}/{info.clock_rate}"
        if info.channels is not None:
            rtpmap += f"/{info.channels}"

        sdp_lines.append(f"m={stream.kind} {stream.remote_rtp_port} RTP/AVP {info.payload_type}")
        sdp_lines.append(f"a=rtpmap:{info.payload_type} {rtpmap}")
        if info.parameters:
            fmtp = ";".join(f"{key}={value}" for key, value in info.parameters.items())
            sdp_lines.append(f"a=fmtp:{info.payload_type} {fmtp}")
        if stream.remote_rtcp_port is not None:
            sdp_lines.append(f"a=rtcp:{stream.remote_rtcp_port}")
        sdp_lines.append("a=sendonly")

    sdp_lines.append("")
    return CRLF.join(sdp_lines)
