"""
Media engine interfaces.

The recorder never negotiates ICE/DTLS/SRTP or routes RTP itself. It drives an
external SFU-style media engine through these interfaces. An engine
implementation wraps the real media server (worker process, remote control
API, ...) and is selected with RECORDER_MEDIA_ENGINE.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

TRANSPORT_KIND_WEBRTC = "webrtc"
TRANSPORT_KIND_PLAIN = "plain"


class Producer(ABC):
    """Inbound media source attached to a client-facing transport."""

    id: str
    kind: str  # "audio" | "video"

    async def close(self) -> None:
        pass


class Consumer(ABC):
    """Outbound media flow attached to a plain transport."""

    id: str
    kind: str
    rtp_parameters: Dict[str, Any]

    @abstractmethod
    async def resume(self) -> None:
        """Start forwarding media (consumers are created paused)."""
        pass

    @abstractmethod
    async def request_key_frame(self) -> None:
        """Ask the producing endpoint for a fresh keyframe."""
        pass

    async def close(self) -> None:
        pass


class Transport(ABC):
    """
    Negotiated media transport.

    Attributes:
        id: Opaque transport id
        kind: TRANSPORT_KIND_WEBRTC or TRANSPORT_KIND_PLAIN
        ice_parameters, ice_candidates, dtls_parameters: Negotiation
            parameters for client-facing transports (None for plain ones)
        rtcp_tuple: Local RTCP tuple of a plain transport without rtcp-mux,
            e.g. {"localPort": 40001}, else None
    """

    id: str
    kind: str
    ice_parameters: Optional[Dict[str, Any]] = None
    ice_candidates: Optional[List[Dict[str, Any]]] = None
    dtls_parameters: Optional[Dict[str, Any]] = None
    rtcp_tuple: Optional[Dict[str, Any]] = None

    @abstractmethod
    async def connect(self, **params: Any) -> None:
        """
        Complete the transport handshake.

        Client-facing transports take dtls_parameters; plain transports take
        ip, port and rtcp_port of the remote receiver.
        """
        pass

    @abstractmethod
    async def produce(self, kind: str, rtp_parameters: Dict[str, Any]) -> Producer:
        pass

    @abstractmethod
    async def consume(
        self,
        producer_id: str,
        rtp_capabilities: Dict[str, Any],
        paused: bool = False,
    ) -> Consumer:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the transport and every producer/consumer on it."""
        pass


class Router(ABC):
    """Media router; rtp_capabilities is sent verbatim to clients."""

    rtp_capabilities: Dict[str, Any]


class MediaEngine(ABC):
    """Entry point of a media engine implementation."""

    @abstractmethod
    async def initialize(self) -> None:
        """Start workers / connect to the engine. Failure is fatal."""
        pass

    @abstractmethod
    async def create_router(self, media_codecs: List[Dict[str, Any]]) -> Router:
        pass

    @abstractmethod
    async def create_transport(
        self,
        kind: str,
        router: Router,
        options: Optional[Dict[str, Any]] = None,
    ) -> Transport:
        pass

    async def close(self) -> None:
        pass
