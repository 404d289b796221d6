# recorder/service.py

import asyncio
import logging
import ssl
from typing import Optional

import websockets

from recorder.config import RecorderConfig
from recorder.engine.base import MediaEngine, Router
from recorder.engine.loader import load_engine
from recorder.ports import PortAllocator
from recorder.process.supervisor import ProcessSupervisor
from recorder.session.recording import RecordingCoordinator
from recorder.session.registry import SessionRegistry
from recorder.signaling.gateway import SignalingGateway

logger = logging.getLogger(__name__)


def create_ssl_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert_file, key_file)
    return context


class RecorderService:
    def __init__(self, config: RecorderConfig, engine: Optional[MediaEngine] = None):
        """
        Initialize RecorderService.

        Args:
            config: Loaded and validated configuration
            engine: Media engine to use (default: None, loads RECORDER_MEDIA_ENGINE)
        """
        self.config = config
        self.engine = engine
        self.router: Optional[Router] = None

        self.ports = PortAllocator(config.rtp_port_min, config.rtp_port_max)
        self.registry = SessionRegistry(self.ports, config.process_stop_timeout_sec)
        self.supervisor = ProcessSupervisor(config)
        self.recorder: Optional[RecordingCoordinator] = None
        self.gateway: Optional[SignalingGateway] = None

        self._server = None
        # Created in start() so it belongs to the running loop
        self._stopped: Optional[asyncio.Event] = None

    @property
    def port(self) -> Optional[int]:
        """Bound listen port (useful when configured with port 0)."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """
        Initialize the media engine and start listening for connections.

        Raises:
            Any error from engine loading or initialization (fatal at startup)
        """
        logger.info(f"Starting recorder [sink mode: {self.config.sink_mode}]")
        self._stopped = asyncio.Event()

        if self.engine is None:
            self.engine = load_engine(self.config.media_engine)
        await self.engine.initialize()
        self.router = await self.engine.create_router(self.config.media_codecs)

        self.recorder = RecordingCoordinator(
            self.registry, self.supervisor, self.engine, self.router, self.config
        )
        self.gateway = SignalingGateway(
            self.registry, self.engine, self.router, self.recorder, self.config
        )

        ssl_context = None
        if self.config.ssl_enabled:
            ssl_context = create_ssl_context(self.config.ssl_cert, self.config.ssl_key)

        self._server = await websockets.serve(
            self.gateway.handle_connection,
            self.config.host,
            self.config.port,
            ssl=ssl_context,
        )
        scheme = "wss" if ssl_context else "ws"
        logger.info(f"Signaling server listening on {scheme}://{self.config.host}:{self.port}")

    async def serve_forever(self) -> None:
        if self._stopped is None:
            raise RuntimeError("RecorderService.start() must be called first")
        await self._stopped.wait()

    async def stop(self) -> None:
        """Close the listener, then every peer, process and the engine."""
        logger.info("Stopping recorder...")
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        await self.registry.close()
        await asyncio.to_thread(self.supervisor.stop_all)

        if self.engine is not None:
            await self.engine.close()

        if self._stopped is not None:
            self._stopped.set()
        logger.info("Recorder stopped")
