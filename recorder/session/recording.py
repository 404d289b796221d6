"""
Recording orchestration: start-record and stop-record for one peer.

Starting a recording publishes every producer of the peer to the transcoder:
one plain RTP transport per producer, connected to locally allocated ports,
and one paused consumer on it. The consumers are resumed (and a keyframe is
requested) after a settle delay so the transcoder is listening before media
flows.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from recorder.config import RecorderConfig
from recorder.engine.base import (
    TRANSPORT_KIND_PLAIN,
    Consumer,
    MediaEngine,
    Producer,
    Router,
    Transport,
)
from recorder.process.sdp import SDP_ADDRESS, MediaDescriptor, MediaStream
from recorder.process.supervisor import ProcessSupervisor, SupervisedProcess
from recorder.session.registry import SessionRegistry

logger = logging.getLogger(__name__)


def consumer_rtp_capabilities(router: Router, kind: str) -> Dict[str, Any]:
    """Capabilities for a plain consumer: the router's first codec of the same kind."""
    codecs = [
        codec for codec in router.rtp_capabilities.get("codecs", [])
        if codec.get("kind") == kind
    ]
    return {"codecs": codecs[:1], "rtcpFeedback": []}


class RecordingCoordinator:

    def __init__(
        self,
        registry: SessionRegistry,
        supervisor: ProcessSupervisor,
        engine: MediaEngine,
        router: Router,
        config: RecorderConfig,
    ):
        self.registry = registry
        self.supervisor = supervisor
        self.engine = engine
        self.router = router
        self.config = config

    async def start_record(self, session_id: str) -> Optional[asyncio.Task]:
        """
        Start recording every producer of the peer.

        Returns the background task that resumes the consumers after the
        settle delay, or None when the peer has no producers.

        Raises:
            RecordingStateError: If the peer is already recording
            PortExhaustedError, ProcessSpawnError, engine errors: After this
                attempt's ports and transports have been rolled back
        """
        self.registry.begin_recording(session_id)
        producers = self.registry.producers(session_id)
        if not producers:
            logger.info(f"Peer {session_id} has no producers, recording without media")
            return None

        transports: List[Transport] = []
        consumers: List[Consumer] = []
        ports: List[int] = []
        process: Optional[SupervisedProcess] = None
        try:
            streams = []
            for producer in producers:
                stream, consumer = await self._publish(session_id, producer, transports, ports)
                streams.append(stream)
                consumers.append(consumer)

            descriptor = MediaDescriptor(streams=streams, file_name=str(int(time.time() * 1000)))
            process = await asyncio.to_thread(self.supervisor.start, descriptor)
            self.registry.attach_recording(session_id, process, transports, consumers)
        except BaseException:
            logger.warning(f"Peer {session_id} failed to start recording, rolling back")
            await self._rollback(session_id, process, transports, ports)
            raise

        return asyncio.create_task(
            self._resume_after_settle(session_id, consumers),
            name=f"settle-{session_id}",
        )

    async def stop_record(self, session_id: str) -> None:
        await self.registry.stop_recording(session_id)

    async def _publish(
        self,
        session_id: str,
        producer: Producer,
        transports: List[Transport],
        ports: List[int],
    ) -> Tuple[MediaStream, Consumer]:
        transport = await self.engine.create_transport(
            TRANSPORT_KIND_PLAIN,
            self.router,
            self.config.plain_transport_options(),
        )
        transports.append(transport)

        rtp_port = self.registry.acquire_port(session_id)
        ports.append(rtp_port)
        rtcp_port = None
        if not self.config.rtcp_mux:
            rtcp_port = self.registry.acquire_port(session_id)
            ports.append(rtcp_port)

        await transport.connect(ip=SDP_ADDRESS, port=rtp_port, rtcp_port=rtcp_port)

        rtp_capabilities = consumer_rtp_capabilities(self.router, producer.kind)
        consumer = await transport.consume(producer.id, rtp_capabilities, paused=True)

        local_rtcp_port = None
        if transport.rtcp_tuple:
            local_rtcp_port = transport.rtcp_tuple.get("localPort")

        logger.debug(
            f"Peer {session_id} publishing {producer.kind} producer {producer.id} "
            f"to {SDP_ADDRESS}:{rtp_port}"
        )
        stream = MediaStream(
            kind=producer.kind,
            remote_rtp_port=rtp_port,
            rtp_parameters=consumer.rtp_parameters,
            rtp_capabilities=rtp_capabilities,
            remote_rtcp_port=rtcp_port,
            local_rtcp_port=local_rtcp_port,
        )
        return stream, consumer

    async def _rollback(
        self,
        session_id: str,
        process: Optional[SupervisedProcess],
        transports: List[Transport],
        ports: List[int],
    ) -> None:
        if process is not None:
            await asyncio.to_thread(process.stop, self.config.process_stop_timeout_sec)
        self.registry.release_ports(session_id, ports)
        for transport in transports:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"Error closing transport {transport.id}: {e}")
        self.registry.abort_recording(session_id)

    async def _resume_after_settle(self, session_id: str, consumers: List[Consumer]) -> None:
        await asyncio.sleep(self.config.settle_delay_sec)
        for consumer in consumers:
            try:
                await consumer.resume()
                await consumer.request_key_frame()
            except Exception as e:
                logger.warning(f"Peer {session_id} failed to resume consumer {consumer.id}: {e}")
        logger.info(f"Peer {session_id} recording {len(consumers)} stream(s)")
