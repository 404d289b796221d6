"""
SessionRegistry - process-wide map of live peers.

The registry is the only place that mutates a Peer. Teardown detaches
resources from the Peer under its lock before releasing them, so concurrent
triggers (connection close, stop-record, service shutdown) release every
port, transport and process exactly once.
"""

import asyncio
import logging
import threading
import uuid
from typing import Dict, Iterable, List, Optional

from recorder.engine.base import Consumer, Producer, Transport
from recorder.errors import (
    PeerNotFoundError,
    PortNotLeasedError,
    RecordingStateError,
    TransportNotFoundError,
)
from recorder.ports import PortAllocator
from recorder.process.supervisor import SupervisedProcess
from recorder.session.peer import Peer, PeerState, RecordingResources

logger = logging.getLogger(__name__)


class SessionRegistry:

    def __init__(self, port_allocator: PortAllocator, process_stop_timeout: float = 2.0):
        self.port_allocator = port_allocator
        self.process_stop_timeout = process_stop_timeout
        self._peers: Dict[str, Peer] = {}
        self._lock = threading.Lock()

    # Peer map

    def create_peer(self) -> Peer:
        with self._lock:
            session_id = uuid.uuid4().hex
            while session_id in self._peers:
                session_id = uuid.uuid4().hex
            peer = Peer(session_id=session_id)
            self._peers[session_id] = peer
        logger.info(f"Peer {session_id} created")
        return peer

    def get_peer(self, session_id: str) -> Peer:
        with self._lock:
            peer = self._peers.get(session_id)
        if peer is None:
            raise PeerNotFoundError(session_id)
        return peer

    def has_peer(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._peers

    def peers(self) -> List[Peer]:
        with self._lock:
            return list(self._peers.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    # Negotiation

    def add_transport(self, session_id: str, transport: Transport) -> None:
        peer = self.get_peer(session_id)
        with peer.lock:
            peer.transports[transport.id] = transport
            if peer.state == PeerState.CONNECTED:
                peer.state = PeerState.NEGOTIATING

    def get_transport(self, session_id: str, transport_id: str) -> Transport:
        peer = self.get_peer(session_id)
        with peer.lock:
            transport = peer.transports.get(transport_id)
        if transport is None:
            raise TransportNotFoundError(transport_id)
        return transport

    def add_producer(self, session_id: str, producer: Producer) -> None:
        peer = self.get_peer(session_id)
        with peer.lock:
            peer.producers.append(producer)

    def add_consumer(self, session_id: str, consumer: Consumer) -> None:
        peer = self.get_peer(session_id)
        with peer.lock:
            peer.consumers.append(consumer)

    def producers(self, session_id: str) -> List[Producer]:
        peer = self.get_peer(session_id)
        with peer.lock:
            return list(peer.producers)

    # Ports

    def acquire_port(self, session_id: str) -> int:
        """
        Lease a port for the peer.

        Raises:
            PeerNotFoundError: If the peer does not exist
            PortExhaustedError: If the pool is empty
        """
        peer = self.get_peer(session_id)
        port = self.port_allocator.acquire()
        with peer.lock:
            peer.ports.append(port)
        return port

    def release_ports(self, session_id: str, ports: Iterable[int]) -> None:
        """
        Release ports still held by the peer.

        Ports already detached by a concurrent teardown are skipped.
        """
        with self._lock:
            peer = self._peers.get(session_id)
        if peer is None:
            return
        with peer.lock:
            owned = [port for port in ports if port in peer.ports]
            for port in owned:
                peer.ports.remove(port)
        self._release_ports(owned)

    def _release_ports(self, ports: Iterable[int]) -> None:
        for port in ports:
            try:
                self.port_allocator.release(port)
            except PortNotLeasedError as e:
                logger.warning(f"Port release skipped: {e}")

    # Recording lifecycle

    def begin_recording(self, session_id: str) -> Peer:
        """
        Move the peer to RECORDING.

        Raises:
            RecordingStateError: If the peer is already recording or closed
        """
        peer = self.get_peer(session_id)
        with peer.lock:
            if peer.state == PeerState.RECORDING:
                raise RecordingStateError(f"Peer {session_id} is already recording")
            if peer.state == PeerState.CLOSED:
                raise RecordingStateError(f"Peer {session_id} is closed")
            peer.state = PeerState.RECORDING
        return peer

    def attach_recording(
        self,
        session_id: str,
        process: Optional[SupervisedProcess],
        transports: List[Transport],
        consumers: List[Consumer],
    ) -> None:
        """Hand the resources of a started recording to the peer."""
        peer = self.get_peer(session_id)
        with peer.lock:
            if peer.state != PeerState.RECORDING:
                raise RecordingStateError(f"Peer {session_id} is not recording")
            peer.process = process
            for transport in transports:
                peer.transports[transport.id] = transport
            peer.recording_transports.extend(transports)
            peer.consumers.extend(consumers)

    def abort_recording(self, session_id: str) -> None:
        """Return the peer to NEGOTIATING after a failed start."""
        with self._lock:
            peer = self._peers.get(session_id)
        if peer is None:
            return
        with peer.lock:
            if peer.state == PeerState.RECORDING:
                peer.state = PeerState.NEGOTIATING

    async def stop_recording(self, session_id: str) -> None:
        """
        Stop the peer's recording and release its resources.

        Raises:
            PeerNotFoundError: If the peer does not exist
            RecordingStateError: If the peer is not recording
        """
        peer = self.get_peer(session_id)
        with peer.lock:
            if peer.state != PeerState.RECORDING:
                raise RecordingStateError(f"Peer {session_id} is not recording")
            resources = peer.detach_recording()
            peer.state = PeerState.NEGOTIATING

        await self._teardown_recording(resources)
        logger.info(f"Peer {session_id} stopped recording")

    async def destroy_peer(self, session_id: str) -> None:
        """Remove the peer and release everything it owns. Idempotent."""
        with self._lock:
            peer = self._peers.pop(session_id, None)
        if peer is None:
            logger.debug(f"Peer {session_id} already destroyed")
            return

        with peer.lock:
            if peer.state == PeerState.CLOSED:
                return
            resources = peer.detach_recording()
            transports = list(peer.transports.values())
            peer.transports.clear()
            peer.producers.clear()
            peer.state = PeerState.CLOSED

        await self._teardown_recording(resources)
        for transport in transports:
            await self._close_transport(transport)
        logger.info(f"Peer {session_id} destroyed")

    async def close(self) -> None:
        for peer in self.peers():
            await self.destroy_peer(peer.session_id)

    async def _teardown_recording(self, resources: RecordingResources) -> None:
        # Ports go back to the pool only after the process has exited
        if resources.process is not None:
            await asyncio.to_thread(resources.process.stop, self.process_stop_timeout)
        self._release_ports(resources.ports)
        for transport in resources.transports:
            await self._close_transport(transport)

    @staticmethod
    async def _close_transport(transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport {transport.id}: {e}")
