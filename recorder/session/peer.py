"""
Peer: everything one signaling connection owns.
"""

import enum
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from recorder.engine.base import Consumer, Producer, Transport
from recorder.process.supervisor import SupervisedProcess


class PeerState(enum.Enum):
    CONNECTED = "connected"
    NEGOTIATING = "negotiating"
    RECORDING = "recording"
    CLOSED = "closed"


@dataclass
class RecordingResources:
    """Resources of one recording, detached from a Peer for teardown."""
    process: Optional[SupervisedProcess] = None
    ports: List[int] = field(default_factory=list)
    transports: List[Transport] = field(default_factory=list)
    consumers: List[Consumer] = field(default_factory=list)


@dataclass
class Peer:
    """
    Session state of one connection.

    Mutations go through SessionRegistry, which holds `lock` while changing
    the collections below.
    """
    session_id: str
    state: PeerState = PeerState.CONNECTED
    transports: Dict[str, Transport] = field(default_factory=dict)
    producers: List[Producer] = field(default_factory=list)
    consumers: List[Consumer] = field(default_factory=list)
    process: Optional[SupervisedProcess] = None
    ports: List[int] = field(default_factory=list)
    recording_transports: List[Transport] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_recording(self) -> bool:
        return self.state == PeerState.RECORDING

    def detach_recording(self) -> RecordingResources:
        """Take ownership of the recording resources. Caller holds `lock`."""
        resources = RecordingResources(
            process=self.process,
            ports=list(self.ports),
            transports=list(self.recording_transports),
            consumers=list(self.consumers),
        )
        for transport in self.recording_transports:
            self.transports.pop(transport.id, None)
        self.process = None
        self.ports.clear()
        self.recording_transports.clear()
        self.consumers.clear()
        return resources
