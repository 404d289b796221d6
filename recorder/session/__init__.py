"""
Session state: peers, the registry that owns them, and recording orchestration.
"""

from recorder.session.peer import Peer, PeerState
from recorder.session.recording import RecordingCoordinator
from recorder.session.registry import SessionRegistry

__all__ = ["Peer", "PeerState", "RecordingCoordinator", "SessionRegistry"]
