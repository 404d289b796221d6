"""
Media engine integration.

- MediaEngine, Router, Transport, Producer, Consumer: interfaces the recorder drives
- load_engine: instantiate the engine named by RECORDER_MEDIA_ENGINE
"""

from recorder.engine.base import (
    TRANSPORT_KIND_PLAIN,
    TRANSPORT_KIND_WEBRTC,
    Consumer,
    MediaEngine,
    Producer,
    Router,
    Transport,
)
from recorder.engine.loader import load_engine

__all__ = [
    "TRANSPORT_KIND_PLAIN",
    "TRANSPORT_KIND_WEBRTC",
    "Consumer",
    "MediaEngine",
    "Producer",
    "Router",
    "Transport",
    "load_engine",
]
