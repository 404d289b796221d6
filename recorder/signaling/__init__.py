"""
WebSocket signaling.
"""

from recorder.signaling.gateway import SignalingGateway, parse_message

__all__ = ["SignalingGateway", "parse_message"]
