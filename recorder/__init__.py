"""
Recording signaling server.

Terminates WebSocket signaling sessions, negotiates media through an external
media engine, and supervises the transcoding processes that write each
session's media to a file, a UDP socket, or a framed serial stream.
"""

__version__ = "0.1.0"
