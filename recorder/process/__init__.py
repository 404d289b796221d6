"""
Recording process chain: session description, command lines, supervision.
"""

from recorder.process.sdp import MediaDescriptor, MediaStream, create_sdp_text
from recorder.process.supervisor import ProcessState, ProcessSupervisor, SupervisedProcess

__all__ = [
    "MediaDescriptor",
    "MediaStream",
    "ProcessState",
    "ProcessSupervisor",
    "SupervisedProcess",
    "create_sdp_text",
]
