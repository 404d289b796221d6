"""
Error taxonomy for the recorder.

Every error raised while handling a client request derives from RecorderError
and carries a short ``code`` used in structured error responses.
"""


class RecorderError(Exception):
    """Base class for recorder errors."""
    code = "internal-error"


class ProtocolError(RecorderError):
    """Malformed client message or unknown action."""
    code = "protocol-error"


class NotFoundError(RecorderError):
    """A referenced session or transport does not exist."""
    code = "not-found"


class PeerNotFoundError(NotFoundError):
    def __init__(self, session_id):
        super().__init__(f"Peer with id {session_id} was not found")
        self.session_id = session_id


class TransportNotFoundError(NotFoundError):
    def __init__(self, transport_id):
        super().__init__(f"Transport with id {transport_id} was not found")
        self.transport_id = transport_id


class RecordingStateError(RecorderError):
    """Recording requested in a state that does not allow it."""
    code = "invalid-state"


class PortExhaustedError(RecorderError):
    """No free port left in the pool."""
    code = "resource-exhausted"


class PortNotLeasedError(RecorderError):
    """Release of a port that is not currently leased."""
    code = "invalid-state"


class ProcessError(RecorderError):
    """Failure of a supervised external process."""
    code = "process-error"


class ProcessSpawnError(ProcessError):
    """An external process could not be started."""
    pass
