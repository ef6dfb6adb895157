"""
Streaming error taxonomy.

MalformedFrame and UnknownEventType classify frames that the normalizer drops;
they are logged, never raised past the normalizer. The remaining errors end or
prevent a turn.
"""
from typing import Optional


class StreamingError(Exception):
    """Base class for streaming session errors."""
    pass


class MalformedFrame(StreamingError):
    """Frame payload is not valid JSON (dropped)."""
    pass


class UnknownEventType(StreamingError):
    """Frame carries a type tag with no handler for its source (dropped)."""
    pass


class ConnectionLost(StreamingError):
    """No frame arrived within the heartbeat window; the job may still be running server-side."""

    def __init__(self, idle_seconds: float, timeout: float):
        self.idle_seconds = idle_seconds
        self.timeout = timeout
        super().__init__(
            f"No frame received for {idle_seconds:.1f}s (timeout {timeout:.1f}s)"
        )


class BackendUnavailable(StreamingError):
    """Pre-flight health check failed; the turn never started."""
    pass


class SessionBusy(StreamingError):
    """A turn is already in flight for this session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} already has a turn in flight")


class BackendError(StreamingError):
    """Backend reported a failure (explicit error payload or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
