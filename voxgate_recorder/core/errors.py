"""Exception types raised by the VoxGate capture pipeline.

Only :class:`ConfigurationError` is fatal; it is raised before any capture
starts.  The other errors are logged by the component that catches them and
the pipeline keeps running.
"""


class RecorderError(Exception):
    """Base class for all recorder errors."""


class ConfigurationError(RecorderError, ValueError):
    """Invalid or missing settings detected at startup."""


class CaptureError(RecorderError):
    """A capture device or producer failed to deliver a chunk or frame."""


class SessionError(RecorderError):
    """A recording session was used outside its begin/finalize lifecycle."""


class SessionFinalizeError(SessionError):
    """Concatenating or encoding a finished session failed."""


class DeliveryError(RecorderError):
    """The storage backend failed to store an artifact."""

    def __init__(self, message: str, attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts
