"""Custom exception types for the realtime subsystem."""


class RealtimeError(Exception):
    """Base exception for all realtime subsystem errors."""

    pass


class AuthenticationError(RealtimeError):
    """Raised when a handshake or REST request cannot be tied to a session.

    The ``reason`` is sent verbatim as the websocket close reason.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ProtocolParseError(RealtimeError):
    """Raised when an inbound frame is not valid JSON."""

    pass


class UnknownMessageTypeError(RealtimeError):
    """Raised when an inbound frame carries no known ``type``."""

    pass


class InvalidFrameError(RealtimeError):
    """Raised when a frame of a known type has malformed fields."""

    def __init__(self, frame_type: str, detail: str = "") -> None:
        super().__init__(f"Invalid {frame_type} frame")
        self.frame_type = frame_type
        self.detail = detail


class PersistenceError(RealtimeError):
    """Raised when the relational store cannot be read or written."""

    pass
