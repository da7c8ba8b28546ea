"""Exception hierarchy for the stream client.

Every exception here is recoverable: a transport error costs one
connection (the client reconnects) and a decode error costs one packet.
"""

from typing import Optional


class StreamError(Exception):
    """Base exception for the stream client."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransportError(StreamError):
    """Raised when the socket to the relay fails or drops."""

    def __init__(self, message: str = "WebSocket error", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class PacketDecodeError(StreamError):
    """Raised when an inbound frame is not a valid sensor packet."""

    def __init__(self, message: str = "Invalid sensor packet", raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw
