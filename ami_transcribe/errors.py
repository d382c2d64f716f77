"""Client error types for AmiVoice session interactions."""

from __future__ import annotations


class AmiClientError(Exception):
    """Base error for AmiVoice client failures."""


class AmiParseError(AmiClientError):
    """Inbound frame could not be decoded."""


class AmiProtocolError(AmiClientError):
    """Server signaled an error in an acknowledgment or event."""


class AmiTransportError(AmiClientError):
    """Reading from or writing to the websocket failed."""


class AmiTimeout(AmiTransportError):
    """Timeout while connecting to the service."""


class AmiConnectionError(AmiTransportError):
    """Network connection to the service failed."""


class AmiHandshakeError(AmiTransportError):
    """WebSocket handshake failed."""
