"""Streaming transcription client for the AmiVoice Cloud Platform."""

__version__ = "0.1.0"

from .errors import (
    AmiClientError,
    AmiConnectionError,
    AmiHandshakeError,
    AmiParseError,
    AmiProtocolError,
    AmiTimeout,
    AmiTransportError,
)
from .protocol import Packet, PacketCodec, SessionOptions
from .session import AmiSession, SessionState, transcribe_file
from .trace import ResultSink, SessionResult
from .transport import AmiWsClient, AmiWsMessage, AmiWsMessageType, resolve_endpoint

__all__ = [
    "AmiClientError",
    "AmiConnectionError",
    "AmiHandshakeError",
    "AmiParseError",
    "AmiProtocolError",
    "AmiSession",
    "AmiTimeout",
    "AmiTransportError",
    "AmiWsClient",
    "AmiWsMessage",
    "AmiWsMessageType",
    "Packet",
    "PacketCodec",
    "ResultSink",
    "SessionOptions",
    "SessionResult",
    "SessionState",
    "__version__",
    "resolve_endpoint",
    "transcribe_file",
]
