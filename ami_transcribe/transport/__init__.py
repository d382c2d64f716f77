"""Transport layer for AmiVoice sessions.

Components:
- ws: endpoint selection and WebSocket connection
- ws_client: frame writes and non-blocking reads
"""

from .ws import LOGGING_ENDPOINT, NO_LOGGING_ENDPOINT, connect_websocket, resolve_endpoint
from .ws_client import AmiWsClient, AmiWsMessage, AmiWsMessageType

__all__ = [
    "LOGGING_ENDPOINT",
    "NO_LOGGING_ENDPOINT",
    "AmiWsClient",
    "AmiWsMessage",
    "AmiWsMessageType",
    "connect_websocket",
    "resolve_endpoint",
]
