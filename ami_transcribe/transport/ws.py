"""WebSocket helpers for the AmiVoice recognition endpoints."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    AmiConnectionError,
    AmiHandshakeError,
    AmiTimeout,
)

LOGGING_ENDPOINT = "wss://acp-api.amivoice.com/v1/"
NO_LOGGING_ENDPOINT = "wss://acp-api.amivoice.com/v1/nolog/"


def resolve_endpoint(with_log: bool) -> str:
    """Pick the endpoint that does or does not retain server-side logs."""
    return LOGGING_ENDPOINT if with_log else NO_LOGGING_ENDPOINT


async def connect_websocket(
    url: str,
    *,
    ping_interval: int | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Open the recognition socket at ``url``.

    The service authenticates inside the ``s`` command, so the upgrade request
    carries no credentials. Final results (``A`` frames) hold every token of
    an utterance and can be large, so the incoming message size is unbounded.

    Args:
        url: One of the endpoints from ``resolve_endpoint``, or a test server
        ping_interval: Keepalive ping interval in seconds, None to disable
        timeout: Seconds allowed for TCP, TLS and the upgrade together

    Raises:
        AmiTimeout: The endpoint did not answer within ``timeout``
        AmiHandshakeError: Bad URL or the upgrade was refused
        AmiConnectionError: Network level failure
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise AmiTimeout(f"timed out connecting to {url} after {timeout:g}s") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise AmiHandshakeError(f"recognition endpoint {url} refused the upgrade: {err}") from err
    except (OSError, WebSocketException) as err:
        raise AmiConnectionError(f"failed to connect by websocket: {err}") from err
