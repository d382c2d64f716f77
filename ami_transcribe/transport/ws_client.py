"""WebSocket client wrapper for AmiVoice sessions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosedOK, WebSocketException

from ..errors import AmiConnectionError, AmiTransportError
from ..protocol import Packet, PacketCodec
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_LOGGER = logging.getLogger(__name__)


class AmiWsMessageType(Enum):
    """Outcome of a single non-blocking read."""

    TEXT = "text"
    WOULD_BLOCK = "would_block"
    CLOSED = "closed"


@dataclass(frozen=True)
class AmiWsMessage:
    """Normalized read outcome."""

    type: AmiWsMessageType
    data: str | None = None


class AmiWsClient:
    """Wrapper around the websockets library with poll-style reads.

    Writes block until the frame is handed to the connection. Reads never
    wait: ``try_read`` reports ``WOULD_BLOCK`` when no complete message is
    buffered, so the caller can interleave reads with its own work on a
    single event loop.
    """

    def __init__(self, codec: PacketCodec | None = None, *, read_timeout: float = 0.0) -> None:
        self._ws: ClientConnection | None = None
        self._codec = codec or PacketCodec()
        self._read_timeout = read_timeout
        self._closed = False
        self._close_called = False

    @property
    def codec(self) -> PacketCodec:
        return self._codec

    @property
    def closed(self) -> bool:
        """True once the peer closed the connection or close() was called."""
        return self._closed

    async def connect(
        self,
        url: str,
        *,
        ping_interval: int | None = 20,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the recognition endpoint."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )
        self._closed = False
        _LOGGER.debug("Connected to %s", url)

    async def close(self) -> None:
        """Close the websocket connection. Later calls are no-ops."""
        if self._ws is None or self._close_called:
            return
        self._close_called = True
        self._closed = True
        try:
            await asyncio.wait_for(self._ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("WebSocket close timed out")
        except (OSError, WebSocketException) as err:
            raise AmiTransportError(f"failed to close websocket: {err}") from err

    async def write(self, frame: str | bytes) -> None:
        """Send one text or binary frame.

        Raises:
            AmiConnectionError: If not connected
            AmiTransportError: If the frame could not be sent
        """
        if self._ws is None:
            raise AmiConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(frame)
        except (OSError, WebSocketException) as err:
            raise AmiTransportError(f"failed to send message: {err}") from err

    async def try_read(self) -> AmiWsMessage:
        """Return the next buffered text frame without waiting for one.

        Binary frames are skipped. A clean close from the peer yields
        ``CLOSED``; any other read failure raises ``AmiTransportError``.
        """
        if self._ws is None:
            raise AmiConnectionError("WebSocket is not connected")

        while True:
            if self._closed:
                return AmiWsMessage(AmiWsMessageType.CLOSED)
            try:
                async with asyncio.timeout(self._read_timeout):
                    msg = await self._ws.recv()
            except TimeoutError:
                return AmiWsMessage(AmiWsMessageType.WOULD_BLOCK)
            except ConnectionClosedOK:
                _LOGGER.debug("WebSocket closed by server")
                self._closed = True
                return AmiWsMessage(AmiWsMessageType.CLOSED)
            except (OSError, WebSocketException) as err:
                self._closed = True
                raise AmiTransportError(f"failed to read message: {err}") from err

            normalized = self._normalize_message(msg)
            if normalized is None:
                continue
            return normalized

    async def drain(self) -> AsyncIterator[Packet]:
        """Yield every packet currently available, stopping at would-block.

        Raises:
            AmiParseError: If a frame cannot be decoded
            AmiTransportError: If reading fails
        """
        while True:
            message = await self.try_read()
            if message.type is not AmiWsMessageType.TEXT or message.data is None:
                return
            yield self._codec.decode(message.data)

    @staticmethod
    def _normalize_message(msg: Any) -> AmiWsMessage | None:
        """Normalize a received frame; binary frames are not part of the protocol."""
        if isinstance(msg, (bytes, bytearray, memoryview)):
            _LOGGER.debug("Ignoring binary frame (%d bytes)", len(msg))
            return None
        return AmiWsMessage(AmiWsMessageType.TEXT, str(msg))
