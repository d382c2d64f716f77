"""Tests for AmiWsClient WebSocket wrapper."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, InvalidURI
from websockets.frames import Close

from ami_transcribe.errors import (
    AmiConnectionError,
    AmiHandshakeError,
    AmiParseError,
    AmiTimeout,
    AmiTransportError,
)
from ami_transcribe.protocol import StartAck, StartEvent
from ami_transcribe.transport.ws import (
    LOGGING_ENDPOINT,
    NO_LOGGING_ENDPOINT,
    connect_websocket,
    resolve_endpoint,
)
from ami_transcribe.transport.ws_client import (
    AmiWsClient,
    AmiWsMessage,
    AmiWsMessageType,
)


def _connected_client(mock_ws) -> AmiWsClient:
    client = AmiWsClient()
    client._ws = mock_ws
    return client


def _idle_ws() -> MagicMock:
    """A connection whose recv never completes."""
    never = asyncio.Event()

    async def recv():
        await never.wait()

    mock_ws = MagicMock()
    mock_ws.recv = recv
    return mock_ws


class TestAmiWsMessage:
    """Tests for AmiWsMessage dataclass."""

    def test_closed_message_has_no_data(self):
        """Test creating a closed message."""
        msg = AmiWsMessage(type=AmiWsMessageType.CLOSED)
        assert msg.data is None

    def test_message_is_frozen(self):
        """Test that messages are immutable."""
        msg = AmiWsMessage(type=AmiWsMessageType.TEXT, data="s")
        with pytest.raises(AttributeError):
            msg.data = "modified"  # type: ignore[misc]


class TestAmiWsClientConnect:
    """Tests for AmiWsClient.connect()."""

    @pytest.mark.asyncio
    async def test_connect_success(self):
        """Test successful WebSocket connection."""
        mock_ws = AsyncMock()

        with patch(
            "ami_transcribe.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ) as mock_connect:
            client = AmiWsClient()
            await client.connect(LOGGING_ENDPOINT, timeout=3.0)

            mock_connect.assert_called_once_with(
                LOGGING_ENDPOINT,
                ping_interval=20,
                timeout=3.0,
            )
            assert client._ws is mock_ws
            assert not client.closed

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self):
        """Test connection errors surface as transport errors."""
        with patch(
            "ami_transcribe.transport.ws_client.connect_websocket",
            side_effect=AmiConnectionError("refused"),
        ):
            client = AmiWsClient()
            with pytest.raises(AmiTransportError, match="refused"):
                await client.connect(LOGGING_ENDPOINT)


class TestAmiWsClientClose:
    """Tests for AmiWsClient.close()."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Test the connection is closed once however often close is called."""
        mock_ws = AsyncMock()
        client = _connected_client(mock_ws)

        await client.close()
        await client.close()

        mock_ws.close.assert_awaited_once()
        assert client.closed

    @pytest.mark.asyncio
    async def test_close_without_connection(self):
        """Test close before connect does nothing."""
        client = AmiWsClient()
        await client.close()
        assert not client.closed

    @pytest.mark.asyncio
    async def test_close_timeout_is_logged(self, caplog):
        """Test a hanging close handshake only logs a warning."""
        mock_ws = AsyncMock()
        client = _connected_client(mock_ws)

        with patch(
            "ami_transcribe.transport.ws_client.asyncio.wait_for",
            side_effect=TimeoutError,
        ):
            await client.close()

        assert "close timed out" in caplog.text
        assert client.closed

    @pytest.mark.asyncio
    async def test_close_failure(self):
        """Test socket errors during close raise a transport error."""
        mock_ws = AsyncMock()
        mock_ws.close.side_effect = OSError("reset")
        client = _connected_client(mock_ws)

        with pytest.raises(AmiTransportError, match="failed to close websocket: reset"):
            await client.close()


class TestAmiWsClientWrite:
    """Tests for AmiWsClient.write()."""

    @pytest.mark.asyncio
    async def test_write_text_and_binary(self):
        """Test frames are handed to the connection unchanged."""
        mock_ws = AsyncMock()
        client = _connected_client(mock_ws)

        await client.write("e")
        await client.write(b"p\x00\x01")

        assert [call.args[0] for call in mock_ws.send.await_args_list] == ["e", b"p\x00\x01"]

    @pytest.mark.asyncio
    async def test_write_not_connected(self):
        """Test writing before connect raises AmiConnectionError."""
        client = AmiWsClient()
        with pytest.raises(AmiConnectionError, match="not connected"):
            await client.write("e")

    @pytest.mark.asyncio
    async def test_write_failure(self):
        """Test send failures are wrapped."""
        mock_ws = AsyncMock()
        mock_ws.send.side_effect = ConnectionClosedError(None, None)
        client = _connected_client(mock_ws)

        with pytest.raises(AmiTransportError, match="failed to send message"):
            await client.write("e")


class TestAmiWsClientTryRead:
    """Tests for AmiWsClient.try_read()."""

    @pytest.mark.asyncio
    async def test_text_frame(self):
        """Test a buffered text frame is returned."""
        mock_ws = AsyncMock()
        mock_ws.recv.return_value = "s"
        client = _connected_client(mock_ws)

        msg = await client.try_read()

        assert msg == AmiWsMessage(AmiWsMessageType.TEXT, "s")

    @pytest.mark.asyncio
    async def test_would_block(self):
        """Test an empty buffer reports WOULD_BLOCK without waiting."""
        client = _connected_client(_idle_ws())

        msg = await asyncio.wait_for(client.try_read(), timeout=1.0)

        assert msg.type is AmiWsMessageType.WOULD_BLOCK
        assert not client.closed

    @pytest.mark.asyncio
    async def test_binary_frames_are_skipped(self):
        """Test binary frames are dropped and the next text frame returned."""
        mock_ws = AsyncMock()
        mock_ws.recv.side_effect = [b"\x00\x01", "S100"]
        client = _connected_client(mock_ws)

        msg = await client.try_read()

        assert msg == AmiWsMessage(AmiWsMessageType.TEXT, "S100")

    @pytest.mark.asyncio
    async def test_clean_close(self):
        """Test a normal close from the server reports CLOSED."""
        mock_ws = AsyncMock()
        mock_ws.recv.side_effect = ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True)
        client = _connected_client(mock_ws)

        msg = await client.try_read()

        assert msg.type is AmiWsMessageType.CLOSED
        assert client.closed
        assert (await client.try_read()).type is AmiWsMessageType.CLOSED
        mock_ws.recv.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_read_failure(self):
        """Test an abnormal close raises a transport error."""
        mock_ws = AsyncMock()
        mock_ws.recv.side_effect = ConnectionClosedError(None, None)
        client = _connected_client(mock_ws)

        with pytest.raises(AmiTransportError, match="failed to read message"):
            await client.try_read()
        assert client.closed

    @pytest.mark.asyncio
    async def test_read_not_connected(self):
        """Test reading before connect raises AmiConnectionError."""
        with pytest.raises(AmiConnectionError):
            await AmiWsClient().try_read()


class TestAmiWsClientDrain:
    """Tests for AmiWsClient.drain()."""

    @pytest.mark.asyncio
    async def test_drain_until_would_block(self):
        """Test drain decodes buffered frames and stops when none are left."""
        frames = iter(["S5", "s"])
        never = asyncio.Event()

        async def recv():
            try:
                return next(frames)
            except StopIteration:
                await never.wait()

        mock_ws = MagicMock()
        mock_ws.recv = recv
        client = _connected_client(mock_ws)

        packets = [packet async for packet in client.drain()]

        assert [packet.data for packet in packets] == [StartEvent(5), StartAck(None)]
        assert [packet.raw for packet in packets] == ["S5", "s"]

    @pytest.mark.asyncio
    async def test_drain_stops_on_close(self):
        """Test drain ends quietly when the server closed the connection."""
        mock_ws = AsyncMock()
        mock_ws.recv.side_effect = [
            "e",
            ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True),
        ]
        client = _connected_client(mock_ws)

        packets = [packet async for packet in client.drain()]

        assert len(packets) == 1
        assert client.closed

    @pytest.mark.asyncio
    async def test_drain_parse_error(self):
        """Test undecodable frames raise from the drain."""
        mock_ws = AsyncMock()
        mock_ws.recv.return_value = "A{broken"
        client = _connected_client(mock_ws)

        with pytest.raises(AmiParseError):
            async for _ in client.drain():
                pass


class TestConnectWebsocket:
    """Tests for endpoint selection and connection error mapping."""

    def test_resolve_endpoint(self):
        """Test log and no-log endpoints."""
        assert resolve_endpoint(with_log=True) == LOGGING_ENDPOINT
        assert resolve_endpoint(with_log=False) == NO_LOGGING_ENDPOINT
        assert NO_LOGGING_ENDPOINT.endswith("/nolog/")

    @pytest.mark.asyncio
    async def test_connect_passes_options(self):
        """Test ping interval is passed through and message size is unbounded."""
        mock_ws = AsyncMock()
        with patch(
            "ami_transcribe.transport.ws.websockets.connect",
            new=AsyncMock(return_value=mock_ws),
        ) as mock_connect:
            ws = await connect_websocket(LOGGING_ENDPOINT, ping_interval=None)

        assert ws is mock_ws
        assert mock_connect.call_args.args == (LOGGING_ENDPOINT,)
        assert mock_connect.call_args.kwargs["ping_interval"] is None
        assert mock_connect.call_args.kwargs["max_size"] is None

    @pytest.mark.asyncio
    async def test_timeout_names_endpoint(self):
        """Test the timeout error says which endpoint did not answer."""
        with patch(
            "ami_transcribe.transport.ws.websockets.connect",
            new=AsyncMock(side_effect=TimeoutError()),
        ):
            with pytest.raises(AmiTimeout, match=r"acp-api\.amivoice\.com/v1/ after 2s"):
                await connect_websocket(LOGGING_ENDPOINT, timeout=2.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (TimeoutError(), AmiTimeout),
            (InvalidURI("http://x", "scheme isn't ws or wss"), AmiHandshakeError),
            (OSError("connection refused"), AmiConnectionError),
        ],
    )
    async def test_connect_error_mapping(self, error, expected):
        """Test library errors map onto the client error hierarchy."""
        with patch(
            "ami_transcribe.transport.ws.websockets.connect",
            new=AsyncMock(side_effect=error),
        ):
            with pytest.raises(expected):
                await connect_websocket(LOGGING_ENDPOINT)
