"""Session state machine for AmiVoice streaming transcription.

One session runs on a single event loop without helper tasks:

- send the ``s`` command and poll until the server acknowledges it
- upload the audio in small frames, draining inbound events before each one
- send the ``e`` command and poll until the server acknowledges it

Every outbound write is preceded by a full drain of the inbound frames that
are already available, so fatal acknowledgments are seen before more audio
goes out and the inbound backlog never grows while uploading.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from .config import SessionTimings
from .errors import AmiClientError, AmiProtocolError, AmiTransportError
from .protocol import (
    EndAck,
    Packet,
    PacketData,
    ProgressAck,
    ResultEvent,
    ResultPayload,
    SessionOptions,
    StartAck,
)
from .trace import ResultSink, SessionResult
from .transport.ws_client import AmiWsClient

if TYPE_CHECKING:
    from .protocol import PacketCodec

_LOGGER = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of a transcription session."""

    IDLE = "idle"
    AWAIT_START_ACK = "await_start_ack"
    STREAMING = "streaming"
    AWAIT_END_ACK = "await_end_ack"
    CLOSED = "closed"
    ABORTED = "aborted"


_TERMINAL_STATES = frozenset({SessionState.CLOSED, SessionState.ABORTED})
_LIVE_STATES = frozenset(
    {SessionState.AWAIT_START_ACK, SessionState.STREAMING, SessionState.AWAIT_END_ACK}
)


class AmiSession:
    """Drive one transcription session over an open transport.

    Usage:
        client = AmiWsClient()
        await client.connect(resolve_endpoint(with_log=True))
        with open("speech.wav", "rb") as audio:
            session = AmiSession(client, audio, options, capture_packets=True)
            result = await session.exec()

    The session owns the transport from construction on and closes it when
    ``exec`` finishes, whatever the outcome.
    """

    def __init__(
        self,
        transport: AmiWsClient,
        audio: BinaryIO,
        options: SessionOptions,
        *,
        capture_packets: bool = False,
        timings: SessionTimings | None = None,
    ) -> None:
        """Initialize session.

        Args:
            transport: Connected transport; its codec is used for encoding too
            audio: Binary audio source, read sequentially
            options: Start-command options
            capture_packets: Keep every inbound packet for the JSON output
            timings: Chunk size and polling cadence
        """
        self.options = options
        self.handshake_complete = False

        self._transport = transport
        self._codec: PacketCodec = transport.codec
        self._audio = audio
        self._timings = timings or SessionTimings()
        self._timings.validate()

        self._sink = ResultSink(options, capture_packets=capture_packets)
        self._state = SessionState.IDLE
        self._terminal_error: str | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def terminal_error(self) -> str | None:
        return self._terminal_error

    @property
    def transcript_lines(self) -> list[str]:
        return list(self._sink.transcript_lines)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def exec(self) -> SessionResult:
        """Run the session to completion and return what it produced.

        Failures do not raise: the first one becomes the result's
        ``error_message`` and ends the session.
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError("A session can only be executed once")

        try:
            await self._run()
        except AmiClientError as err:
            self._abort(str(err))
        finally:
            await self._close_transport()

        return self._sink.finalize(self._terminal_error)

    # -------------------------------------------------------------------------
    # Internal: State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if self._state is not state:
            _LOGGER.debug("State: %s → %s", self._state.value, state.value)
            self._state = state

    def _abort(self, message: str) -> None:
        if self._state is SessionState.CLOSED:
            _LOGGER.warning("Error after session closed: %s", message)
            return
        self._terminal_error = message
        self._set_state(SessionState.ABORTED)
        _LOGGER.info("Session aborted: %s", message)

    async def _run(self) -> None:
        await self._start()

        while self._state is SessionState.AWAIT_START_ACK:
            await asyncio.sleep(self._timings.handshake_poll_interval_s)
            await self._pump()

        if self._state is not SessionState.STREAMING:
            return

        await self._stream_audio()

        while self._state is SessionState.AWAIT_END_ACK:
            await self._pump()
            if self._state is SessionState.AWAIT_END_ACK:
                await asyncio.sleep(self._timings.end_poll_interval_s)

    async def _start(self) -> None:
        frame, packet = self._codec.encode_start(self.options)
        self._set_state(SessionState.AWAIT_START_ACK)
        await self._send(frame, packet)

    async def _stream_audio(self) -> None:
        chunks = 0
        while True:
            chunk = self._read_chunk()
            if not chunk:
                break
            frame, packet = self._codec.encode_audio(chunk)
            await self._send(frame, packet)
            if self._state is not SessionState.STREAMING:
                break
            chunks += 1
            await asyncio.sleep(self._timings.pacing_delay_s)

        _LOGGER.debug("Uploaded %d audio frames", chunks)

        if self._state is SessionState.STREAMING:
            frame, packet = self._codec.encode_end()
            if await self._send(frame, packet):
                self._set_state(SessionState.AWAIT_END_ACK)
                return

        if self._state is SessionState.CLOSED:
            await self._send_end_after_server_close()

    async def _send_end_after_server_close(self) -> None:
        """Send the ``e`` command once after the server ended the session early.

        The outcome is already decided: frames still buffered behind the end
        acknowledgment are recorded without being handled, and a failed write
        is only logged.
        """
        await self._drain_after_close()
        if self._transport.closed:
            return
        frame, packet = self._codec.encode_end()
        self._log_packet(packet)
        try:
            await self._transport.write(frame)
        except AmiTransportError as err:
            _LOGGER.warning("End command not delivered after early close: %s", err)

    async def _drain_after_close(self) -> None:
        async with contextlib.aclosing(self._transport.drain()) as packets:
            async for packet in packets:
                self._sink.record(packet)
                self._log_packet(packet)

    def _read_chunk(self) -> bytes:
        try:
            return self._audio.read(self._timings.chunk_size)
        except OSError as err:
            raise AmiClientError(f"failed to read audio: {err}") from err

    async def _close_transport(self) -> None:
        try:
            await self._transport.close()
        except AmiTransportError as err:
            _LOGGER.warning("Failed to close transport: %s", err)

    # -------------------------------------------------------------------------
    # Internal: Frame I/O
    # -------------------------------------------------------------------------

    async def _send(self, frame: str | bytes, packet: Packet) -> bool:
        """Drain pending frames, then write unless the drain ended the session.

        Returns:
            True if the frame was written
        """
        await self._pump()
        if self._state in _TERMINAL_STATES:
            return False
        self._log_packet(packet)
        await self._transport.write(frame)
        return True

    async def _pump(self) -> None:
        """Handle every inbound packet that is available right now."""
        async with contextlib.aclosing(self._transport.drain()) as packets:
            async for packet in packets:
                self._sink.record(packet)
                self._log_packet(packet)
                self._handle(packet.data)
                if self._state in _TERMINAL_STATES:
                    return

        if self._transport.closed and self._state in _LIVE_STATES:
            raise AmiTransportError("connection closed by server before the session ended")

    @staticmethod
    def _log_packet(packet: Packet) -> None:
        if _LOGGER.isEnabledFor(logging.DEBUG):
            _LOGGER.debug("%r", packet)
        else:
            _LOGGER.info("%s", packet.describe())

    # -------------------------------------------------------------------------
    # Internal: Protocol Handlers
    # -------------------------------------------------------------------------

    def _handle(self, data: PacketData) -> None:
        if self._state is SessionState.AWAIT_START_ACK:
            self._handle_before_start_ack(data)
        else:
            self._handle_after_start_ack(data)

    def _handle_before_start_ack(self, data: PacketData) -> None:
        if isinstance(data, StartAck):
            if data.error:
                raise AmiProtocolError(data.error)
            self.handshake_complete = True
            self._set_state(SessionState.STREAMING)
            _LOGGER.info("Start acknowledged, streaming audio")
        elif isinstance(data, ProgressAck):
            raise AmiProtocolError(data.error)
        elif isinstance(data, EndAck) and data.error:
            raise AmiProtocolError(data.error)
        elif isinstance(data, ResultEvent):
            self._handle_result(data.payload)
        else:
            _LOGGER.debug("Ignoring %s before start acknowledgment", type(data).__name__)

    def _handle_after_start_ack(self, data: PacketData) -> None:
        if isinstance(data, ProgressAck):
            raise AmiProtocolError(data.error)

        if isinstance(data, EndAck):
            if data.error:
                raise AmiProtocolError(data.error)
            if self._state is SessionState.STREAMING:
                _LOGGER.info("Server ended the session before the audio was exhausted")
            self._set_state(SessionState.CLOSED)
        elif isinstance(data, ResultEvent):
            self._handle_result(data.payload)
        elif isinstance(data, StartAck) and data.error:
            raise AmiProtocolError(data.error)

    def _handle_result(self, payload: ResultPayload) -> None:
        if payload.is_error:
            raise AmiProtocolError(payload.message or payload.code)
        self._sink.append_transcript(payload.text)


async def transcribe_file(
    url: str,
    audio_path: Path,
    options: SessionOptions,
    *,
    capture_packets: bool = False,
    timings: SessionTimings | None = None,
    connect_timeout: float = 15.0,
) -> SessionResult:
    """Connect to ``url`` and transcribe the audio file at ``audio_path``.

    Raises:
        OSError: If the audio file cannot be opened
        ValueError: If ``timings`` is invalid; nothing is connected then
        AmiTransportError: If the connection cannot be established
    """
    with audio_path.open("rb") as audio:
        client = AmiWsClient()
        session = AmiSession(
            client,
            audio,
            options,
            capture_packets=capture_packets,
            timings=timings,
        )
        await client.connect(url, timeout=connect_timeout)
        return await session.exec()
