"""Pytest configuration and fixtures for ami_transcribe tests."""

from __future__ import annotations

import json
from collections import deque
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from ami_transcribe.config import SessionTimings
from ami_transcribe.errors import AmiTransportError
from ami_transcribe.protocol import AUDIO_MARKER, Packet, PacketCodec, SessionOptions


class FakeTransport:
    """Scripted stand-in for AmiWsClient.

    Inbound frames are queued up front or in reaction to writes: ``on_start``
    after the ``s`` command, ``on_audio[n]`` after the n-th audio frame
    (1-based) and ``on_end`` after the ``e`` command. Every drain and write is
    appended to ``events`` so tests can check ordering. With
    ``close_after_write`` the server goes away once the inbound queue runs dry
    after that many writes.
    """

    def __init__(
        self,
        *,
        initial: list[str] | None = None,
        on_start: list[str] | None = None,
        on_audio: dict[int, list[str]] | None = None,
        on_end: list[str] | None = None,
        close_after_write: int | None = None,
        fail_on_write: int | None = None,
    ) -> None:
        self.codec = PacketCodec()
        self.inbound: deque[str] = deque(initial or [])
        self.on_start = on_start if on_start is not None else ["s"]
        self.on_audio = on_audio or {}
        self.on_end = on_end if on_end is not None else ["e"]
        self.close_after_write = close_after_write
        self._closing = False
        self.fail_on_write = fail_on_write

        self.written: list[str | bytes] = []
        self.events: list[tuple[str, Any]] = []
        self.closed = False
        self.close_calls = 0

    @property
    def audio_frames(self) -> list[bytes]:
        return [frame for frame in self.written if isinstance(frame, bytes)]

    @property
    def text_frames(self) -> list[str]:
        return [frame for frame in self.written if isinstance(frame, str)]

    async def write(self, frame: str | bytes) -> None:
        if self.fail_on_write is not None and len(self.written) + 1 >= self.fail_on_write:
            raise AmiTransportError("failed to send message: broken pipe")
        self.written.append(frame)
        self.events.append(("write", frame))

        if isinstance(frame, bytes):
            assert frame[0] == AUDIO_MARKER
            self.inbound.extend(self.on_audio.get(len(self.audio_frames), []))
        elif frame.startswith("s "):
            self.inbound.extend(self.on_start)
        elif frame == "e":
            self.inbound.extend(self.on_end)

        if self.close_after_write is not None and len(self.written) >= self.close_after_write:
            self._closing = True

    async def drain(self) -> AsyncIterator[Packet]:
        self.events.append(("drain", len(self.inbound)))
        while self.inbound:
            frame = self.inbound.popleft()
            if self._closing and not self.inbound:
                self.closed = True
            yield self.codec.decode(frame)
        if self._closing:
            self.closed = True

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


def _result_frame(text: str, *, code: str = "", message: str = "") -> str:
    """Build an ``A`` frame the way the service sends it."""
    payload = {
        "results": [
            {
                "tokens": [
                    {
                        "written": text,
                        "confidence": 0.98,
                        "starttime": 100,
                        "endtime": 900,
                        "spoken": text,
                    }
                ],
                "confidence": 0.98,
                "starttime": 100,
                "endtime": 900,
                "tags": [],
                "rulename": "",
                "text": text,
            }
        ],
        "utteranceid": "20240101/00/abc",
        "text": text,
        "code": code,
        "message": message,
    }
    return "A" + json.dumps(payload, ensure_ascii=False)


@pytest.fixture
def options() -> SessionOptions:
    return SessionOptions(
        audio_format="16k",
        grammar_profile="-a-general",
        authorization="secret-key",
    )


@pytest.fixture
def fast_timings() -> SessionTimings:
    """Tiny chunks and no sleeping."""
    return SessionTimings(
        chunk_size=4,
        handshake_poll_interval_s=0,
        pacing_delay_s=0,
        end_poll_interval_s=0,
    )


@pytest.fixture
def make_transport() -> Callable[..., FakeTransport]:
    return FakeTransport


@pytest.fixture
def result_frame() -> Callable[..., str]:
    return _result_frame
