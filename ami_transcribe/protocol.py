"""Packet codec for the AmiVoice websocket command/event protocol.

Inbound frames are text: a single command character followed by an optional
suffix. Outbound frames are the ``s`` start command and ``e`` end command as
text, and audio as binary frames prefixed with the ``p`` marker byte.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeGuard

from .config import mask_secret
from .errors import AmiParseError

AUDIO_MARKER = 112  # ord("p")
END_FRAME = "e"
AUDIO_RAW_PLACEHOLDER = "p<audio data>"
UINT64_MAX = 2**64 - 1


def _is_mapping(value: Any) -> TypeGuard[Mapping[str, Any]]:
    return isinstance(value, Mapping)


def _require_list(data: Mapping[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list")
    return value


def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


def _optional_number(data: Mapping[str, Any], key: str) -> float:
    value = data.get(key, 0)
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number")
    return float(value)


def _optional_int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer")
    return value


def _objects(data: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    items = _require_list(data, key)
    for idx, item in enumerate(items):
        if not _is_mapping(item):
            raise ValueError(f"'{key}' item at index {idx} must be an object")
    return items


# -----------------------------------------------------------------------------
# Session options
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionOptions:
    """Start-command options, fixed for the lifetime of a session."""

    audio_format: str
    grammar_profile: str
    authorization: str = field(repr=False)

    def to_dict(self, *, mask: bool = True) -> dict[str, str]:
        """Convert options to a dict, masking the authorization key by default."""
        return {
            "audio_format": self.audio_format,
            "grammar_profile": self.grammar_profile,
            "authorization": mask_secret(self.authorization) if mask else self.authorization,
        }


# -----------------------------------------------------------------------------
# Recognition payloads
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class UtteranceToken:
    """A token of an intermediate recognition result."""

    written: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UtteranceToken:
        return cls(written=_require_str(data, "written"))


@dataclass(frozen=True)
class UtteranceResult:
    """One hypothesis of an intermediate recognition result."""

    tokens: tuple[UtteranceToken, ...] = ()
    text: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UtteranceResult:
        return cls(
            tokens=tuple(UtteranceToken.from_dict(t) for t in _objects(data, "tokens")),
            text=_optional_str(data, "text"),
        )


@dataclass(frozen=True)
class UtterancePayload:
    """Payload of a ``U`` event."""

    results: tuple[UtteranceResult, ...]
    text: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UtterancePayload:
        return cls(
            results=tuple(UtteranceResult.from_dict(r) for r in _objects(data, "results")),
            text=_require_str(data, "text"),
        )


@dataclass(frozen=True)
class ResultToken:
    """A token of a recognition result, with timing in milliseconds."""

    written: str
    confidence: float = 0.0
    start_ms: int = 0
    end_ms: int = 0
    spoken: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResultToken:
        return cls(
            written=_require_str(data, "written"),
            confidence=_optional_number(data, "confidence"),
            start_ms=_optional_int(data, "starttime"),
            end_ms=_optional_int(data, "endtime"),
            spoken=_optional_str(data, "spoken"),
        )


@dataclass(frozen=True)
class ResultSegment:
    """One recognized segment of a ``A`` event."""

    tokens: tuple[ResultToken, ...] = ()
    confidence: float = 0.0
    start_ms: int = 0
    end_ms: int = 0
    text: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResultSegment:
        return cls(
            tokens=tuple(ResultToken.from_dict(t) for t in _objects(data, "tokens")),
            confidence=_optional_number(data, "confidence"),
            start_ms=_optional_int(data, "starttime"),
            end_ms=_optional_int(data, "endtime"),
            text=_optional_str(data, "text"),
        )


@dataclass(frozen=True)
class ResultPayload:
    """Payload of a ``A`` event.

    ``code`` is empty for a successful recognition. A non-empty code comes
    with a human readable ``message``.
    """

    results: tuple[ResultSegment, ...]
    text: str
    utterance_id: str = ""
    code: str = ""
    message: str = ""

    @property
    def is_error(self) -> bool:
        return bool(self.code)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResultPayload:
        return cls(
            results=tuple(ResultSegment.from_dict(r) for r in _objects(data, "results")),
            text=_require_str(data, "text"),
            utterance_id=_optional_str(data, "utteranceid"),
            code=_optional_str(data, "code"),
            message=_optional_str(data, "message"),
        )


# -----------------------------------------------------------------------------
# Packet variants
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class StartCommand:
    options: SessionOptions


@dataclass(frozen=True)
class AudioChunk:
    size: int = 0


@dataclass(frozen=True)
class EndCommand:
    pass


@dataclass(frozen=True)
class StartAck:
    error: str | None = None


@dataclass(frozen=True)
class ProgressAck:
    error: str


@dataclass(frozen=True)
class EndAck:
    error: str | None = None


@dataclass(frozen=True)
class StartEvent:
    timestamp: int


@dataclass(frozen=True)
class EndEvent:
    timestamp: int


@dataclass(frozen=True)
class CancelEvent:
    pass


@dataclass(frozen=True)
class UtteranceEvent:
    payload: UtterancePayload


@dataclass(frozen=True)
class ResultEvent:
    payload: ResultPayload


@dataclass(frozen=True)
class GrammarEvent:
    text: str | None = None


@dataclass(frozen=True)
class Unrecognized:
    pass


PacketData = (
    StartCommand
    | AudioChunk
    | EndCommand
    | StartAck
    | ProgressAck
    | EndAck
    | StartEvent
    | EndEvent
    | CancelEvent
    | UtteranceEvent
    | ResultEvent
    | GrammarEvent
    | Unrecognized
)

_DESCRIPTIONS: dict[type, str] = {
    StartCommand: "Send s command",
    AudioChunk: "Send p command",
    EndCommand: "Send e command",
    StartAck: "Receive s command response",
    ProgressAck: "Receive p command response",
    EndAck: "Receive e command response",
    StartEvent: "Receive S event",
    EndEvent: "Receive E event",
    CancelEvent: "Receive C event",
    UtteranceEvent: "Receive U event",
    ResultEvent: "Receive A event",
    GrammarEvent: "Receive G event",
    Unrecognized: "Other data",
}


@dataclass(frozen=True)
class Packet:
    """A classified protocol frame with its capture time."""

    received_at: datetime
    data: PacketData
    raw: str

    @property
    def kind(self) -> str:
        return type(self.data).__name__

    def describe(self) -> str:
        """Return a one-line summary for verbose logging."""
        return f"[{self.received_at.isoformat()}] {_DESCRIPTIONS[type(self.data)]}"

    def to_dict(self) -> dict[str, Any]:
        """Convert packet to a JSON-serializable dict."""
        return {
            "received_at": self.received_at.isoformat(),
            "kind": self.kind,
            "data": _to_dict(self.data),
            "raw": self.raw,
        }


def _to_dict(obj: object) -> object:
    """Recursively convert packet data dataclasses to dicts."""
    if isinstance(obj, SessionOptions):
        return obj.to_dict()
    if isinstance(obj, tuple):
        return [_to_dict(item) for item in obj]
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _to_dict(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    return obj


# -----------------------------------------------------------------------------
# Codec
# -----------------------------------------------------------------------------


def _parse_timestamp(suffix: str, what: str) -> int:
    if not suffix:
        raise AmiParseError(f"failed to get {what}")
    if not (suffix.isascii() and suffix.isdigit()):
        raise AmiParseError(f"failed to convert {what} to integer: {suffix!r}")
    value = int(suffix)
    if value > UINT64_MAX:
        raise AmiParseError(f"{what} out of range: {suffix}")
    return value


def _parse_json(suffix: str, what: str) -> Mapping[str, Any]:
    if not suffix:
        raise AmiParseError(f"failed to get {what} payload")
    try:
        data = json.loads(suffix)
    except json.JSONDecodeError as err:
        raise AmiParseError(f"failed to deserialize {what} payload: {err}") from err
    if not _is_mapping(data):
        raise AmiParseError(f"failed to deserialize {what} payload: not an object")
    return data


class PacketCodec:
    """Encode outbound commands and decode inbound frames.

    The codec remembers the last capture time it handed out so packet
    timestamps never go backwards within a session, even if the wall clock
    does.
    """

    def __init__(self) -> None:
        self._last_received_at: datetime | None = None

    def _now(self) -> datetime:
        now = datetime.now(tz=UTC)
        if self._last_received_at is not None and now < self._last_received_at:
            now = self._last_received_at
        self._last_received_at = now
        return now

    def decode(self, frame: str) -> Packet:
        """Classify an inbound text frame.

        Raises:
            AmiParseError: If the suffix does not match what the command
                character requires.
        """
        return Packet(received_at=self._now(), data=self._decode_data(frame), raw=frame)

    @staticmethod
    def _decode_data(frame: str) -> PacketData:
        if not frame:
            return Unrecognized()

        command = frame[0]
        suffix = frame[1:]
        if suffix.startswith(" "):
            suffix = suffix[1:]

        if command == "s":
            return StartAck(suffix or None)
        if command == "p":
            if not suffix:
                raise AmiParseError("failed to get error message")
            return ProgressAck(suffix)
        if command == "e":
            return EndAck(suffix or None)
        if command == "S":
            return StartEvent(_parse_timestamp(suffix, "start time"))
        if command == "E":
            return EndEvent(_parse_timestamp(suffix, "end time"))
        if command == "C":
            return CancelEvent()
        if command == "U":
            data = _parse_json(suffix, "U event")
            try:
                return UtteranceEvent(UtterancePayload.from_dict(data))
            except ValueError as err:
                raise AmiParseError(f"failed to deserialize U event payload: {err}") from err
        if command == "A":
            data = _parse_json(suffix, "A event")
            try:
                return ResultEvent(ResultPayload.from_dict(data))
            except ValueError as err:
                raise AmiParseError(f"failed to deserialize A event payload: {err}") from err
        if command == "G":
            return GrammarEvent(suffix or None)
        return Unrecognized()

    def encode_start(self, options: SessionOptions) -> tuple[str, Packet]:
        """Build the ``s`` command frame and its log packet."""
        frame = (
            f"s {options.audio_format} {options.grammar_profile}"
            f" authorization={options.authorization}"
        )
        masked = (
            f"s {options.audio_format} {options.grammar_profile}"
            f" authorization={options.to_dict()['authorization']}"
        )
        return frame, Packet(self._now(), StartCommand(options), masked)

    def encode_audio(self, chunk: bytes) -> tuple[bytes, Packet]:
        """Build a binary audio frame and its log packet."""
        frame = bytes([AUDIO_MARKER]) + chunk
        return frame, Packet(self._now(), AudioChunk(len(chunk)), AUDIO_RAW_PLACEHOLDER)

    def encode_end(self) -> tuple[str, Packet]:
        """Build the ``e`` command frame and its log packet."""
        return END_FRAME, Packet(self._now(), EndCommand(), END_FRAME)
