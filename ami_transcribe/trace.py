"""Session trace: packet log, transcript lines and the terminal error.

The sink is filled by the session while it runs and bundled into a
``SessionResult`` once the session is over. The result is what the output
writer serializes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .protocol import Packet, SessionOptions


@dataclass
class SessionResult:
    """Everything a finished session produced.

    ``error_message`` is None when the session closed cleanly. Transcript
    lines collected before a failure are kept either way.
    """

    options: SessionOptions
    packets: list[Packet] = field(default_factory=lambda: [])
    transcript_lines: list[str] = field(default_factory=lambda: [])
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error_message is None

    @property
    def transcript(self) -> str:
        return "\n".join(self.transcript_lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "options": self.options.to_dict(),
            "packets": [packet.to_dict() for packet in self.packets],
            "transcript_lines": list(self.transcript_lines),
        }
        if self.error_message is not None:
            result["error_message"] = self.error_message
        return result


class ResultSink:
    """Accumulates what a session observes.

    Packets are only kept when capture is enabled so a long session without
    JSON output does not hold every frame in memory.
    """

    def __init__(self, options: SessionOptions, *, capture_packets: bool = False) -> None:
        self.options = options
        self.capture_packets = capture_packets
        self.packets: list[Packet] = []
        self.transcript_lines: list[str] = []

    def record(self, packet: Packet) -> None:
        if self.capture_packets:
            self.packets.append(packet)

    def append_transcript(self, text: str) -> None:
        self.transcript_lines.append(text)

    def finalize(self, terminal_error: str | None = None) -> SessionResult:
        return SessionResult(
            options=self.options,
            packets=list(self.packets),
            transcript_lines=list(self.transcript_lines),
            error_message=terminal_error,
        )
