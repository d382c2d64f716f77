"""Persisted configuration: API key storage and session timing settings."""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

APP_DIR_NAME = "ami-transcribe"
CONFIG_FILENAME = "config.json"


def user_config_dir(*, app_dir_name: str = APP_DIR_NAME) -> Path:
    if sys.platform.startswith("win"):
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
        if base:
            return Path(base) / app_dir_name
        return Path.home() / "AppData" / "Local" / app_dir_name

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / app_dir_name

    base = os.getenv("XDG_CONFIG_HOME")
    if base:
        return Path(base) / app_dir_name
    return Path.home() / ".config" / app_dir_name


def default_config_path() -> Path:
    return user_config_dir() / CONFIG_FILENAME


def mask_secret(value: str, *, unmasked_prefix: int = 3) -> str:
    if not value:
        return value
    if len(value) <= unmasked_prefix:
        return "*" * len(value)
    return value[:unmasked_prefix] + "****"


@dataclass(slots=True)
class SessionTimings:
    """Chunking and polling cadence of a transcription session.

    The defaults reproduce the pacing the service has been used with; none of
    them is a documented server requirement.
    """

    chunk_size: int = 4096
    handshake_poll_interval_s: float = 0.1
    pacing_delay_s: float = 0.005
    end_poll_interval_s: float = 0.0001

    def validate(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if self.handshake_poll_interval_s < 0:
            raise ValueError("handshake_poll_interval_s must be >= 0")
        if self.pacing_delay_s < 0:
            raise ValueError("pacing_delay_s must be >= 0")
        if self.end_poll_interval_s < 0:
            raise ValueError("end_poll_interval_s must be >= 0")


@dataclass(slots=True)
class AppConfig:
    api_key: str = ""
    timings: SessionTimings = field(default_factory=SessionTimings)

    def validate(self) -> None:
        if not isinstance(self.api_key, str):
            raise ValueError("api_key must be a string")
        self.timings.validate()


def to_dict(config: AppConfig) -> dict[str, Any]:
    return {
        "api_key": config.api_key,
        "timings": {
            "chunk_size": config.timings.chunk_size,
            "handshake_poll_interval_s": config.timings.handshake_poll_interval_s,
            "pacing_delay_s": config.timings.pacing_delay_s,
            "end_poll_interval_s": config.timings.end_poll_interval_s,
        },
    }


def from_dict(data: dict[str, Any]) -> AppConfig:
    timings_data = data.get("timings") or {}
    if not isinstance(timings_data, dict):
        raise ValueError("timings must be a JSON object")

    config = AppConfig(
        api_key=str(data.get("api_key", "")),
        timings=SessionTimings(
            chunk_size=int(timings_data.get("chunk_size", 4096)),
            handshake_poll_interval_s=float(timings_data.get("handshake_poll_interval_s", 0.1)),
            pacing_delay_s=float(timings_data.get("pacing_delay_s", 0.005)),
            end_poll_interval_s=float(timings_data.get("end_poll_interval_s", 0.0001)),
        ),
    )
    config.validate()
    return config


def load_config(path: Path) -> AppConfig:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("config file must contain a JSON object")
    return from_dict(raw)


def load_config_or_default(path: Path) -> AppConfig:
    if not path.exists():
        return AppConfig()
    return load_config(path)


def save_config(path: Path, config: AppConfig) -> None:
    config.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(config), ensure_ascii=False, indent=2), encoding="utf-8")


def load_api_key(path: Path) -> str | None:
    """Return the stored API key, or None when nothing is configured."""
    config = load_config_or_default(path)
    return config.api_key or None


def save_api_key(path: Path, api_key: str) -> None:
    """Store the API key, keeping any other settings already in the file."""
    if not api_key:
        raise ValueError("api_key must be non-empty")
    config = load_config_or_default(path)
    config.api_key = api_key
    save_config(path, config)
