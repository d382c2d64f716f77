"""Result file writing: plain transcript or the full JSON trace."""

from __future__ import annotations

import json
from pathlib import Path

from .trace import SessionResult


def render_result(result: SessionResult, *, json_output: bool) -> str:
    if json_output:
        return json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
    return result.transcript


def ensure_writable(path: Path) -> None:
    """Truncate ``path`` up front so an unwritable target fails before any upload."""
    try:
        path.write_text("", encoding="utf-8")
    except OSError as err:
        raise OSError(f"failed to write result file (empty write for check): {err}") from err


def write_result(path: Path, result: SessionResult, *, json_output: bool) -> None:
    text = render_result(result, json_output=json_output)
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as err:
        raise OSError(f"failed to write result file: {err}") from err
