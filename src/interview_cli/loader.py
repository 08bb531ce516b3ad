"""Load questions from JSON files or saved interview documents."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any

from interview_cli.errors import QuestionsFileError
from interview_cli.models import SavedInterview
from interview_cli.schema import validate_questions
from interview_cli.snapshot import decode_snapshot, expand_home

DEFAULT_THEME_HOTKEY = "mod+shift+l"

__all__ = [
    "expand_home",
    "format_time_ago",
    "load_questions",
    "merge_theme_config",
    "resolve_path",
]


def resolve_path(value: str, cwd: str | Path) -> Path:
    """Expand ``~`` and make ``value`` absolute relative to ``cwd``."""
    expanded = expand_home(value)
    if os.path.isabs(expanded):
        return Path(expanded)
    return Path(cwd) / expanded


def load_questions(questions_path: str, cwd: str | Path) -> SavedInterview:
    """
    Load a questions document.

    ``.html``/``.htm`` files are treated as saved interviews and may carry
    saved answers; anything else is parsed as JSON.

    Raises:
        QuestionsFileError: If the file is missing or not valid JSON
        QuestionsValidationError: If the questions are invalid
        SnapshotError: If a saved interview cannot be decoded
    """
    path = resolve_path(questions_path, cwd)
    if not path.is_file():
        raise QuestionsFileError(f"Questions file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise QuestionsFileError(f"Cannot read questions file {path}: {e}") from e

    if path.suffix.lower() in (".html", ".htm"):
        return decode_snapshot(content, path)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise QuestionsFileError(f"Invalid JSON in questions file: {e}") from e

    return SavedInterview(questions=validate_questions(data))


def merge_theme_config(theme: dict[str, Any] | None, cwd: str | Path) -> dict[str, Any]:
    """Fill theme defaults and resolve stylesheet paths against ``cwd``."""
    merged = dict(theme or {})
    merged["toggle_hotkey"] = merged.get("toggle_hotkey") or DEFAULT_THEME_HOTKEY
    for key in ("light_path", "dark_path"):
        value = merged.get(key)
        merged[key] = str(resolve_path(value, cwd)) if value else None
    return merged


def format_time_ago(timestamp: float, now: float | None = None) -> str:
    """Human readable age of an epoch timestamp (seconds)."""
    seconds = int((now if now is not None else time.time()) - timestamp)
    if seconds < 0:
        return "just now"
    if seconds < 60:
        return f"{seconds} seconds ago"
    minutes = seconds // 60
    if minutes < 60:
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    hours = minutes // 60
    return "1 hour ago" if hours == 1 else f"{hours} hours ago"
