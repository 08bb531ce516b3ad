"""Interview configuration: CLI flags > environment > config file."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Literal

from interview_cli.paths import config_path

logger = logging.getLogger(__name__)

ThemeMode = Literal["auto", "light", "dark"]

# Config file keys (camelCase on disk) and their dataclass fields
FILE_KEYS = {
    "timeout": "timeout",
    "theme": "theme",
    "mode": "mode",
    "port": "port",
    "browser": "browser",
    "snapshotDir": "snapshot_dir",
    "autoSave": "auto_save",
    "toggleHotkey": "toggle_hotkey",
    "lightPath": "light_path",
    "darkPath": "dark_path",
}


@dataclass
class InterviewConfig:
    """
    User configuration.

    Stored in: $XDG_CONFIG_HOME/interview/config.json (or $INTERVIEW_CONFIG)
    """

    timeout: int | None = None
    theme: str | None = None
    mode: ThemeMode | None = None
    port: int | None = None
    browser: str | None = None
    snapshot_dir: str | None = None
    auto_save: bool | None = None
    toggle_hotkey: str | None = None
    light_path: str | None = None
    dark_path: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Serialize to the on-disk JSON shape, omitting unset values."""
        return {
            key: getattr(self, attr)
            for key, attr in FILE_KEYS.items()
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InterviewConfig":
        """Deserialize from JSON dict, ignoring unknown keys."""
        return cls(**{attr: data[key] for key, attr in FILE_KEYS.items() if key in data})


def load_config() -> InterviewConfig:
    """
    Load the config file.

    Returns:
        InterviewConfig (empty if the file is missing or unreadable)
    """
    path = config_path()
    if not path.exists():
        return InterviewConfig()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable config file %s: %s", path, e)
        return InterviewConfig()
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: expected a JSON object", path)
        return InterviewConfig()
    return InterviewConfig.from_dict(data)


def _env_int(name: str) -> int | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value, 10)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, value)
        return None


def _env_mode() -> ThemeMode | None:
    value = os.getenv("INTERVIEW_MODE")
    if value in ("auto", "light", "dark"):
        return value  # type: ignore[return-value]
    return None


def resolve_config(
    cli_flags: InterviewConfig,
    file_config: InterviewConfig | None = None,
) -> InterviewConfig:
    """
    Merge configuration sources.

    Precedence: CLI flags > environment (INTERVIEW_TIMEOUT, INTERVIEW_THEME,
    INTERVIEW_MODE, INTERVIEW_PORT) > config file.
    """
    file = file_config if file_config is not None else load_config()
    env = InterviewConfig(
        timeout=_env_int("INTERVIEW_TIMEOUT"),
        theme=os.getenv("INTERVIEW_THEME") or None,
        mode=_env_mode(),
        port=_env_int("INTERVIEW_PORT"),
    )

    merged = InterviewConfig()
    for field in fields(InterviewConfig):
        for source in (cli_flags, env, file):
            value = getattr(source, field.name)
            if value is not None:
                setattr(merged, field.name, value)
                break
    return merged
