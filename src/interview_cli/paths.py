"""XDG-style storage locations."""

from __future__ import annotations

import os
from pathlib import Path

APP_DIR = "interview"


def xdg_config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")


def xdg_data_home() -> Path:
    return Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")


def xdg_state_home() -> Path:
    return Path(os.environ.get("XDG_STATE_HOME") or Path.home() / ".local" / "state")


def sessions_path() -> Path:
    """Shared ledger of active sessions (one per user)."""
    return xdg_state_home() / APP_DIR / "sessions.json"


def recovery_dir() -> Path:
    return xdg_state_home() / APP_DIR / "recovery"


def snapshots_dir() -> Path:
    return xdg_data_home() / APP_DIR / "snapshots"


def config_path() -> Path:
    """Config file path, overridable with ``INTERVIEW_CONFIG``."""
    override = os.environ.get("INTERVIEW_CONFIG")
    if override:
        return Path(override)
    return xdg_config_home() / APP_DIR / "config.json"
