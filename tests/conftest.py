"""Shared fixtures for interview tests."""

from __future__ import annotations

import copy
from pathlib import Path

import pytest

from interview_cli.registry import SessionRegistry

SAMPLE_QUESTIONS = {
    "title": "Project Setup",
    "description": "A few decisions before we start.",
    "questions": [
        {"id": "intro", "type": "info", "question": "Read this first."},
        {"id": "q1", "type": "single", "question": "Framework?", "options": ["A", "B"]},
        {"id": "q2", "type": "multi", "question": "Features?", "options": ["X", "Y", "Z"]},
        {"id": "q3", "type": "text", "question": "Anything else?"},
    ],
}


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME and every XDG directory into the test's temp dir."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(home / ".local" / "share"))
    monkeypatch.setenv("XDG_STATE_HOME", str(home / ".local" / "state"))
    for name in ("INTERVIEW_CONFIG", "INTERVIEW_TIMEOUT", "INTERVIEW_THEME", "INTERVIEW_MODE", "INTERVIEW_PORT"):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture()
def questions() -> dict:
    return copy.deepcopy(SAMPLE_QUESTIONS)


@pytest.fixture()
def single_question() -> dict:
    return {"questions": [{"id": "q1", "type": "single", "question": "Pick", "options": ["A", "B"]}]}


@pytest.fixture()
def registry(tmp_path: Path) -> SessionRegistry:
    """Registry in a temp dir whose health probe always succeeds."""
    return SessionRegistry(tmp_path / "state" / "sessions.json", probe=lambda url: True)
