"""Data models shared by the session server, registry and snapshot codec."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


AnswerValue = str | list[str]


class SessionState(str, Enum):
    """Lifecycle states of an interview session.

    ``CREATED -> LISTENING -> ACTIVE -> {COMPLETED | CANCELLED | TIMEOUT | ABORTED}``
    """

    CREATED = "created"
    LISTENING = "listening"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {SessionState.COMPLETED, SessionState.CANCELLED, SessionState.TIMEOUT, SessionState.ABORTED}
)


class CancelReason(str, Enum):
    """Why a session was cancelled."""

    USER = "user"
    TIMEOUT = "timeout"
    ABANDONED = "abandoned"
    ABORTED = "aborted"


@dataclass
class ResponseItem:
    """One answer: question id, value and optional attachment paths."""

    id: str
    value: AnswerValue
    attachments: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        data: dict[str, Any] = {"id": self.id, "value": self.value}
        if self.attachments:
            data["attachments"] = list(self.attachments)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResponseItem":
        """Deserialize from JSON dict."""
        value = data.get("value", "")
        attachments = data.get("attachments")
        return cls(
            id=str(data["id"]),
            value=list(value) if isinstance(value, list) else value,
            attachments=[str(a) for a in attachments] if isinstance(attachments, list) else None,
        )


@dataclass
class InterviewResult:
    """Terminal outcome handed back to the caller."""

    status: SessionState
    responses: list[ResponseItem] = field(default_factory=list)
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize the part of the result written to stdout."""
        return {
            "status": self.status.value,
            "responses": [item.to_dict() for item in self.responses],
        }


@dataclass
class RegistryEntry:
    """
    Registry view of a session, visible to other processes.

    Stored in: $XDG_STATE_HOME/interview/sessions.json (keyed by id)
    File permissions: 0600 (owner read/write only)
    """

    id: str
    title: str
    cwd: str
    git_branch: str | None
    started_at: float  # epoch seconds
    url: str
    pid: int

    def to_dict(self) -> dict[str, object]:
        """Serialize to JSON-compatible dict (without the id key)."""
        return {
            "title": self.title,
            "cwd": self.cwd,
            "gitBranch": self.git_branch,
            "startedAt": self.started_at,
            "url": self.url,
            "pid": self.pid,
        }

    @classmethod
    def from_dict(cls, session_id: str, data: dict[str, Any]) -> "RegistryEntry":
        """Deserialize from JSON dict."""
        branch = data.get("gitBranch")
        return cls(
            id=session_id,
            title=str(data.get("title", "")),
            cwd=str(data.get("cwd", "")),
            git_branch=str(branch) if branch else None,
            started_at=float(data["startedAt"]),
            url=str(data["url"]),
            pid=int(data["pid"]),
        )


@dataclass
class QueuedInfo:
    """Another session already holds the browser; this one waits at ``url``."""

    existing_session: RegistryEntry
    url: str


@dataclass
class SavedFrom:
    """Provenance of a snapshot or recovery document."""

    cwd: str
    branch: str | None
    session_id: str

    def to_dict(self) -> dict[str, object]:
        return {"cwd": self.cwd, "branch": self.branch, "sessionId": self.session_id}

    @classmethod
    def from_dict(cls, data: Any) -> "SavedFrom | None":
        """Return provenance when ``cwd`` and ``sessionId`` are present, else None."""
        if not isinstance(data, dict):
            return None
        if not isinstance(data.get("cwd"), str) or not isinstance(data.get("sessionId"), str):
            return None
        branch = data.get("branch")
        return cls(
            cwd=data["cwd"],
            branch=branch if isinstance(branch, str) else None,
            session_id=data["sessionId"],
        )


@dataclass
class SavedInterview:
    """A questions document loaded from a snapshot, plus what was saved with it."""

    questions: dict[str, Any]
    saved_answers: list[ResponseItem] | None = None
    saved_at: str | None = None
    was_submitted: bool | None = None
    saved_from: SavedFrom | None = None
