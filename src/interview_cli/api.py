"""High level entry point: run one interview and return its outcome."""

from __future__ import annotations

import copy
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable

from interview_cli.browser import open_url
from interview_cli.errors import InterviewError, RegistryLockError
from interview_cli.git import get_current_branch
from interview_cli.loader import load_questions, merge_theme_config, resolve_path
from interview_cli.models import InterviewResult, QueuedInfo, RegistryEntry, ResponseItem, SessionState
from interview_cli.registry import SessionRegistry
from interview_cli.schema import validate_questions
from interview_cli.server import start_interview_server
from interview_cli.session import InterviewSession
from interview_cli.watchdog import HEARTBEAT_GRACE_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600
POLL_INTERVAL = 0.1


def interview(
    questions: dict[str, Any] | None = None,
    questions_path: str | None = None,
    *,
    timeout: int = DEFAULT_TIMEOUT,
    theme: dict[str, Any] | None = None,
    port: int | None = None,
    open_browser: bool = True,
    browser: str | None = None,
    snapshot_dir: str | None = None,
    auto_save: bool = True,
    saved_answers: list[ResponseItem] | None = None,
    cwd: str | None = None,
    cancel_event: threading.Event | None = None,
    on_ready: Callable[[str], None] | None = None,
    on_queued: Callable[[QueuedInfo], None] | None = None,
    registry: SessionRegistry | None = None,
    recovery_dir: Path | None = None,
    grace_seconds: float = HEARTBEAT_GRACE_SECONDS,
) -> InterviewResult:
    """
    Serve a questions document in the browser and block until it ends.

    Args:
        questions: Questions document (validated here)
        questions_path: JSON file or saved interview HTML, used when ``questions`` is None
        timeout: Browser-side timer in seconds
        theme: Theme settings (``name``, ``mode``, ``light_path``, ``dark_path``, ``toggle_hotkey``)
        port: Fixed port, or None for an ephemeral one
        open_browser: Launch a browser when no other session is active
        browser: Browser command overriding the platform default
        snapshot_dir: Directory for snapshots
        auto_save: Write a snapshot after a successful submit
        saved_answers: Answers to pre-fill; overrides answers stored in a saved interview
        cwd: Working directory for relative paths and provenance
        cancel_event: Set by the caller to abort the interview
        on_ready: Called with the URL once the listener answers
        on_queued: Called instead of opening a browser when another session is active
        registry: Session registry (defaults to the per-user ledger)
        recovery_dir: Directory for recovery files
        grace_seconds: Heartbeat watchdog window

    Returns:
        InterviewResult with the terminal status and the answers recorded

    Raises:
        InterviewError: If no question source was given, the listener cannot
            start, or the browser cannot be opened
        OSError: If the port cannot be bound
    """
    cwd = cwd or os.getcwd()

    loaded_answers = None
    if questions is not None:
        questions_data = validate_questions(copy.deepcopy(questions))
    elif questions_path:
        saved = load_questions(questions_path, cwd)
        questions_data = saved.questions
        loaded_answers = saved.saved_answers
    else:
        raise InterviewError("Either questions or questions_path is required")

    if cancel_event is not None and cancel_event.is_set():
        return InterviewResult(status=SessionState.ABORTED, responses=[], url="")

    registry = registry or SessionRegistry()
    session = InterviewSession(
        questions_data,
        cwd=cwd,
        git_branch=get_current_branch(Path(cwd)),
        saved_answers=saved_answers if saved_answers is not None else loaded_answers,
        auto_save=auto_save,
        snapshot_dir=resolve_path(snapshot_dir, cwd) if snapshot_dir else None,
        recovery_dir=recovery_dir,
        theme=merge_theme_config(theme, cwd),
        timeout=timeout,
        registry=registry,
        grace_seconds=grace_seconds,
    )

    handle = start_interview_server(session, port)
    try:
        if on_ready is not None:
            on_ready(handle.url)

        others = _other_sessions(registry, session.id)
        if others:
            if on_queued is not None:
                on_queued(QueuedInfo(existing_session=others[0], url=handle.url))
        elif open_browser:
            open_url(handle.url, browser)

        while not session.finished:
            if cancel_event is not None and cancel_event.is_set():
                session.abort()
                break
            session.wait(POLL_INTERVAL)
    except BaseException:
        session.abort()
        raise
    finally:
        handle.close()

    outcome = session.wait()
    return InterviewResult(status=outcome.status, responses=outcome.responses, url=handle.url)


def _other_sessions(registry: SessionRegistry, session_id: str) -> list[RegistryEntry]:
    try:
        return registry.other_sessions(session_id)
    except (RegistryLockError, OSError) as e:
        logger.warning("Could not read session registry: %s", e)
        return []
