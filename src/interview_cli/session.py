"""Interview session state machine.

One ``InterviewSession`` owns everything mutable about an interview: its
lifecycle state, the recorded answers, the heartbeat watchdog and its registry
entry. All mutations go through the session lock, so the HTTP listener can
serve requests on several threads while transitions stay totally ordered.

Terminal states are sticky. The first terminal transition wins and every later
submit/cancel/abort returns the recorded outcome unchanged, which absorbs
duplicate clicks and network retries from the browser.
"""

from __future__ import annotations

import logging
import os
import secrets
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable

from interview_cli.errors import InterviewError, RegistryLockError, SubmissionError
from interview_cli.models import (
    CancelReason,
    InterviewResult,
    RegistryEntry,
    ResponseItem,
    SavedFrom,
    SessionState,
)
from interview_cli.paths import snapshots_dir
from interview_cli.registry import SessionRegistry
from interview_cli.schema import interactive_questions
from interview_cli.snapshot import write_recovery, write_snapshot
from interview_cli.watchdog import HEARTBEAT_GRACE_SECONDS, HeartbeatWatchdog

logger = logging.getLogger(__name__)

# Browser-reported cancel reasons and the terminal state each one lands in
CANCEL_TRANSITIONS = {
    CancelReason.USER: SessionState.CANCELLED,
    CancelReason.ABANDONED: SessionState.CANCELLED,
    CancelReason.TIMEOUT: SessionState.TIMEOUT,
    CancelReason.ABORTED: SessionState.ABORTED,
}


def mint_token() -> str:
    """Unguessable capability token for one session."""
    return secrets.token_urlsafe(32)


def _is_empty(value: Any) -> bool:
    if isinstance(value, list):
        return not any(v for v in value)
    return value is None or value == ""


def parse_responses(
    questions: dict[str, Any],
    payload: Any,
    allow_bare_mapping: bool = False,
) -> list[ResponseItem]:
    """
    Normalise answers from a request body into ordered ``ResponseItem`` objects.

    Accepted shapes:
    - ``{"responses": [{"id": ..., "value": ..., "attachments": [...]}, ...]}``
    - ``{"answers": {"q1": "A", ...}}``
    - ``{"q1": "A", ...}`` when ``allow_bare_mapping`` is set

    Answers to ``info`` questions are dropped and empty answers are skipped.
    The result follows the order of the questions document.

    Raises:
        SubmissionError: If the payload has the wrong shape or names an unknown question
    """
    by_id = {q["id"]: q for q in questions["questions"]}

    if not isinstance(payload, dict):
        raise SubmissionError("Request body must be a JSON object")

    items: list[ResponseItem] = []
    if "responses" in payload:
        raw = payload["responses"]
        if not isinstance(raw, list):
            raise SubmissionError('"responses" must be an array')
        for index, entry in enumerate(raw):
            if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
                raise SubmissionError(f"Response at index {index} must be an object with an id")
            items.append(ResponseItem.from_dict(entry))
    else:
        mapping = payload.get("answers") if "answers" in payload else None
        if mapping is None and allow_bare_mapping:
            mapping = payload
        if mapping is None:
            return []
        if not isinstance(mapping, dict):
            raise SubmissionError('"answers" must be an object')
        items = [ResponseItem(id=str(qid), value=value) for qid, value in mapping.items()]

    collected: dict[str, ResponseItem] = {}
    for item in items:
        question = by_id.get(item.id)
        if question is None:
            raise SubmissionError(f'Unknown question id: "{item.id}"')
        if question["type"] == "info" or _is_empty(item.value):
            continue
        collected[item.id] = _coerce(question, item)

    return [collected[q["id"]] for q in questions["questions"] if q["id"] in collected]


def _coerce(question: dict[str, Any], item: ResponseItem) -> ResponseItem:
    qid = question["id"]
    qtype = question["type"]
    value = item.value

    def all_strings(values: Any) -> bool:
        return isinstance(values, list) and all(isinstance(v, str) for v in values)

    if qtype in ("single", "text"):
        if not isinstance(value, str):
            raise SubmissionError(f'Question "{qid}": answer must be a string')
    elif qtype == "multi":
        if not all_strings(value):
            raise SubmissionError(f'Question "{qid}": answer must be an array of strings')
    elif qtype == "image":
        if isinstance(value, str):
            value = [value]
        if not all_strings(value):
            raise SubmissionError(f'Question "{qid}": answer must be a path or array of paths')
    if item.attachments is not None and not all_strings(item.attachments):
        raise SubmissionError(f'Question "{qid}": attachments must be an array of strings')
    return ResponseItem(id=qid, value=value, attachments=item.attachments)


class InterviewSession:
    """
    Authoritative per-session lifecycle.

    ``created -> listening -> active -> {completed | cancelled | timeout | aborted}``

    Args:
        questions: Validated questions document
        cwd: Working directory shown to other sessions and stored as provenance
        git_branch: Branch captured at start (None outside git)
        saved_answers: Answers to pre-fill (resume)
        auto_save: Write a snapshot on successful submit
        snapshot_dir: Where snapshots go (defaults to the XDG data dir)
        recovery_dir: Where recovery files go (defaults to the XDG state dir)
        theme: Merged theme settings used when rendering documents
        timeout: Browser-side timeout in seconds (0 disables the form timer)
        registry: Shared session registry (None disables registration)
        grace_seconds: Heartbeat watchdog window
        on_finish: Called once with the outcome after the terminal transition
    """

    def __init__(
        self,
        questions: dict[str, Any],
        *,
        cwd: str | None = None,
        git_branch: str | None = None,
        saved_answers: list[ResponseItem] | None = None,
        auto_save: bool = True,
        snapshot_dir: Path | None = None,
        recovery_dir: Path | None = None,
        theme: dict[str, Any] | None = None,
        timeout: int = 600,
        registry: SessionRegistry | None = None,
        grace_seconds: float = HEARTBEAT_GRACE_SECONDS,
        on_finish: Callable[[InterviewResult], None] | None = None,
        session_id: str | None = None,
        token: str | None = None,
    ) -> None:
        self.id = session_id or str(uuid.uuid4())
        self.token = token or mint_token()
        if self.token == self.id:
            raise InterviewError("Session token must differ from the session id")

        self.questions = questions
        self.cwd = cwd or os.getcwd()
        self.git_branch = git_branch
        self.auto_save = auto_save
        self.snapshot_dir = snapshot_dir
        self.recovery_dir = recovery_dir
        self.theme = theme or {}
        self.timeout = timeout
        self.registry = registry
        self.started_at = time.time()
        self.last_heartbeat: float | None = None
        self.url = ""
        self.snapshot_path: Path | None = None
        self.recovery_path: Path | None = None
        self.cancel_reason: CancelReason | None = None

        self._lock = threading.Lock()
        self._state = SessionState.CREATED
        self._answers: dict[str, ResponseItem] = {
            item.id: item for item in (saved_answers or [])
        }
        self._outcome: InterviewResult | None = None
        self._registered = False
        self._register_lock = threading.Lock()
        self._on_finish = on_finish
        self._done = threading.Event()
        self._watchdog = HeartbeatWatchdog(self._on_abandoned, grace_seconds)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def title(self) -> str:
        return str(self.questions.get("title") or "Interview")

    @property
    def outcome(self) -> InterviewResult | None:
        with self._lock:
            return self._outcome

    @property
    def watchdog(self) -> HeartbeatWatchdog:
        return self._watchdog

    def answers(self) -> list[ResponseItem]:
        """Recorded answers in question order."""
        with self._lock:
            return self._ordered_answers()

    def _ordered_answers(self) -> list[ResponseItem]:
        order = [q["id"] for q in self.questions["questions"]]
        return [self._answers[qid] for qid in order if qid in self._answers]

    def saved_from(self) -> SavedFrom:
        return SavedFrom(cwd=self.cwd, branch=self.git_branch, session_id=self.id)

    def check_token(self, candidate: str | None) -> bool:
        """Constant-time comparison against the capability token."""
        if not candidate:
            return False
        return secrets.compare_digest(candidate.encode("utf-8"), self.token.encode("utf-8"))

    def wait(self, timeout: float | None = None) -> InterviewResult | None:
        """Block until the session finished (side effects included)."""
        self._done.wait(timeout)
        return self.outcome

    @property
    def finished(self) -> bool:
        return self._done.is_set()

    # ------------------------------------------------------------------
    # Non-terminal transitions
    # ------------------------------------------------------------------

    def mark_listening(self, url: str) -> None:
        """Listener is bound: record the URL and announce it in the registry."""
        with self._lock:
            if self._state is not SessionState.CREATED:
                return
            self.url = url
            self._state = SessionState.LISTENING

        self._ensure_registered()

    def _ensure_registered(self) -> None:
        """Announce the session in the registry; retried on later heartbeats until it succeeds."""
        if self.registry is None or self._registered:
            return
        if not self._register_lock.acquire(blocking=False):
            return
        try:
            if self._registered or self.state.is_terminal:
                return
            entry = RegistryEntry(
                id=self.id,
                title=self.title,
                cwd=self.cwd,
                git_branch=self.git_branch,
                started_at=self.started_at,
                url=self.url,
                pid=os.getpid(),
            )
            try:
                self.registry.register(entry)
            except (RegistryLockError, OSError) as e:
                logger.warning("Session registry unavailable, will retry on next heartbeat: %s", e)
                return
            self._registered = True
        finally:
            self._register_lock.release()

    def _activate_locked(self) -> bool:
        if self._state in (SessionState.CREATED, SessionState.LISTENING):
            self._state = SessionState.ACTIVE
            logger.debug("Session %s is active", self.id)
            return True
        return False

    def heartbeat(self) -> SessionState:
        """Browser tab is alive: activate if needed and re-arm the watchdog."""
        with self._lock:
            if self._state.is_terminal:
                return self._state
            self._activate_locked()
            self.last_heartbeat = time.time()
            state = self._state
        self._watchdog.beat()
        self._ensure_registered()
        return state

    def record_answers(self, responses: list[ResponseItem]) -> SessionState:
        """Replace the draft answers with the browser's current form state."""
        with self._lock:
            if self._state.is_terminal:
                return self._state
            activated = self._activate_locked()
            self._answers = {item.id: item for item in responses}
            state = self._state
        if activated:
            self._watchdog.beat()
        return state

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def submit(self, responses: list[ResponseItem]) -> InterviewResult:
        """
        Complete the session with the final answers.

        Raises:
            SubmissionError: If an interactive question has no answer; the
                session stays active so the browser can retry
        """
        with self._lock:
            if self._outcome is not None:
                return self._outcome
            answered = {item.id for item in responses}
            missing = [
                q["id"] for q in interactive_questions(self.questions) if q["id"] not in answered
            ]
            activated = self._activate_locked()
            if not missing:
                self._answers = {item.id: item for item in responses}
                outcome = self._commit_locked(SessionState.COMPLETED)

        if missing:
            if activated:
                self._watchdog.beat()
            raise SubmissionError(f"Missing answers for: {', '.join(missing)}", missing=missing)
        self._finalize(outcome)
        return outcome

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER,
        responses: list[ResponseItem] | None = None,
    ) -> InterviewResult:
        """Cancel with ``reason``; ``responses`` replace the recorded partial answers when given."""
        with self._lock:
            if self._outcome is not None:
                return self._outcome
            if responses is not None:
                self._answers = {item.id: item for item in responses}
            self.cancel_reason = reason
            outcome = self._commit_locked(CANCEL_TRANSITIONS[reason])

        self._finalize(outcome)
        return outcome

    def abort(self) -> InterviewResult:
        """The owning process withdraws the session."""
        return self.cancel(CancelReason.ABORTED)

    def _on_abandoned(self) -> None:
        self.cancel(CancelReason.ABANDONED)

    def _commit_locked(self, state: SessionState) -> InterviewResult:
        self._state = state
        self._outcome = InterviewResult(status=state, responses=self._ordered_answers(), url=self.url)
        logger.debug("Session %s finished: %s", self.id, state.value)
        return self._outcome

    def _finalize(self, outcome: InterviewResult) -> None:
        """Side effects of the winning terminal transition, run exactly once."""
        self._watchdog.stop()
        if outcome.status is SessionState.COMPLETED:
            if self.auto_save:
                self.snapshot_path = self._safe_write_snapshot(outcome.responses, was_submitted=True)
        elif outcome.responses:
            self.recovery_path = self._safe_write_recovery(outcome.responses)
        self._unregister()

        if self._on_finish is not None:
            try:
                self._on_finish(outcome)
            except Exception:
                logger.exception("Session finish callback failed")
        self._done.set()

    def _unregister(self) -> None:
        with self._register_lock:
            if not self._registered or self.registry is None:
                return
            try:
                self.registry.unregister(self.id)
            except (RegistryLockError, OSError) as e:
                logger.warning("Could not remove session %s from registry: %s", self.id, e)
            self._registered = False

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def save_snapshot(self, responses: list[ResponseItem] | None = None) -> Path:
        """Write a snapshot on demand without ending the session.

        Raises:
            OSError: If the snapshot cannot be written
        """
        activated = False
        with self._lock:
            if responses is not None and not self._state.is_terminal:
                activated = self._activate_locked()
                self._answers = {item.id: item for item in responses}
            answers = self._ordered_answers()
        if activated:
            self._watchdog.beat()
        return write_snapshot(
            self.snapshot_dir or snapshots_dir(),
            self.questions,
            answers,
            self.saved_from(),
            was_submitted=False,
            theme=self.theme,
        )

    def _safe_write_snapshot(self, responses: list[ResponseItem], was_submitted: bool) -> Path | None:
        try:
            path = write_snapshot(
                self.snapshot_dir or snapshots_dir(),
                self.questions,
                responses,
                self.saved_from(),
                was_submitted=was_submitted,
                theme=self.theme,
            )
        except OSError as e:
            logger.warning("Failed to save snapshot: %s", e)
            return None
        logger.info("Snapshot saved to %s", path)
        return path

    def _safe_write_recovery(self, responses: list[ResponseItem]) -> Path | None:
        try:
            path = write_recovery(
                self.questions,
                responses,
                self.saved_from(),
                directory=self.recovery_dir,
                theme=self.theme,
            )
        except OSError as e:
            logger.warning("Failed to write recovery file: %s", e)
            return None
        logger.info("Recovery file written to %s", path)
        return path

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def form_data(self, heartbeat_ms: int) -> dict[str, Any]:
        """Data block for the live form (questions, current answers, timer settings)."""
        data: dict[str, Any] = {}
        for key in ("title", "description"):
            if key in self.questions:
                data[key] = self.questions[key]
        data["questions"] = self.questions["questions"]
        data["savedAnswers"] = [item.to_dict() for item in self.answers()]
        data["server"] = {"timeout": self.timeout, "heartbeatMs": heartbeat_ms}
        return data
