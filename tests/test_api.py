"""End-to-end tests for ``interview()`` with a real listener and no browser."""

import os
import threading
import time

import httpx
import pytest

from interview_cli import api
from interview_cli.errors import BrowserLaunchError, InterviewError, QuestionsFileError
from interview_cli.models import RegistryEntry, ResponseItem, SavedFrom, SessionState
from interview_cli.registry import SessionRegistry
from interview_cli.snapshot import write_snapshot


def _post(url: str, path: str, payload: dict) -> httpx.Response:
    base, _, query = url.partition("/?")
    return httpx.post(f"{base}{path}?{query}", json=payload, trust_env=False, timeout=5)


@pytest.fixture()
def run(tmp_path, registry):
    def _run(questions=None, **kwargs):
        kwargs.setdefault("open_browser", False)
        kwargs.setdefault("cwd", str(tmp_path))
        kwargs.setdefault("snapshot_dir", str(tmp_path / "snapshots"))
        kwargs.setdefault("recovery_dir", tmp_path / "recovery")
        kwargs.setdefault("registry", registry)
        return api.interview(questions, **kwargs)

    return _run


def test_requires_a_question_source():
    with pytest.raises(InterviewError, match="Either questions or questions_path is required"):
        api.interview()


def test_invalid_questions_raise_before_listening(run, registry):
    with pytest.raises(ValueError):
        run({"questions": []})
    assert registry.active_sessions() == []


def test_missing_questions_file(run):
    with pytest.raises(QuestionsFileError, match="Questions file not found"):
        run(questions_path="nope.json")


def test_already_cancelled_returns_aborted_without_listening(run, single_question):
    ready = []
    cancel = threading.Event()
    cancel.set()

    result = run(single_question, cancel_event=cancel, on_ready=ready.append)

    assert result.status is SessionState.ABORTED
    assert result.responses == []
    assert result.url == ""
    assert ready == []


def test_submit_from_browser(run, single_question, registry, tmp_path):
    def on_ready(url):
        # Registered while the interview is open
        assert [e.url for e in registry.active_sessions()] == [url]
        assert _post(url, "/submit", {"responses": [{"id": "q1", "value": "A"}]}).status_code == 200

    result = run(single_question, on_ready=on_ready)

    assert result.status is SessionState.COMPLETED
    assert result.responses == [ResponseItem("q1", "A")]
    assert result.to_dict() == {"status": "completed", "responses": [{"id": "q1", "value": "A"}]}
    assert result.url.startswith("http://127.0.0.1:")
    assert registry.active_sessions() == []
    assert len(list((tmp_path / "snapshots").glob("*/index.html"))) == 1


def test_caller_does_not_mutate_questions(run, single_question):
    original = {"questions": [dict(single_question["questions"][0], type="multi", recommended="A")]}
    cancel = threading.Event()
    run(original, cancel_event=cancel, on_ready=lambda url: cancel.set())
    assert original["questions"][0]["recommended"] == "A"


def test_cancel_event_aborts(run, single_question, registry):
    cancel = threading.Event()
    seen = []

    def on_ready(url):
        seen.append(url)
        _post(url, "/answers", {"answers": {"q1": "B"}})
        cancel.set()

    result = run(single_question, cancel_event=cancel, on_ready=on_ready)

    assert result.status is SessionState.ABORTED
    assert result.responses == [ResponseItem("q1", "B")]
    assert result.url == seen[0]
    assert registry.active_sessions() == []
    with pytest.raises(httpx.TransportError):
        httpx.get(seen[0].replace("/?", "/health?"), trust_env=False, timeout=1)


def test_browser_cancel_with_timeout_reason(run, single_question):
    result = run(single_question, on_ready=lambda url: _post(url, "/cancel", {"reason": "timeout"}))
    assert result.status is SessionState.TIMEOUT


def test_no_server_side_timeout(run, single_question):
    cancel = threading.Event()
    timer = threading.Timer(1.5, cancel.set)
    timer.start()
    started = time.monotonic()
    try:
        result = run(single_question, timeout=1, cancel_event=cancel)
    finally:
        timer.cancel()

    # The form timer runs in the browser; without one the session waits
    assert result.status is SessionState.ABORTED
    assert time.monotonic() - started >= 1.4


def test_opens_browser_when_alone(run, single_question, monkeypatch):
    opened = []
    cancel = threading.Event()
    monkeypatch.setattr(api, "open_url", lambda url, browser=None: (opened.append((url, browser)), cancel.set()))

    result = run(single_question, open_browser=True, browser="firefox", cancel_event=cancel)

    assert opened == [(result.url, "firefox")]


def test_queues_behind_existing_session(run, single_question, registry, monkeypatch):
    existing = RegistryEntry(
        id="other",
        title="Earlier interview",
        cwd="/elsewhere",
        git_branch="main",
        started_at=time.time() - 120,
        url="http://127.0.0.1:1/?session=other-token",
        pid=os.getpid(),
    )
    registry.register(existing)
    opened = []
    queued = []
    cancel = threading.Event()
    monkeypatch.setattr(api, "open_url", lambda url, browser=None: opened.append(url))

    def on_queued(info):
        queued.append(info)
        cancel.set()

    result = run(single_question, open_browser=True, cancel_event=cancel, on_queued=on_queued)

    assert opened == []
    assert len(queued) == 1
    assert queued[0].existing_session.id == "other"
    assert queued[0].url == result.url
    assert [e.id for e in registry.active_sessions()] == ["other"]


def test_queued_session_leaves_first_session_usable(run, single_question, tmp_path, monkeypatch):
    shared = SessionRegistry(tmp_path / "state" / "sessions.json")
    second_cancel = threading.Event()
    # Opening a browser means the second session was not queued
    monkeypatch.setattr(api, "open_url", lambda url, browser=None: second_cancel.set())

    first_ready = threading.Event()
    first_urls = []
    first_results = []
    first_cancel = threading.Event()

    def on_first_ready(url):
        first_urls.append(url)
        first_ready.set()

    first = threading.Thread(
        target=lambda: first_results.append(
            run(single_question, registry=shared, auto_save=False, cancel_event=first_cancel, on_ready=on_first_ready)
        ),
        daemon=True,
    )
    first.start()
    try:
        assert first_ready.wait(10)

        queued = []

        def on_queued(info):
            queued.append(info)
            base, _, query = first_urls[0].partition("/?")
            health = httpx.get(f"{base}/health?{query}", trust_env=False, timeout=5)
            assert health.json() == {"ok": True}
            assert _post(first_urls[0], "/submit", {"answers": {"q1": "A"}}).status_code == 200
            second_cancel.set()

        second = run(
            single_question,
            registry=shared,
            auto_save=False,
            open_browser=True,
            cancel_event=second_cancel,
            on_queued=on_queued,
        )
        first.join(10)
    finally:
        first_cancel.set()

    assert len(queued) == 1
    assert queued[0].existing_session.url == first_urls[0]
    assert queued[0].url == second.url
    assert second.status is SessionState.ABORTED
    assert first_results[0].status is SessionState.COMPLETED
    assert first_results[0].responses == [ResponseItem("q1", "A")]
    assert shared.active_sessions() == []


def test_browser_failure_aborts_and_cleans_up(run, single_question, registry, monkeypatch):
    def fail(url, browser=None):
        raise BrowserLaunchError("no browser")

    monkeypatch.setattr(api, "open_url", fail)

    with pytest.raises(BrowserLaunchError):
        run(single_question, open_browser=True)
    assert registry.active_sessions() == []


def test_resume_from_saved_interview(run, single_question, tmp_path):
    snapshot = write_snapshot(
        tmp_path / "saved",
        single_question,
        [ResponseItem("q1", "B")],
        SavedFrom(cwd=str(tmp_path), branch=None, session_id="s-1"),
        was_submitted=False,
    )
    pages = []
    cancel = threading.Event()

    def on_ready(url):
        pages.append(httpx.get(url, trust_env=False, timeout=5).text)
        cancel.set()

    result = run(questions_path=str(snapshot), cancel_event=cancel, on_ready=on_ready)

    assert '"savedAnswers":[{"id":"q1","value":"B"}]' in pages[0]
    assert result.responses == [ResponseItem("q1", "B")]
