"""Tests for the interview session state machine."""

import json
import threading

import pytest

from interview_cli.errors import InterviewError, SubmissionError
from interview_cli.models import CancelReason, ResponseItem, SessionState
from interview_cli.session import InterviewSession, mint_token, parse_responses
from interview_cli.snapshot import DATA_BLOCK_RE


@pytest.fixture()
def make_session(tmp_path):
    created = []

    def factory(questions, **kwargs):
        kwargs.setdefault("cwd", str(tmp_path))
        kwargs.setdefault("snapshot_dir", tmp_path / "snapshots")
        kwargs.setdefault("recovery_dir", tmp_path / "recovery")
        session = InterviewSession(questions, **kwargs)
        created.append(session)
        return session

    yield factory
    for session in created:
        session.watchdog.stop()


def _embedded(path):
    return json.loads(DATA_BLOCK_RE.search(path.read_text(encoding="utf-8")).group(1))


# ============================================================================
# Tokens and identity
# ============================================================================


def test_token_is_unguessable_and_distinct_from_id(make_session, single_question):
    session = make_session(single_question)
    assert len(session.token) >= 32
    assert session.token != session.id
    assert mint_token() != mint_token()


def test_token_equal_to_id_rejected(make_session, single_question):
    with pytest.raises(InterviewError):
        make_session(single_question, session_id="same", token="same")


def test_check_token(make_session, single_question):
    session = make_session(single_question)
    assert session.check_token(session.token)
    assert not session.check_token(session.token[:-1])
    assert not session.check_token("")
    assert not session.check_token(None)


# ============================================================================
# Transitions
# ============================================================================


def test_lifecycle_to_completed(make_session, single_question):
    session = make_session(single_question)
    assert session.state is SessionState.CREATED

    session.mark_listening("http://127.0.0.1:1234/?session=x")
    assert session.state is SessionState.LISTENING

    session.heartbeat()
    assert session.state is SessionState.ACTIVE

    outcome = session.submit([ResponseItem("q1", "A")])
    assert outcome.status is SessionState.COMPLETED
    assert outcome.to_dict() == {"status": "completed", "responses": [{"id": "q1", "value": "A"}]}
    assert session.finished


def test_submit_writes_snapshot_when_auto_save(make_session, single_question, tmp_path):
    session = make_session(single_question)
    session.submit([ResponseItem("q1", "B")])

    assert session.snapshot_path is not None
    assert session.snapshot_path.parent.parent == tmp_path / "snapshots"
    data = _embedded(session.snapshot_path)
    assert data["wasSubmitted"] is True
    assert data["savedAnswers"] == [{"id": "q1", "value": "B"}]
    assert data["savedFrom"]["sessionId"] == session.id


def test_submit_without_auto_save(make_session, single_question, tmp_path):
    session = make_session(single_question, auto_save=False)
    session.submit([ResponseItem("q1", "A")])
    assert session.snapshot_path is None
    assert not (tmp_path / "snapshots").exists()


def test_submit_missing_answers_stays_active(make_session, questions):
    session = make_session(questions)
    session.mark_listening("http://127.0.0.1:1/?session=x")

    with pytest.raises(SubmissionError) as excinfo:
        session.submit([ResponseItem("q1", "A")])

    assert excinfo.value.missing == ["q2", "q3"]
    assert session.state is SessionState.ACTIVE
    assert session.outcome is None
    assert not session.finished


def test_terminal_state_is_sticky(make_session, single_question):
    session = make_session(single_question)
    first = session.submit([ResponseItem("q1", "A")])

    assert session.cancel(CancelReason.USER) is first
    assert session.abort() is first
    assert session.submit([ResponseItem("q1", "B")]) is first
    assert session.heartbeat() is SessionState.COMPLETED
    assert session.record_answers([ResponseItem("q1", "B")]) is SessionState.COMPLETED
    assert session.state is SessionState.COMPLETED
    assert session.answers() == [ResponseItem("q1", "A")]


def test_cancel_reasons_map_to_states(make_session, single_question):
    expected = {
        CancelReason.USER: SessionState.CANCELLED,
        CancelReason.ABANDONED: SessionState.CANCELLED,
        CancelReason.TIMEOUT: SessionState.TIMEOUT,
        CancelReason.ABORTED: SessionState.ABORTED,
    }
    for reason, state in expected.items():
        session = make_session(single_question)
        assert session.cancel(reason).status is state
        assert session.cancel_reason is reason


def test_timeout_with_partial_answers_writes_recovery(make_session, questions, tmp_path):
    session = make_session(questions)
    session.heartbeat()
    session.record_answers([ResponseItem("q1", "A"), ResponseItem("q2", ["X"])])

    outcome = session.cancel(CancelReason.TIMEOUT)

    assert outcome.status is SessionState.TIMEOUT
    assert [r.id for r in outcome.responses] == ["q1", "q2"]
    assert session.recovery_path.parent == tmp_path / "recovery"
    data = _embedded(session.recovery_path)
    assert data["wasSubmitted"] is False
    assert data["savedAnswers"] == [{"id": "q1", "value": "A"}, {"id": "q2", "value": ["X"]}]
    assert session.snapshot_path is None


def test_cancel_without_answers_writes_nothing(make_session, single_question, tmp_path):
    session = make_session(single_question)
    session.cancel(CancelReason.USER)
    assert session.recovery_path is None
    assert not (tmp_path / "recovery").exists()


def test_cancel_responses_replace_drafts(make_session, questions):
    session = make_session(questions)
    session.record_answers([ResponseItem("q1", "A")])
    outcome = session.cancel(CancelReason.USER, [ResponseItem("q3", "later")])
    assert outcome.responses == [ResponseItem("q3", "later")]


def test_abandoned_after_heartbeat_gap(make_session, questions):
    finished = threading.Event()
    session = make_session(questions, grace_seconds=0.05, on_finish=lambda outcome: finished.set())
    session.mark_listening("http://127.0.0.1:1/?session=x")
    session.record_answers([ResponseItem("q3", "draft")])
    session.heartbeat()

    assert finished.wait(5)
    assert session.state is SessionState.CANCELLED
    assert session.cancel_reason is CancelReason.ABANDONED
    assert _embedded(session.recovery_path)["savedAnswers"] == [{"id": "q3", "value": "draft"}]


def test_no_abandonment_before_first_heartbeat(make_session, single_question):
    session = make_session(single_question, grace_seconds=0.05)
    session.mark_listening("http://127.0.0.1:1/?session=x")
    assert session.wait(0.3) is None
    assert session.state is SessionState.LISTENING


def test_draft_answers_arm_abandonment_without_heartbeat(make_session, questions):
    finished = threading.Event()
    session = make_session(questions, grace_seconds=0.05, on_finish=lambda outcome: finished.set())
    session.mark_listening("http://127.0.0.1:1/?session=x")
    session.record_answers([ResponseItem("q1", "A")])

    assert finished.wait(5)
    assert session.state is SessionState.CANCELLED
    assert session.cancel_reason is CancelReason.ABANDONED
    assert _embedded(session.recovery_path)["savedAnswers"] == [{"id": "q1", "value": "A"}]


def test_failed_submit_arms_abandonment_without_heartbeat(make_session, questions):
    finished = threading.Event()
    session = make_session(questions, grace_seconds=0.05, on_finish=lambda outcome: finished.set())
    session.mark_listening("http://127.0.0.1:1/?session=x")
    with pytest.raises(SubmissionError):
        session.submit([ResponseItem("q1", "A")])

    assert finished.wait(5)
    assert session.cancel_reason is CancelReason.ABANDONED


def test_concurrent_terminal_transitions_have_one_winner(make_session, single_question):
    finishes = []
    session = make_session(single_question, auto_save=False, on_finish=finishes.append)
    barrier = threading.Barrier(8)
    results = []

    def worker(i):
        barrier.wait()
        if i % 2:
            results.append(session.submit([ResponseItem("q1", "A")]))
        else:
            results.append(session.cancel(CancelReason.USER))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({id(r) for r in results}) == 1
    assert len(finishes) == 1


def test_on_finish_errors_are_contained(make_session, single_question):
    def boom(outcome):
        raise RuntimeError("callback failed")

    session = make_session(single_question, auto_save=False, on_finish=boom)
    assert session.cancel().status is SessionState.CANCELLED
    assert session.finished


# ============================================================================
# Registry interaction
# ============================================================================


def test_registers_while_listening_and_unregisters_at_end(make_session, single_question, registry):
    session = make_session(single_question, registry=registry, git_branch="feature/x")
    session.mark_listening("http://127.0.0.1:1/?session=tok")

    entries = registry.active_sessions()
    assert [e.id for e in entries] == [session.id]
    assert entries[0].git_branch == "feature/x"
    assert entries[0].url == "http://127.0.0.1:1/?session=tok"

    session.abort()
    assert registry.active_sessions() == []


def test_registry_failure_does_not_stop_session(make_session, single_question, registry, monkeypatch):
    from interview_cli.errors import RegistryLockError

    def locked(entry):
        raise RegistryLockError("busy")

    monkeypatch.setattr(registry, "register", locked)
    session = make_session(single_question, registry=registry)
    session.mark_listening("http://127.0.0.1:1/?session=tok")
    assert session.state is SessionState.LISTENING


def test_lost_registration_is_retried_on_heartbeat(make_session, single_question, registry, monkeypatch):
    from interview_cli.errors import RegistryLockError

    real_register = registry.register
    calls = []

    def busy_once(entry):
        calls.append(entry.id)
        if len(calls) == 1:
            raise RegistryLockError("busy")
        real_register(entry)

    monkeypatch.setattr(registry, "register", busy_once)
    session = make_session(single_question, registry=registry)
    session.mark_listening("http://127.0.0.1:1/?session=tok")
    assert registry.active_sessions() == []

    session.heartbeat()
    assert [e.id for e in registry.active_sessions()] == [session.id]

    # Already registered: later heartbeats leave the ledger alone
    session.heartbeat()
    assert len(calls) == 2

    session.abort()
    assert registry.active_sessions() == []


# ============================================================================
# Documents
# ============================================================================


def test_save_snapshot_keeps_session_open(make_session, single_question):
    session = make_session(single_question)
    session.mark_listening("http://127.0.0.1:1/?session=x")

    path = session.save_snapshot([ResponseItem("q1", "A")])

    assert _embedded(path)["wasSubmitted"] is False
    assert session.state is SessionState.ACTIVE
    assert session.answers() == [ResponseItem("q1", "A")]


def test_form_data(make_session, questions):
    session = make_session(questions, saved_answers=[ResponseItem("q1", "B")], timeout=30)
    data = session.form_data(5000)
    assert data["title"] == "Project Setup"
    assert data["savedAnswers"] == [{"id": "q1", "value": "B"}]
    assert data["server"] == {"timeout": 30, "heartbeatMs": 5000}


# ============================================================================
# Response parsing
# ============================================================================


def test_parse_responses_list_shape(questions):
    payload = {"responses": [{"id": "q3", "value": "hi"}, {"id": "q1", "value": "A"}]}
    assert parse_responses(questions, payload) == [ResponseItem("q1", "A"), ResponseItem("q3", "hi")]


def test_parse_responses_mapping_shapes(questions):
    assert parse_responses(questions, {"answers": {"q2": ["X"]}}) == [ResponseItem("q2", ["X"])]
    assert parse_responses(questions, {"q1": "A"}, allow_bare_mapping=True) == [ResponseItem("q1", "A")]
    assert parse_responses(questions, {"q1": "A"}) == []


def test_parse_responses_drops_info_and_empty(questions):
    payload = {"answers": {"intro": "x", "q1": "", "q2": [], "q3": "kept"}}
    assert parse_responses(questions, payload) == [ResponseItem("q3", "kept")]


def test_parse_responses_rejects_unknown_id(questions):
    with pytest.raises(SubmissionError, match='Unknown question id: "nope"'):
        parse_responses(questions, {"answers": {"nope": "x"}})


def test_parse_responses_type_checks(questions):
    with pytest.raises(SubmissionError, match="array of strings"):
        parse_responses(questions, {"answers": {"q2": "X"}})
    with pytest.raises(SubmissionError, match="must be a string"):
        parse_responses(questions, {"answers": {"q1": ["A"]}})


def test_parse_responses_image_value_becomes_list():
    doc = {"questions": [{"id": "img", "type": "image", "question": "?"}]}
    assert parse_responses(doc, {"answers": {"img": "/tmp/a.png"}}) == [ResponseItem("img", ["/tmp/a.png"])]
