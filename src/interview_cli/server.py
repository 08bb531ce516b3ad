"""Loopback HTTP listener for one interview session.

Routes (every one requires ``?session=<token>``):

- ``GET /``           interactive form with questions and answers inlined
- ``GET /health``     ``{"ok": true}``
- ``POST /heartbeat`` browser tab is alive
- ``POST /answers``   draft answers (no terminal transition)
- ``POST /submit``    final answers
- ``POST /cancel``    ``{"reason": "user" | "timeout"}``
- ``POST /upload``    raw image bytes for an ``image`` question
- ``POST /save``      snapshot on demand
"""

from __future__ import annotations

import json
import logging
import mimetypes
import re
import tempfile
import threading
import time
import uuid
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable
from urllib.parse import parse_qs, urlsplit

from interview_cli.errors import InterviewError, SubmissionError
from interview_cli.form import render_document
from interview_cli.models import CancelReason, InterviewResult
from interview_cli.registry import check_session_health
from interview_cli.session import InterviewSession, parse_responses

logger = logging.getLogger(__name__)

HOST = "127.0.0.1"
HEARTBEAT_INTERVAL_MS = 5000
MAX_JSON_BYTES = 5 * 1024 * 1024
MAX_UPLOAD_BYTES = 20 * 1024 * 1024
READY_TIMEOUT = 5.0

BROWSER_CANCEL_REASONS = {
    "user": CancelReason.USER,
    "timeout": CancelReason.TIMEOUT,
}

_SAFE_SUFFIX = re.compile(r"^\.[A-Za-z0-9]{1,8}$")


class RequestError(Exception):
    """Rejects a request with an HTTP status and a JSON error body."""

    def __init__(self, http_status: HTTPStatus, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.status = http_status
        self.extra = extra


def _outcome_payload(outcome: InterviewResult) -> dict[str, Any]:
    return {"ok": True, "status": outcome.status.value}


def _upload_suffix(filename: str, content_type: str | None) -> str:
    suffix = Path(filename).suffix.lower() if filename else ""
    if _SAFE_SUFFIX.match(suffix):
        return suffix
    guessed = mimetypes.guess_extension((content_type or "").split(";")[0].strip()) or ""
    return guessed if _SAFE_SUFFIX.match(guessed) else ".bin"


def make_handler(session: InterviewSession, upload_dir: Path) -> type[BaseHTTPRequestHandler]:
    """Build a request handler class bound to ``session``."""

    class InterviewHandler(BaseHTTPRequestHandler):
        server_version = "interview"
        # Bound the time a stalled client can hold a worker thread
        timeout = 30

        # ------------------------------------------------------------------
        # Responses
        # ------------------------------------------------------------------

        def _send_bytes(self, body: bytes, content_type: str, status: int = HTTPStatus.OK) -> None:
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            self.send_header("Cache-Control", "no-store")
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(body)

        def _send_json(self, payload: dict[str, Any], status: int = HTTPStatus.OK) -> None:
            self._send_bytes(json.dumps(payload).encode("utf-8"), "application/json; charset=utf-8", status)

        def _send_error_json(self, http_status: int, message: str, **extra: Any) -> None:
            self._discard_body()
            self._send_json({"error": message, **extra}, http_status)

        # ------------------------------------------------------------------
        # Request bodies
        # ------------------------------------------------------------------

        def _content_length(self, limit: int) -> int:
            try:
                length = int(self.headers.get("Content-Length", "0"))
            except ValueError:
                raise RequestError(HTTPStatus.BAD_REQUEST, "Invalid Content-Length")
            if length < 0:
                raise RequestError(HTTPStatus.BAD_REQUEST, "Invalid Content-Length")
            if length > limit:
                raise RequestError(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, f"Body exceeds {limit} bytes")
            return length

        def _read_raw_body(self, limit: int) -> bytes:
            length = self._content_length(limit)
            self._body_read = True
            return self.rfile.read(length) if length else b""

        def _discard_body(self) -> None:
            """Consume an unread body so closing the socket does not reset the response."""
            if self._body_read:
                return
            self._body_read = True
            try:
                length = int(self.headers.get("Content-Length", "0"))
            except ValueError:
                self.close_connection = True
                return
            # Callers without a valid token get no more than a JSON body's worth
            limit = MAX_UPLOAD_BYTES if self._authorized else MAX_JSON_BYTES
            if length > limit:
                self.close_connection = True
            elif length > 0:
                self.rfile.read(length)

        def _read_json_body(self) -> dict[str, Any]:
            raw = self._read_raw_body(MAX_JSON_BYTES)
            if not raw.strip():
                return {}
            try:
                payload = json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise RequestError(HTTPStatus.BAD_REQUEST, f"Invalid JSON body: {e}")
            if not isinstance(payload, dict):
                raise RequestError(HTTPStatus.BAD_REQUEST, "Request body must be a JSON object")
            return payload

        # ------------------------------------------------------------------
        # Dispatch
        # ------------------------------------------------------------------

        def do_GET(self) -> None:  # noqa: N802
            self._dispatch("GET")

        def do_POST(self) -> None:  # noqa: N802
            self._dispatch("POST")

        def _dispatch(self, method: str) -> None:
            parsed = urlsplit(self.path)
            self._body_read = False
            self._authorized = False
            self.query = parse_qs(parsed.query)

            # Capability check comes before anything else, including routing
            token = self.query.get("session", [None])[0]
            if not session.check_token(token):
                self._send_error_json(HTTPStatus.FORBIDDEN, "Invalid session")
                return
            self._authorized = True

            routes = ROUTES.get(parsed.path)
            if routes is None:
                self._send_error_json(HTTPStatus.NOT_FOUND, "Not found")
                return
            handler = routes.get(method)
            if handler is None:
                self._send_error_json(HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed")
                return

            try:
                handler(self)
            except RequestError as e:
                self._send_error_json(e.status, str(e), **e.extra)
            except Exception:
                logger.exception("Unhandled error serving %s %s", method, parsed.path)
                self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal error")

        # ------------------------------------------------------------------
        # Routes
        # ------------------------------------------------------------------

        def _form(self) -> None:
            outcome = session.outcome
            if outcome is not None:
                body = f"This interview has ended ({outcome.status.value}). You can close this tab.\n"
                self._send_bytes(body.encode("utf-8"), "text/plain; charset=utf-8", HTTPStatus.GONE)
                return
            page = render_document(session.form_data(HEARTBEAT_INTERVAL_MS), session.theme)
            self._send_bytes(page.encode("utf-8"), "text/html; charset=utf-8")

        def _health(self) -> None:
            self._send_json({"ok": True})

        def _heartbeat(self) -> None:
            state = session.heartbeat()
            self._send_json({"ok": True, "status": state.value})

        def _answers(self) -> None:
            payload = self._read_json_body()
            if session.outcome is not None:
                self._send_json(_outcome_payload(session.outcome))
                return
            try:
                responses = parse_responses(session.questions, payload)
            except SubmissionError as e:
                raise RequestError(HTTPStatus.BAD_REQUEST, str(e))
            state = session.record_answers(responses)
            self._send_json({"ok": True, "status": state.value})

        def _submit(self) -> None:
            payload = self._read_json_body()
            if session.outcome is not None:
                self._send_json(_outcome_payload(session.outcome))
                return
            try:
                responses = parse_responses(session.questions, payload, allow_bare_mapping=True)
                outcome = session.submit(responses)
            except SubmissionError as e:
                raise RequestError(HTTPStatus.BAD_REQUEST, str(e), missing=e.missing)
            self._send_json(_outcome_payload(outcome))

        def _cancel(self) -> None:
            payload = self._read_json_body()
            if session.outcome is not None:
                self._send_json(_outcome_payload(session.outcome))
                return
            reason_name = payload.get("reason") or "user"
            reason = BROWSER_CANCEL_REASONS.get(reason_name)
            if reason is None:
                raise RequestError(HTTPStatus.BAD_REQUEST, f"Invalid cancel reason: {reason_name!r}")
            responses = None
            if "responses" in payload or "answers" in payload:
                try:
                    responses = parse_responses(session.questions, payload)
                except SubmissionError as e:
                    raise RequestError(HTTPStatus.BAD_REQUEST, str(e))
            outcome = session.cancel(reason, responses)
            self._send_json(_outcome_payload(outcome))

        def _upload(self) -> None:
            outcome = session.outcome
            if outcome is not None:
                raise RequestError(HTTPStatus.CONFLICT, "Interview already finished", status=outcome.status.value)
            question_id = self.query.get("question", [""])[0]
            question = next((q for q in session.questions["questions"] if q["id"] == question_id), None)
            if question is None or question["type"] != "image":
                raise RequestError(HTTPStatus.BAD_REQUEST, f"Not an image question: {question_id!r}")

            body = self._read_raw_body(MAX_UPLOAD_BYTES)
            if not body:
                raise RequestError(HTTPStatus.BAD_REQUEST, "Empty upload")

            filename = self.query.get("filename", [""])[0]
            suffix = _upload_suffix(filename, self.headers.get("Content-Type"))
            safe_id = re.sub(r"[^A-Za-z0-9_-]", "_", question_id)
            upload_dir.mkdir(parents=True, exist_ok=True)
            target = upload_dir / f"{safe_id}-{uuid.uuid4().hex[:12]}{suffix}"
            target.write_bytes(body)
            logger.debug("Stored upload for %s at %s (%d bytes)", question_id, target, len(body))
            self._send_json({"ok": True, "path": str(target)})

        def _save(self) -> None:
            payload = self._read_json_body()
            responses = None
            if "responses" in payload or "answers" in payload:
                try:
                    responses = parse_responses(session.questions, payload)
                except SubmissionError as e:
                    raise RequestError(HTTPStatus.BAD_REQUEST, str(e))
            try:
                path = session.save_snapshot(responses)
            except OSError as e:
                logger.warning("Manual snapshot failed: %s", e)
                raise RequestError(HTTPStatus.INTERNAL_SERVER_ERROR, f"Could not save snapshot: {e}")
            self._send_json({"ok": True, "path": str(path)})

        def log_message(self, format: str, *args: Any) -> None:
            # Never log the raw request line: it carries the capability token
            logger.debug("%s %s %s", self.address_string(), self.command, urlsplit(self.path).path)

    ROUTES: dict[str, dict[str, Callable[[InterviewHandler], None]]] = {
        "/": {"GET": InterviewHandler._form},
        "/health": {"GET": InterviewHandler._health},
        "/heartbeat": {"POST": InterviewHandler._heartbeat},
        "/answers": {"POST": InterviewHandler._answers},
        "/submit": {"POST": InterviewHandler._submit},
        "/cancel": {"POST": InterviewHandler._cancel},
        "/upload": {"POST": InterviewHandler._upload},
        "/save": {"POST": InterviewHandler._save},
    }

    return InterviewHandler


class InterviewHTTPServer(ThreadingHTTPServer):
    """Thread-per-request listener; ``server_close`` waits for in-flight requests."""

    daemon_threads = False
    block_on_close = True


class InterviewServerHandle:
    """A running listener: its URL plus a way to close it."""

    def __init__(self, session: InterviewSession, server: InterviewHTTPServer, thread: threading.Thread, upload_dir: Path):
        self.session = session
        self.server = server
        self.thread = thread
        self.upload_dir = upload_dir
        self.port = server.server_address[1]
        self.url = f"http://{HOST}:{self.port}/?session={session.token}"
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop accepting requests and wait for in-flight ones to finish."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.server.shutdown()
        self.server.server_close()
        self.thread.join(timeout=5)
        logger.debug("Listener on port %s closed", self.port)


def wait_until_ready(
    url: str,
    timeout: float = READY_TIMEOUT,
    probe: Callable[[str], bool] = check_session_health,
) -> bool:
    """Poll the health route until it answers or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if probe(url):
            return True
        time.sleep(0.05)
    return False


def default_upload_dir(session_id: str) -> Path:
    return Path(tempfile.gettempdir()) / "interview-uploads" / session_id


def start_interview_server(
    session: InterviewSession,
    port: int | None = None,
    upload_dir: Path | None = None,
) -> InterviewServerHandle:
    """Bind the listener, wait for it to answer, and move the session to ``listening``.

    Args:
        session: Session in state ``created``
        port: Fixed port, or None for an ephemeral one
        upload_dir: Where image uploads are stored

    Returns:
        Handle with the session URL

    Raises:
        OSError: If the port cannot be bound
        InterviewError: If the listener never became healthy
    """
    target_dir = upload_dir or default_upload_dir(session.id)
    server = InterviewHTTPServer((HOST, port or 0), make_handler(session, target_dir))
    thread = threading.Thread(
        target=server.serve_forever,
        kwargs={"poll_interval": 0.1},
        name=f"interview-{session.id[:8]}",
        daemon=True,
    )
    thread.start()
    handle = InterviewServerHandle(session, server, thread, target_dir)

    if not wait_until_ready(handle.url):
        handle.close()
        raise InterviewError(f"Interview server on port {handle.port} did not become ready")

    session.mark_listening(handle.url)
    logger.debug("Session %s listening on port %s", session.id, handle.port)
    return handle
