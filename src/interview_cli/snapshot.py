"""Snapshot and recovery documents.

A snapshot is a static HTML page that renders and can be answered without a
server. Everything needed to resume lives in one embedded block::

    <script type="application/json" id="pi-interview-data">{...}</script>

The block holds ``title``, ``description``, ``questions``, ``savedAnswers``,
``savedAt``, ``wasSubmitted`` and ``savedFrom``. Old snapshots must keep
loading, so this layout does not change.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from interview_cli.errors import SnapshotCorruptError, SnapshotFormatError
from interview_cli.form import DATA_BLOCK_ID, render_document
from interview_cli.models import ResponseItem, SavedFrom, SavedInterview
from interview_cli.paths import recovery_dir
from interview_cli.schema import validate_questions

DATA_BLOCK_RE = re.compile(
    r"<script[^>]+id=[\"']" + DATA_BLOCK_ID + r"[\"'][^>]*>([\s\S]*?)</script>",
    re.IGNORECASE,
)

IMAGES_DIR = "images"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S")


def _slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:40] or "interview"


def question_document(questions: dict[str, Any]) -> dict[str, Any]:
    """Strip a document down to the questions file fields."""
    doc: dict[str, Any] = {}
    for key in ("title", "description"):
        if key in questions:
            doc[key] = questions[key]
    doc["questions"] = questions["questions"]
    return doc


def build_snapshot_data(
    questions: dict[str, Any],
    answers: Iterable[ResponseItem],
    saved_from: SavedFrom,
    was_submitted: bool,
    saved_at: str | None = None,
) -> dict[str, Any]:
    """Assemble the embedded data block."""
    data = question_document(questions)
    data["savedAnswers"] = [item.to_dict() for item in answers]
    data["savedAt"] = saved_at or _now_iso()
    data["wasSubmitted"] = was_submitted
    data["savedFrom"] = saved_from.to_dict()
    return data


def encode_snapshot(
    questions: dict[str, Any],
    answers: Iterable[ResponseItem],
    saved_from: SavedFrom,
    was_submitted: bool,
    theme: dict[str, Any] | None = None,
    saved_at: str | None = None,
) -> str:
    """Render a standalone snapshot document."""
    data = build_snapshot_data(questions, answers, saved_from, was_submitted, saved_at)
    return render_document(data, theme)


# ============================================================================
# Decoding
# ============================================================================


def expand_home(value: str) -> str:
    """Expand a leading ``~`` to the user's home directory."""
    if value == "~":
        return str(Path.home())
    if value.startswith("~/") or value.startswith("~\\"):
        return str(Path.home() / value[2:])
    return value


def resolve_reference(value: str, base_dir: Path) -> str:
    """Resolve a file reference saved in a snapshot.

    URIs are left alone, absolute paths are kept, anything else is taken
    relative to ``base_dir``.
    """
    if not value or "://" in value:
        return value
    expanded = expand_home(value)
    if os.path.isabs(expanded):
        return expanded
    return str(base_dir / value)


def _image_question_ids(questions: dict[str, Any]) -> set[str]:
    return {q["id"] for q in questions["questions"] if q["type"] == "image"}


def _is_saved_answer(entry: Any) -> bool:
    if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
        return False
    value = entry.get("value", "")
    if isinstance(value, list):
        if not all(isinstance(v, str) for v in value):
            return False
    elif not isinstance(value, str):
        return False
    attachments = entry.get("attachments")
    return attachments is None or (
        isinstance(attachments, list) and all(isinstance(a, str) for a in attachments)
    )


def _resolve_answers(
    answers: list[ResponseItem], image_ids: set[str], base_dir: Path
) -> list[ResponseItem]:
    resolved = []
    for item in answers:
        value = item.value
        if item.id in image_ids:
            if isinstance(value, list):
                value = [resolve_reference(v, base_dir) for v in value]
            else:
                value = resolve_reference(value, base_dir)
        attachments = None
        if item.attachments:
            attachments = [resolve_reference(a, base_dir) for a in item.attachments]
        resolved.append(ResponseItem(id=item.id, value=value, attachments=attachments))
    return resolved


def decode_snapshot(content: str, file_path: Path) -> SavedInterview:
    """Load a saved interview document.

    Args:
        content: HTML text of the snapshot
        file_path: Where the snapshot lives (relative references resolve against
            its directory)

    Returns:
        SavedInterview with validated questions and resolved answers

    Raises:
        SnapshotFormatError: If the document has no embedded data block
        SnapshotCorruptError: If the embedded block is not valid JSON
        QuestionsValidationError: If the embedded questions are invalid
    """
    match = DATA_BLOCK_RE.search(content)
    if match is None:
        raise SnapshotFormatError("Invalid saved interview: missing embedded data")

    try:
        raw = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise SnapshotCorruptError(f"Invalid saved interview: malformed JSON ({e})") from e

    validated = validate_questions(raw)
    questions = question_document(validated)

    saved_answers = None
    if isinstance(raw.get("savedAnswers"), list):
        for index, entry in enumerate(raw["savedAnswers"]):
            if not _is_saved_answer(entry):
                raise SnapshotCorruptError(
                    f"Invalid saved interview: malformed savedAnswers (entry {index})"
                )
        items = [ResponseItem.from_dict(a) for a in raw["savedAnswers"]]
        base_dir = Path(file_path).resolve().parent
        saved_answers = _resolve_answers(items, _image_question_ids(questions), base_dir)

    saved_at = raw.get("savedAt")
    was_submitted = raw.get("wasSubmitted")
    return SavedInterview(
        questions=questions,
        saved_answers=saved_answers,
        saved_at=saved_at if isinstance(saved_at, str) else None,
        was_submitted=was_submitted if isinstance(was_submitted, bool) else None,
        saved_from=SavedFrom.from_dict(raw.get("savedFrom")),
    )


# ============================================================================
# Writing
# ============================================================================


def _atomic_write(path: Path, content: str) -> None:
    """Write via temp file + rename so readers never see a partial document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    with open(temp_path, "w", encoding="utf-8") as f:
        f.write(content)
        f.flush()
        os.fsync(f.fileno())
    temp_path.replace(path)


def _bundle_images(
    answers: list[ResponseItem], image_ids: set[str], target_dir: Path
) -> list[ResponseItem]:
    """Copy local image answers next to the snapshot and point answers at the copies."""
    bundled = []
    counter = 0

    def copy(value: str) -> str:
        nonlocal counter
        if not value or "://" in value:
            return value
        source = Path(expand_home(value))
        if not source.is_file():
            return value
        counter += 1
        images = target_dir / IMAGES_DIR
        images.mkdir(parents=True, exist_ok=True)
        name = f"{counter:02d}-{source.name}"
        shutil.copy2(source, images / name)
        return f"{IMAGES_DIR}/{name}"

    for item in answers:
        value = item.value
        if item.id in image_ids:
            value = [copy(v) for v in value] if isinstance(value, list) else copy(value)
        attachments = [copy(a) for a in item.attachments] if item.attachments else None
        bundled.append(ResponseItem(id=item.id, value=value, attachments=attachments))
    return bundled


def write_snapshot(
    directory: Path,
    questions: dict[str, Any],
    answers: list[ResponseItem],
    saved_from: SavedFrom,
    was_submitted: bool,
    theme: dict[str, Any] | None = None,
) -> Path:
    """Write a user-facing snapshot into its own folder under ``directory``.

    Uploaded images are copied into an ``images/`` folder beside the page so
    the snapshot stays portable.

    Returns:
        Path to the written ``index.html``
    """
    title = str(questions.get("title") or "interview")
    folder = directory / f"{_slugify(title)}-{_stamp()}-{uuid.uuid4().hex[:8]}"
    folder.mkdir(parents=True, exist_ok=False)

    bundled = _bundle_images(answers, _image_question_ids(questions), folder)
    target = folder / "index.html"
    _atomic_write(target, encode_snapshot(questions, bundled, saved_from, was_submitted, theme))
    return target


def write_recovery(
    questions: dict[str, Any],
    answers: list[ResponseItem],
    saved_from: SavedFrom,
    directory: Path | None = None,
    theme: dict[str, Any] | None = None,
) -> Path:
    """Write an internal recovery document for a session that ended unsubmitted.

    Returns:
        Path to the recovery file
    """
    target_dir = directory or recovery_dir()
    name = f"{_stamp()}-{saved_from.session_id[:8]}-{uuid.uuid4().hex[:6]}.html"
    target = target_dir / name
    _atomic_write(target, encode_snapshot(questions, answers, saved_from, False, theme))
    return target
