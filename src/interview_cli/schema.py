"""Questions document validation.

A questions document is plain JSON data::

    {
      "title": "Optional Title",
      "questions": [
        {"id": "q1", "type": "single", "question": "Pick one?", "options": ["A", "B"]}
      ]
    }

``validate_questions`` returns the same document (with ``recommended`` on multi-select
questions normalised to a list) or raises ``QuestionsValidationError``.
"""

from __future__ import annotations

from typing import Any

from interview_cli.errors import QuestionsValidationError

QUESTION_TYPES = ("single", "multi", "text", "image", "info")
MEDIA_TYPES = ("image", "chart", "mermaid", "table", "html")
MEDIA_POSITIONS = ("above", "below", "side")
CONVICTIONS = ("strong", "slight")
WEIGHTS = ("critical", "minor")

# Question types that never carry options or a recommendation
FREEFORM_TYPES = ("text", "image", "info")

SCHEMA_EXAMPLE = """Expected format:
{
  "title": "Optional Title",
  "questions": [
    { "id": "q1", "type": "single", "question": "Pick one?", "options": ["A", "B"] },
    { "id": "q2", "type": "multi", "question": "Pick many?", "options": ["X", "Y", "Z"] },
    { "id": "q3", "type": "text", "question": "Describe?" },
    { "id": "q4", "type": "image", "question": "Upload?" }
  ]
}
Valid types: single, multi, text, image, info
Options: array of strings or objects with { label, code? }"""


def option_label(option: str | dict[str, Any]) -> str:
    """Return the display label of a plain or rich option."""
    return option if isinstance(option, str) else str(option["label"])


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_code_block(block: Any, context: str) -> None:
    if not isinstance(block, dict):
        raise QuestionsValidationError(f"{context}: codeBlock must be an object")
    if not isinstance(block.get("code"), str):
        raise QuestionsValidationError(f"{context}: codeBlock.code must be a string")
    for key in ("lang", "file", "lines", "title"):
        if key in block and not isinstance(block[key], str):
            raise QuestionsValidationError(f"{context}: codeBlock.{key} must be a string")
    if "highlights" in block:
        highlights = block["highlights"]
        if not isinstance(highlights, list) or not all(_is_number(h) for h in highlights):
            raise QuestionsValidationError(
                f"{context}: codeBlock.highlights must be an array of numbers"
            )


def _validate_media_block(block: Any, context: str) -> None:
    if not isinstance(block, dict):
        raise QuestionsValidationError(f"{context}: media must be an object")

    media_type = block.get("type")
    if media_type not in MEDIA_TYPES:
        raise QuestionsValidationError(
            f"{context}: media.type must be one of: {', '.join(MEDIA_TYPES)}"
        )

    if media_type == "image" and not isinstance(block.get("src"), str):
        raise QuestionsValidationError(f"{context}: media.src required for image type")
    if media_type == "chart":
        chart = block.get("chart")
        if not isinstance(chart, dict):
            raise QuestionsValidationError(f"{context}: media.chart required for chart type")
        if not isinstance(chart.get("type"), str):
            raise QuestionsValidationError(f"{context}: media.chart.type must be a string")
        if not isinstance(chart.get("data"), dict):
            raise QuestionsValidationError(f"{context}: media.chart.data must be an object")
    if media_type == "mermaid" and not isinstance(block.get("mermaid"), str):
        raise QuestionsValidationError(f"{context}: media.mermaid required for mermaid type")
    if media_type == "table":
        table = block.get("table")
        if not isinstance(table, dict):
            raise QuestionsValidationError(f"{context}: media.table required for table type")
        if not isinstance(table.get("headers"), list):
            raise QuestionsValidationError(f"{context}: media.table.headers must be an array")
        if not isinstance(table.get("rows"), list):
            raise QuestionsValidationError(f"{context}: media.table.rows must be an array")
    if media_type == "html" and not isinstance(block.get("html"), str):
        raise QuestionsValidationError(f"{context}: media.html required for html type")

    if "position" in block and block["position"] not in MEDIA_POSITIONS:
        raise QuestionsValidationError(
            f"{context}: media.position must be one of: {', '.join(MEDIA_POSITIONS)}"
        )


def _validate_option(option: Any, question_id: str, index: int) -> None:
    if isinstance(option, str):
        return
    if isinstance(option, dict):
        label = option.get("label")
        if not isinstance(label, str):
            raise QuestionsValidationError(
                f'Question "{question_id}": option at index {index} must have a "label" string'
            )
        if "code" in option:
            _validate_code_block(option["code"], f'Question "{question_id}" option "{label}"')
        return
    raise QuestionsValidationError(
        f'Question "{question_id}": option at index {index} must be a string or object with label'
    )


def _validate_question(question: Any, index: int) -> None:
    if not isinstance(question, dict):
        raise QuestionsValidationError(f"Invalid question at index {index}: must be an object")

    qid = question.get("id")
    if not isinstance(qid, str):
        raise QuestionsValidationError(f"Invalid question at index {index}: id must be a string")

    qtype = question.get("type")
    if qtype not in QUESTION_TYPES:
        hint = ' (use "single" instead of "select")' if qtype == "select" else ""
        raise QuestionsValidationError(
            f'Question "{qid}": type must be one of: {", ".join(QUESTION_TYPES)}{hint}'
        )

    if not isinstance(question.get("question"), str):
        hint = ""
        if "label" in question or "description" in question:
            hint = ' (use "question" field, not "label" or "description")'
        raise QuestionsValidationError(f'Question "{qid}": "question" field must be a string{hint}')

    if "options" in question:
        options = question["options"]
        if not isinstance(options, list) or not options:
            raise QuestionsValidationError(f'Question "{qid}": options must be a non-empty array')
        for option_index, option in enumerate(options):
            _validate_option(option, qid, option_index)

    if "context" in question and not isinstance(question["context"], str):
        raise QuestionsValidationError(f'Question "{qid}": context must be a string')

    if "codeBlock" in question:
        _validate_code_block(question["codeBlock"], f'Question "{qid}"')

    if "conviction" in question and question["conviction"] not in CONVICTIONS:
        raise QuestionsValidationError(f'Question "{qid}": conviction must be "strong" or "slight"')

    if "weight" in question and question["weight"] not in WEIGHTS:
        raise QuestionsValidationError(f'Question "{qid}": weight must be "critical" or "minor"')

    if "media" in question:
        media = question["media"]
        items = media if isinstance(media, list) else [media]
        for media_index, block in enumerate(items):
            _validate_media_block(block, f'Question "{qid}" media[{media_index}]')


def _validate_structure(data: Any) -> dict[str, Any]:
    if isinstance(data, list):
        raise QuestionsValidationError(
            f"Invalid questions file: root must be an object, not an array.\n\n{SCHEMA_EXAMPLE}"
        )
    if not isinstance(data, dict):
        raise QuestionsValidationError(f"Invalid questions file: must be an object.\n\n{SCHEMA_EXAMPLE}")

    if ("label" in data or "description" in data) and "questions" not in data:
        raise QuestionsValidationError(
            'Invalid questions file: missing "questions" array. '
            f"Did you mean to wrap your questions?\n\n{SCHEMA_EXAMPLE}"
        )
    if "title" in data and not isinstance(data["title"], str):
        raise QuestionsValidationError("Invalid questions file: title must be a string")
    if "description" in data and not isinstance(data["description"], str):
        raise QuestionsValidationError("Invalid questions file: description must be a string")

    questions = data.get("questions")
    if not isinstance(questions, list) or not questions:
        raise QuestionsValidationError(
            f'Invalid questions file: "questions" must be a non-empty array.\n\n{SCHEMA_EXAMPLE}'
        )

    for index, question in enumerate(questions):
        _validate_question(question, index)

    return data


def _validate_recommended(question: dict[str, Any]) -> None:
    qid = question["id"]
    qtype = question["type"]
    recommended = question["recommended"]

    if qtype in FREEFORM_TYPES:
        raise QuestionsValidationError(f'Question "{qid}": recommended not allowed for type "{qtype}"')

    labels = [option_label(option) for option in question.get("options", [])]

    if qtype == "single":
        if not isinstance(recommended, str):
            raise QuestionsValidationError(
                f'Question "{qid}": recommended must be string for single-select'
            )
        if recommended not in labels:
            raise QuestionsValidationError(f'Question "{qid}": recommended "{recommended}" not in options')
        return

    recs = recommended if isinstance(recommended, list) else [recommended]
    for rec in recs:
        if rec not in labels:
            raise QuestionsValidationError(f'Question "{qid}": recommended "{rec}" not in options')
    question["recommended"] = list(recs)


def validate_questions(data: Any) -> dict[str, Any]:
    """Validate a questions document.

    Args:
        data: Parsed JSON value

    Returns:
        The validated document

    Raises:
        QuestionsValidationError: With a message naming the offending question
    """
    document = _validate_structure(data)

    seen: set[str] = set()
    for question in document["questions"]:
        if question["id"] in seen:
            raise QuestionsValidationError(f'Duplicate question id: "{question["id"]}"')
        seen.add(question["id"])

    for question in document["questions"]:
        qid = question["id"]
        qtype = question["type"]
        if qtype in ("single", "multi") and not question.get("options"):
            raise QuestionsValidationError(f'Question "{qid}": options required for type "{qtype}"')
        if qtype in FREEFORM_TYPES and "options" in question:
            raise QuestionsValidationError(f'Question "{qid}": options not allowed for type "{qtype}"')

        if "conviction" in question and "recommended" not in question:
            raise QuestionsValidationError(f'Question "{qid}": conviction requires recommended')

        if "recommended" in question:
            _validate_recommended(question)

    return document


def interactive_questions(document: dict[str, Any]) -> list[dict[str, Any]]:
    """Questions that expect an answer (everything except ``info`` blocks)."""
    return [q for q in document["questions"] if q["type"] != "info"]
