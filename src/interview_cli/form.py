"""Render the self-contained interview document (live form and saved snapshot)."""

from __future__ import annotations

import html
import json
import logging
import re
from importlib import resources
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DATA_BLOCK_ID = "pi-interview-data"
VALID_MODES = ("auto", "light", "dark")
PLACEHOLDER_RE = re.compile(r"__(THEME_MODE|THEME_NAME|TITLE|THEME_CSS|DATA)__")


def _load_template() -> str:
    return resources.files("interview_cli").joinpath("templates/form.html").read_text(encoding="utf-8")


def embed_json(data: dict[str, Any]) -> str:
    """Serialize ``data`` so it can sit inside a ``<script>`` element.

    ``<``, ``>`` and ``&`` are written as unicode escapes, which JSON parsers
    decode back to the original characters.
    """
    raw = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return raw.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")


def _read_css(path: str | None) -> str:
    if not path:
        return ""
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Could not read theme stylesheet %s: %s", path, e)
        return ""


def _theme_css(theme: dict[str, Any], mode: str) -> str:
    light = _read_css(theme.get("light_path"))
    dark = _read_css(theme.get("dark_path"))
    if mode == "light":
        css = light
    elif mode == "dark":
        css = dark
    else:
        css = light
        if dark:
            css += f"\n@media (prefers-color-scheme: dark) {{\n{dark}\n}}"
    # Theme content must not close the style element
    return css.replace("</", "<\\/")


def render_document(data: dict[str, Any], theme: dict[str, Any] | None = None) -> str:
    """Render the interview HTML with ``data`` inlined as the embedded data block.

    Args:
        data: Document data (questions plus saved answers, provenance, or live
            server settings under ``server``)
        theme: Merged theme settings (``mode``, ``name``, ``light_path``,
            ``dark_path``)

    Returns:
        Complete HTML document
    """
    theme = theme or {}
    mode = theme.get("mode") if theme.get("mode") in VALID_MODES else "dark"
    values = {
        "THEME_MODE": html.escape(str(mode), quote=True),
        "THEME_NAME": html.escape(str(theme.get("name") or "default"), quote=True),
        "TITLE": html.escape(str(data.get("title") or "Interview")),
        "THEME_CSS": _theme_css(theme, str(mode)),
        "DATA": embed_json(data),
    }
    return PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], _load_template())
