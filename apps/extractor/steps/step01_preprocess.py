"""
Step 1 — Preprocessing.
Normalize whitespace, line endings, typographic characters and common clinical
shorthand spacing. Never drops clinical words. Idempotent.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import Warning

logger = logging.getLogger(__name__)

_CHAR_MAP = str.maketrans({
    "\t": " ",
    "\u00a0": " ",   # no-break space
    "\u2007": " ",
    "\u202f": " ",
    "\u2018": "'",
    "\u2019": "'",
    "\u201a": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u201e": '"',
    "\u2013": "-",   # en dash
    "\u2014": "-",   # em dash
    "\u2212": "-",   # minus sign
    "\u2026": "...",
})

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_SPACES_RE = re.compile(r" {2,}")
_BLANK_RUN_RE = re.compile(r"\n{4,}")
_BULLET_RE = re.compile(r"^(?:\*(?!\*)|[\u2022\u00b7\u25aa\u25cf\u25e6\u2023]|-(?=[A-Za-z]))[ ]*", re.MULTILINE)

# "John Doe, 55 M" -> "John Doe, 55M"; "55-F" at line start/end -> "55F"
_AGE_SEX_LEAD_RE = re.compile(r"(^|,[ ]?)(\d{1,3})[ -]([MF])\b", re.MULTILINE)
_AGE_SEX_EOL_RE = re.compile(r"(?<![\w/.\-])(\d{1,3})[ -]([MF])$", re.MULTILINE)
_SP_RE = re.compile(r"\bs\s*/\s*p\b", re.IGNORECASE)
_DAY_MARKER_RE = re.compile(r"\b(POD|HD|PBD)\s*[#\-]\s*(?=\d)", re.IGNORECASE)


def _normalize_shorthand(text: str) -> str:
    text = _AGE_SEX_LEAD_RE.sub(r"\1\2\3", text)
    text = _AGE_SEX_EOL_RE.sub(r"\1\2", text)
    text = _SP_RE.sub("s/p", text)
    text = _DAY_MARKER_RE.sub(lambda m: f"{m.group(1)} ", text)
    return text


def preprocess_note(text: str, note_id: str | None = None) -> tuple[str, list[Warning]]:
    """
    Return (normalized text, warnings).
    preprocess_note(preprocess_note(x)[0])[0] == preprocess_note(x)[0]
    """
    warnings: list[Warning] = []

    text = text.replace("\r\n", "\n").replace("\r", "\n")

    cleaned = _CONTROL_RE.sub("", text)
    if cleaned != text:
        warnings.append(Warning(
            code="CONTROL_CHARACTERS_REMOVED",
            message=f"Removed {len(text) - len(cleaned)} control characters",
            note_id=note_id,
        ))
        text = cleaned

    text = text.translate(_CHAR_MAP)

    lines = [_SPACES_RE.sub(" ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = _BULLET_RE.sub("- ", text)
    text = _normalize_shorthand(text)
    text = _BLANK_RUN_RE.sub("\n\n\n", text).strip()

    logger.debug(f"Preprocessed note {note_id}: {len(text)} chars")
    return text, warnings
