"""
Step 0 — Input validation.
Verify each note: non-empty text, size under max_note_chars.
Assign note ids and ordinals. Also hosts the single coercion boundary for
externally supplied candidate values.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable

from packages.shared.errors import InputError
from packages.shared.models import (
    FieldValue,
    PipelineConfig,
    RawNote,
    ScalarValue,
    StructuredValue,
    Warning,
)

logger = logging.getLogger(__name__)

_PRIMARY_KEYS = ("value", "name", "text")


def validate_notes(
    notes: Iterable[RawNote | str | dict],
    config: PipelineConfig,
) -> tuple[list[RawNote], list[Warning]]:
    """
    Validate input notes and return (notes with ids/ordinals assigned, warnings).
    Raises InputError before any processing when the batch is unusable.
    """
    warnings: list[Warning] = []
    valid: list[RawNote] = []

    items = list(notes) if notes is not None else []
    if not items:
        raise InputError("No notes supplied")

    seen_ids: set[str] = set()
    for ordinal, item in enumerate(items):
        if isinstance(item, RawNote):
            note = item
        elif isinstance(item, str):
            note = RawNote(text=item)
        elif isinstance(item, dict):
            if "text" not in item:
                raise InputError(f"Note at position {ordinal} has no 'text' key")
            note = RawNote(
                text=str(item["text"]) if item["text"] is not None else "",
                note_id=item.get("note_id"),
                ordinal=item.get("ordinal"),
            )
        else:
            raise InputError(f"Unsupported note type at position {ordinal}: {type(item).__name__}")

        note_id = note.note_id or f"note-{ordinal}"
        if not note.text or not note.text.strip():
            raise InputError(f"Note {note_id} is empty", note_id=note_id)
        if len(note.text) > config.max_note_chars:
            raise InputError(
                f"Note {note_id} has {len(note.text)} characters, limit is {config.max_note_chars}",
                note_id=note_id,
            )

        if note_id in seen_ids:
            warnings.append(Warning(
                code="DUPLICATE_NOTE_ID",
                message=f"Note id '{note_id}' repeated at position {ordinal}; renamed",
                note_id=note_id,
            ))
            note_id = f"{note_id}-{ordinal}"
        seen_ids.add(note_id)

        valid.append(note.model_copy(update={
            "note_id": note_id,
            "ordinal": note.ordinal if note.ordinal is not None else ordinal,
        }))

    logger.info(f"Validated {len(valid)} notes")
    return valid, warnings


def coerce_candidate_value(raw: Any) -> tuple[FieldValue | None, list[Warning]]:
    """
    Single normalization boundary for candidate values from outside the rule
    engine. Returns (value or None when absent, warnings). Never raises.
    """
    warnings: list[Warning] = []

    if raw is None:
        return None, warnings
    if isinstance(raw, (ScalarValue, StructuredValue)):
        return raw, warnings
    if isinstance(raw, datetime):
        return ScalarValue(value=raw.date()), warnings
    if isinstance(raw, (bool, int, float, date)):
        return ScalarValue(value=raw), warnings
    if isinstance(raw, str):
        text = raw.strip()
        return (ScalarValue(value=text) if text else None), warnings

    if isinstance(raw, dict):
        if not raw:
            return None, warnings
        key = next((k for k in _PRIMARY_KEYS if raw.get(k) not in (None, "")), None)
        if key is not None:
            primary = raw[key]
            extras = {
                k: _plain(v) for k, v in raw.items()
                if k != key and v is not None
            }
            if extras:
                return StructuredValue(label=str(primary).strip(), subfields={key: _plain(primary), **extras}), warnings
            inner, inner_warnings = coerce_candidate_value(primary)
            return inner, warnings + inner_warnings
        return StructuredValue(
            label=", ".join(f"{k}={v}" for k, v in raw.items() if v is not None),
            subfields={k: _plain(v) for k, v in raw.items()},
        ), warnings

    text = str(raw).strip()
    warnings.append(Warning(
        code="COERCED_VALUE",
        message=f"Coerced unsupported candidate of type {type(raw).__name__} to text",
    ))
    logger.warning(f"Coerced unsupported candidate of type {type(raw).__name__} to text")
    return (ScalarValue(value=text) if text else None), warnings


def _plain(v: Any) -> int | float | str | None:
    if v is None or isinstance(v, (int, float, str)) and not isinstance(v, bool):
        return v
    if isinstance(v, date):
        return v.isoformat()
    return str(v)
