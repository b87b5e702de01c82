"""
Step 8 — Confidence calibration.
calibrated = raw x quality multiplier x corroboration bonus, clamped to [0, 1].

Equal values of the same field collapse into one candidate first (sources
unioned, highest raw confidence kept), so duplicates in one section cannot
inflate the bonus. Scalar fields then get a primary (highest calibrated
confidence, earliest on ties) and ranked secondaries.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping

from packages.shared.models import (
    KNOWN_FIELDS,
    MULTI_VALUED_FIELDS,
    EvidenceSpan,
    ExtractedField,
    FieldSlot,
    MultiValuedSlot,
    QualityGrade,
    ScalarSlot,
    ScalarValue,
    Warning,
)
from apps.extractor.lib.dates import parse_date_text
from apps.extractor.steps.step00_validate import coerce_candidate_value

logger = logging.getLogger(__name__)

EXTERNAL_CONFIDENCE = 0.90
EXTERNAL_SOURCE = "external"

_MULTIPLIERS: dict[QualityGrade, float] = {
    QualityGrade.EXCELLENT: 1.00,
    QualityGrade.GOOD: 0.95,
    QualityGrade.FAIR: 0.85,
    QualityGrade.POOR: 0.75,
    QualityGrade.VERY_POOR: 0.65,
}

_BONUS_STEP = 0.05
_BONUS_CAP = 1.15


def quality_multiplier(grade: QualityGrade) -> float:
    return _MULTIPLIERS[grade]


def corroboration_bonus(n_sources: int) -> float:
    """1.0 for a single source, +0.05 per extra independent source, capped at 1.15."""
    if n_sources <= 1:
        return 1.0
    return min(1.0 + _BONUS_STEP * (n_sources - 1), _BONUS_CAP)


def calibrate_field(field: ExtractedField, grade: QualityGrade) -> ExtractedField:
    """Idempotent: always computed from raw_confidence, never from a previous result."""
    n_sources = len(set(field.sources)) or 1
    value = field.raw_confidence * quality_multiplier(grade) * corroboration_bonus(n_sources)
    return field.model_copy(update={
        "confidence": round(min(1.0, max(0.0, value)), 4),
        "calibrated": True,
    })


def collapse_candidates(candidates: list[ExtractedField]) -> list[ExtractedField]:
    """
    One candidate per (field, normalized value), in first-seen order.
    The highest raw confidence wins; sources are unioned.
    """
    order: list[tuple[str, str]] = []
    best: dict[tuple[str, str], ExtractedField] = {}
    sources: dict[tuple[str, str], list[str]] = {}

    for c in candidates:
        key = (c.field_name, c.normalized_value())
        if key not in best:
            order.append(key)
            best[key] = c
            sources[key] = list(c.sources)
            continue
        if c.raw_confidence > best[key].raw_confidence:
            best[key] = c
        for s in c.sources:
            if s not in sources[key]:
                sources[key].append(s)

    return [best[k].model_copy(update={"sources": sources[k]}) for k in order]


def calibrate_fields(
    candidates: list[ExtractedField],
    grade: QualityGrade,
    note_grades: Mapping[str, QualityGrade] | None = None,
) -> tuple[dict[str, FieldSlot], list[Warning]]:
    """
    Collapse, calibrate and slot every known field. Every known field is
    present in the result, empty when nothing was extracted.
    `note_grades` lets a candidate use its own note's grade; `grade` is the fallback.
    """
    warnings: list[Warning] = []
    note_grades = note_grades or {}

    calibrated: list[ExtractedField] = []
    for c in collapse_candidates(candidates):
        g = note_grades.get(c.note_id or "", grade)
        calibrated.append(calibrate_field(c, g))

    by_field: dict[str, list[tuple[int, ExtractedField]]] = {}
    for i, c in enumerate(calibrated):
        by_field.setdefault(c.field_name, []).append((i, c))

    slots: dict[str, FieldSlot] = {}
    for name in sorted(KNOWN_FIELDS):
        items = by_field.get(name, [])
        if name in MULTI_VALUED_FIELDS:
            slots[name] = MultiValuedSlot(items=[c for _, c in items])
            continue
        # Highest confidence first; earlier extraction order breaks ties.
        ranked = [c for _, c in sorted(items, key=lambda ic: (-ic[1].confidence, ic[0]))]
        slots[name] = ScalarSlot(
            primary=ranked[0] if ranked else None,
            secondary=ranked[1:],
        )

    unknown = sorted(set(by_field) - KNOWN_FIELDS)
    for name in unknown:
        warnings.append(Warning(
            code="UNKNOWN_FIELD",
            message=f"Dropped {len(by_field[name])} candidates for unknown field '{name}'",
        ))

    populated = sum(1 for s in slots.values() if (s.items if isinstance(s, MultiValuedSlot) else s.primary))
    logger.info(f"Calibrated {len(calibrated)} candidates into {populated}/{len(slots)} populated fields (grade {grade.value})")
    return slots, warnings


def merge_external_candidates(
    candidates: list[ExtractedField],
    external: Mapping[str, Any] | None,
) -> tuple[list[ExtractedField], list[Warning]]:
    """
    Add externally supplied values (field_name -> value | list | dict) to the
    candidate stream at a fixed raw confidence with source "external".
    """
    warnings: list[Warning] = []
    merged = list(candidates)
    if not external:
        return merged, warnings

    added = 0
    for field_name, raw in external.items():
        if field_name not in KNOWN_FIELDS:
            warnings.append(Warning(
                code="UNKNOWN_EXTERNAL_FIELD",
                message=f"External candidate for unknown field '{field_name}' ignored",
            ))
            continue

        values = raw if isinstance(raw, (list, tuple)) else [raw]
        for item in values:
            value, coerce_warnings = coerce_candidate_value(item)
            warnings.extend(coerce_warnings)
            if value is None:
                continue
            when = _external_date(field_name, value)
            if when is not None:
                value = ScalarValue(value=when)
            merged.append(ExtractedField(
                field_name=field_name,
                value=value,
                confidence=EXTERNAL_CONFIDENCE,
                raw_confidence=EXTERNAL_CONFIDENCE,
                evidence=EvidenceSpan(start=0, end=0, text=""),
                rule_id=None,
                note_id=None,
                note_ordinal=0,
                section=None,
                sources=[EXTERNAL_SOURCE],
                date=when,
            ))
            added += 1

    logger.info(f"Merged {added} external candidates")
    return merged, warnings


def _external_date(field_name: str, value) -> date | None:
    if not field_name.startswith("dates.") or not isinstance(value, ScalarValue):
        return None
    if isinstance(value.value, date):
        return value.value
    if isinstance(value.value, str):
        return parse_date_text(value.value)
    return None
