"""
Step 6 — Temporal qualifiers.
Attach a date (or an unresolved relative reference) from the evidence sentence,
then exactly one qualifier per dateable fact:
ADMISSION/DISCHARGE > PROCEDURE_RELATIVE > FUTURE > PAST > PRESENT.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import (
    AnchorKind,
    ExtractedField,
    TemporalKind,
    TemporalQualifier,
    TemporalReference,
    Warning,
)
from apps.extractor.steps.step03_temporal import associate_date, sentence_bounds

logger = logging.getLogger(__name__)

DATEABLE_FIELDS = frozenset({
    "dates.ictus",
    "dates.admission",
    "dates.discharge",
    "dates.procedure",
    "procedures",
    "complications",
    "medications",
    "functional_scores",
    "exam_findings",
    "imaging",
    "follow_up",
})

_FIXED = {
    "dates.admission": TemporalQualifier.ADMISSION,
    "dates.discharge": TemporalQualifier.DISCHARGE,
}

_ADMISSION_RE = re.compile(
    r"\b(?:admission|admitted|admit|on\s+arrival|at\s+presentation|presented|presenting)\b", re.IGNORECASE
)
_DISCHARGE_RE = re.compile(r"\b(?:discharge[ds]?|discharging|d/c)\b", re.IGNORECASE)
_PROCEDURE_REL_RE = re.compile(
    r"\b(?:POD|post[-\s]?op(?:erative(?:ly)?)?|s/p|status\s+post|intra[-\s]?op(?:erative(?:ly)?)?)\b", re.IGNORECASE
)
_FUTURE_RE = re.compile(
    r"\b(?:will|plan(?:s|ned)?\s+(?:to|for)|scheduled|follow[-\s]?up\s+in|next|to\s+be|return\s+to\s+clinic"
    r"|upcoming|pending)\b",
    re.IGNORECASE,
)
_PAST_RE = re.compile(
    r"\b(?:history\s+of|h/o|prior|previous(?:ly)?|underwent|was|were|had|ago|\w{3,}ed)\b", re.IGNORECASE
)


def _nearest_cue(context: str, offset: int, *patterns: tuple[TemporalQualifier, re.Pattern]) -> TemporalQualifier | None:
    best: tuple[int, TemporalQualifier] | None = None
    for qualifier, pattern in patterns:
        for m in pattern.finditer(context):
            distance = abs(m.start() - offset)
            if best is None or distance < best[0]:
                best = (distance, qualifier)
    return best[1] if best else None


def qualifier_for(field: ExtractedField, text: str) -> TemporalQualifier:
    """Qualifier from the evidence sentence, following the fixed precedence."""
    if field.field_name in _FIXED:
        return _FIXED[field.field_name]

    left, right = sentence_bounds(text, field.evidence.start)
    context = text[left:right]
    offset = field.evidence.start - left

    anchor_kw = _nearest_cue(
        context, offset,
        (TemporalQualifier.ADMISSION, _ADMISSION_RE),
        (TemporalQualifier.DISCHARGE, _DISCHARGE_RE),
    )
    if anchor_kw is not None:
        return anchor_kw

    ref = field.reference
    if (ref is not None and ref.required_anchor == AnchorKind.PROCEDURE) or _PROCEDURE_REL_RE.search(context):
        return TemporalQualifier.PROCEDURE_RELATIVE
    if field.field_name == "follow_up" or _FUTURE_RE.search(context):
        return TemporalQualifier.FUTURE
    if _PAST_RE.search(context):
        return TemporalQualifier.PAST
    return TemporalQualifier.PRESENT


def _sentence_reference(
    field: ExtractedField,
    text: str,
    references: list[TemporalReference],
) -> TemporalReference | None:
    left, right = sentence_bounds(text, field.evidence.start)
    ref = associate_date(text, field.evidence.start, field.evidence.end, references)
    if ref is None or not left <= ref.start < right:
        return None
    if ref.kind == TemporalKind.ABSOLUTE and ref.resolved_date is None:
        return None
    return ref


def tag_qualifiers(
    fields: list[ExtractedField],
    text: str,
    references: list[TemporalReference],
) -> tuple[list[ExtractedField], list[Warning]]:
    """Return new field objects with date, reference and qualifier set."""
    warnings: list[Warning] = []
    out: list[ExtractedField] = []
    dated = 0

    for f in fields:
        if f.field_name not in DATEABLE_FIELDS:
            out.append(f)
            continue

        update: dict = {}
        if f.date is None and f.reference is None:
            ref = _sentence_reference(f, text, references)
            if ref is not None:
                update["reference"] = ref
                update["date"] = ref.resolved_date
        tagged = f.model_copy(update=update) if update else f
        if tagged.date is not None or tagged.reference is not None:
            dated += 1

        out.append(tagged.model_copy(update={"qualifier": qualifier_for(tagged, text)}))

    logger.debug(f"Tagged qualifiers on {len(out)} candidates, {dated} date-bearing")
    return out, warnings
