"""
Step 10 — Timeline builder.
One event per date-bearing fact across all notes. Relative references that
stayed unresolved inside their own note get one more try against the anchors
of every note. Dated events sort by (date, note ordinal, offset); the rest go
to a trailing unanchored bucket in extraction order.
"""
from __future__ import annotations

import logging
from typing import Mapping

from packages.shared.models import (
    Anchor,
    ExtractedField,
    ReferenceStatus,
    TemporalKind,
    TimelineEvent,
    TimelineEventType,
    Warning,
)
from apps.extractor.steps.step03_temporal import resolve_reference

logger = logging.getLogger(__name__)

EVENT_TYPES: dict[str, TimelineEventType] = {
    "dates.ictus": TimelineEventType.ICTUS,
    "dates.admission": TimelineEventType.ADMISSION,
    "dates.discharge": TimelineEventType.DISCHARGE,
    "dates.procedure": TimelineEventType.PROCEDURE,
    "procedures": TimelineEventType.PROCEDURE,
    "complications": TimelineEventType.COMPLICATION,
    "medications": TimelineEventType.MEDICATION,
    "imaging": TimelineEventType.IMAGING,
    "follow_up": TimelineEventType.FOLLOW_UP,
    "exam_findings": TimelineEventType.FINDING,
    "functional_scores": TimelineEventType.FINDING,
}

_DATE_LABELS = {
    "dates.ictus": "Ictus",
    "dates.admission": "Admission",
    "dates.discharge": "Discharge",
    "dates.procedure": "Procedure",
}


def event_type_for(field_name: str) -> TimelineEventType:
    return EVENT_TYPES.get(field_name, TimelineEventType.OTHER)


def describe(field: ExtractedField) -> str:
    label = _DATE_LABELS.get(field.field_name)
    if label is None:
        return field.display_value()
    if field.field_name == "dates.procedure" and field.evidence.text:
        return f"{label} ({field.evidence.text.strip()})"
    return label


def field_ref(field: ExtractedField) -> str:
    return f"{field.note_id or 'external'}#{field.field_name}@{field.evidence.start}"


def _retry(field: ExtractedField, anchors: list[Anchor]) -> ExtractedField:
    ref = field.reference
    if field.date is not None or ref is None or ref.kind != TemporalKind.RELATIVE:
        return field
    resolved = resolve_reference(ref, anchors)
    if resolved.status != ReferenceStatus.RESOLVED:
        return field
    logger.debug(f"Resolved '{ref.raw_text}' across notes to {resolved.resolved_date}")
    return field.model_copy(update={"reference": resolved, "date": resolved.resolved_date})


def build_timeline(
    fields_by_note: Mapping[str, list[ExtractedField]],
    anchors_by_note: Mapping[str, list[Anchor]],
) -> tuple[list[TimelineEvent], list[Warning]]:
    """
    Return (events, warnings). The event count equals the number of
    candidates that carry a date or a temporal reference.
    """
    warnings: list[Warning] = []
    merged_anchors = [a for anchors in anchors_by_note.values() for a in anchors]

    dated: list[tuple[tuple, TimelineEvent]] = []
    unanchored: list[TimelineEvent] = []
    retried = 0

    for note_id, fields in fields_by_note.items():
        for f in fields:
            if f.date is None and f.reference is None:
                continue
            original_date = f.date
            f = _retry(f, merged_anchors)
            if original_date is None and f.date is not None:
                retried += 1

            ref = f.reference
            event = TimelineEvent(
                date=f.date,
                type=event_type_for(f.field_name),
                description=describe(f),
                source_field_refs=[field_ref(f)],
                note_id=f.note_id,
                qualifier=f.qualifier,
                relative_marker=ref.raw_text if ref is not None and ref.kind == TemporalKind.RELATIVE else None,
                unanchored=f.date is None,
            )
            if f.date is None:
                unanchored.append(event)
            else:
                dated.append(((f.date, f.note_ordinal, f.evidence.start), event))

    dated.sort(key=lambda item: item[0])
    events = [e for _, e in dated] + unanchored
    events = [e.model_copy(update={"order": i}) for i, e in enumerate(events)]

    if unanchored:
        warnings.append(Warning(
            code="UNANCHORED_EVENTS",
            message=f"{len(unanchored)} timeline events have no resolvable date",
        ))
    logger.info(
        f"Timeline: {len(events)} events ({len(dated)} dated, {len(unanchored)} unanchored, "
        f"{retried} resolved across notes)"
    )
    return events, warnings
