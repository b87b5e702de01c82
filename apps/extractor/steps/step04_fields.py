"""
Step 4 — Field extraction.
Run every field extractor over one note against the shared rule table.
Candidates come back in extractor order, then evidence order.
"""
from __future__ import annotations

import logging

from packages.shared.models import (
    Anchor,
    ExtractedField,
    RawNote,
    Section,
    TemporalReference,
    Warning,
)
from apps.extractor.lib.rule_engine import RuleTable
from apps.extractor.steps.fields import EXTRACTORS, ExtractionContext

logger = logging.getLogger(__name__)


def extract_fields(
    note: RawNote,
    text: str,
    rules: RuleTable,
    sections: list[Section],
    references: list[TemporalReference],
    anchors: list[Anchor],
) -> tuple[list[ExtractedField], list[Warning]]:
    """Return (candidates, warnings) for one preprocessed note."""
    warnings: list[Warning] = []
    candidates: list[ExtractedField] = []

    ctx = ExtractionContext(
        text=text,
        rules=rules,
        sections=tuple(sections),
        anchors=tuple(anchors),
        references=tuple(references),
        note_id=note.note_id,
        note_ordinal=note.ordinal or 0,
    )

    for extractor in EXTRACTORS:
        fields, step_warnings = extractor(ctx)
        candidates.extend(fields)
        warnings.extend(step_warnings)

    counts: dict[str, int] = {}
    for c in candidates:
        counts[c.field_name] = counts.get(c.field_name, 0) + 1
    logger.info(f"Extracted {len(candidates)} candidates from {note.note_id}: {counts}")

    return candidates, warnings
