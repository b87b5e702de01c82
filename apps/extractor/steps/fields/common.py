from __future__ import annotations

import re
from dataclasses import dataclass

from packages.shared.models import (
    Anchor,
    EvidenceSpan,
    ExtractedField,
    FieldValue,
    ScalarValue,
    Section,
    StructuredValue,
    TemporalReference,
)
from apps.extractor.lib.rule_engine import RuleHit, RuleTable
from apps.extractor.steps.step02_segment import section_at

_CLAUSE_END_RE = re.compile(r"[.;\n]")


@dataclass(frozen=True)
class ExtractionContext:
    """Read-only inputs shared by every field extractor for one note."""
    text: str
    rules: RuleTable
    sections: tuple[Section, ...] = ()
    anchors: tuple[Anchor, ...] = ()
    references: tuple[TemporalReference, ...] = ()
    note_id: str | None = None
    note_ordinal: int = 0

    def source_label(self, offset: int) -> str:
        """Corroboration source key: note + section."""
        return f"{self.note_id or 'note'}:{section_at(self.sections, offset)}"


def make_field(
    ctx: ExtractionContext,
    field_name: str,
    value: FieldValue | str | int,
    start: int,
    end: int,
    confidence: float,
    rule_id: str | None,
) -> ExtractedField:
    if not isinstance(value, (ScalarValue, StructuredValue)):
        value = ScalarValue(value=value)
    return ExtractedField(
        field_name=field_name,
        value=value,
        confidence=confidence,
        raw_confidence=confidence,
        evidence=EvidenceSpan(start=start, end=end, text=ctx.text[start:end]),
        rule_id=rule_id,
        note_id=ctx.note_id,
        note_ordinal=ctx.note_ordinal,
        section=section_at(ctx.sections, start),
        sources=[ctx.source_label(start)],
    )


def field_from_hit(
    ctx: ExtractionContext,
    hit: RuleHit,
    value: FieldValue | str | int | None = None,
) -> ExtractedField:
    """Build a candidate from a rule hit. The rule's canonical value wins over matched text."""
    if value is None:
        value = hit.rule.canonical or clean_phrase(hit.text)
    if isinstance(value, str):
        value = ctx.rules.canonicalize(hit.rule.field, value)
    return make_field(ctx, hit.rule.field, value, hit.start, hit.end, hit.weight, hit.rule.rule_id)


def clean_phrase(text: str) -> str:
    text = re.sub(r"\s+", " ", text).strip(" ,:-")
    return text


def unique_by_value(fields: list[ExtractedField]) -> list[ExtractedField]:
    """Drop later candidates whose normalized value was already seen (keeps order)."""
    seen: set[str] = set()
    out: list[ExtractedField] = []
    for f in fields:
        key = f.normalized_value()
        if key in seen:
            continue
        seen.add(key)
        out.append(f)
    return out


def clause_bounds(text: str, start: int, end: int) -> tuple[int, int]:
    """Expand [start, end) to the enclosing clause (., ; or newline)."""
    left = max(text.rfind(c, 0, start) for c in ".;\n") + 1
    m = _CLAUSE_END_RE.search(text, end)
    right = m.start() if m else len(text)
    return left, right


def has_cue(text: str, start: int, end: int, cue_re: re.Pattern, window: int = 60) -> bool:
    """True when cue_re matches in the window preceding the span within the same clause."""
    left, _ = clause_bounds(text, start, end)
    return bool(cue_re.search(text[max(left, start - window):start]))
