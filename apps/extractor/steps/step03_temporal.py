"""
Step 3 — Temporal reference extraction.

Absolute: calendar dates in several formats.
Anchors: labeled admission / procedure / ictus / discharge dates (dates.* rules).
Relative: "POD 3", "post-op day 3", "hospital day 2", "post-bleed day 5",
          "day 4 after surgery", "3 days after admission", ...

A relative marker resolves to anchor + offset only when exactly one distinct
anchor date of the required kind exists. Otherwise it stays unresolved and is
tagged with the reason.
"""
from __future__ import annotations

import logging
import re
from datetime import date, timedelta

from packages.shared.models import (
    Anchor,
    AnchorKind,
    ReferenceStatus,
    TemporalKind,
    TemporalReference,
    Warning,
)
from apps.extractor.lib.dates import find_dates_in_text, parse_date_text
from apps.extractor.lib.rule_engine import RuleTable, match_rules
from apps.extractor.steps.fields.dates import FIELD_TO_ANCHOR

logger = logging.getLogger(__name__)

# ── Relative date patterns ───────────────────────────────────────────────
# (pattern, marker, anchor kind, offset base)
# Offset = N + base. Hospital day 1 is the admission day itself, so base -1.
# More specific patterns first; a claimed span is not matched again.

_PROCEDURE_WORDS = r"(?:the\s+)?(?:surgery|procedure|operation|clipping|coiling|craniotomy|embolization|resection)"
_ICTUS_WORDS = r"(?:the\s+)?(?:ictus|bleed|rupture|hemorrhage|haemorrhage|SAH)"

_RELATIVE_PATTERNS: list[tuple[str, str, AnchorKind, int]] = [
    (r"\bpost[-\s]?op(?:erative)?\s+day\s*#?\s*(\d{1,3})\b", "post_op_day", AnchorKind.PROCEDURE, 0),
    (r"\bPOD\s*#?\s*(\d{1,3})\b", "pod", AnchorKind.PROCEDURE, 0),
    (rf"\bday\s+(\d{{1,3}})\s+(?:after|following|post)\s+{_PROCEDURE_WORDS}\b", "day_after_procedure", AnchorKind.PROCEDURE, 0),
    (rf"\b(\d{{1,3}})\s+days?\s+(?:after|following|post)\s+{_PROCEDURE_WORDS}\b", "days_after_procedure", AnchorKind.PROCEDURE, 0),
    (r"\bpost[-\s]?(?:ictus|ictal|bleed|hemorrhage|haemorrhage)\s+day\s*#?\s*(\d{1,3})\b", "post_ictus_day", AnchorKind.ICTUS, 0),
    (r"\bPBD\s*#?\s*(\d{1,3})\b", "pbd", AnchorKind.ICTUS, 0),
    (rf"\bday\s+(\d{{1,3}})\s+(?:after|following|post)\s+{_ICTUS_WORDS}\b", "day_after_ictus", AnchorKind.ICTUS, 0),
    (rf"\b(\d{{1,3}})\s+days?\s+(?:after|following|post)\s+{_ICTUS_WORDS}\b", "days_after_ictus", AnchorKind.ICTUS, 0),
    (r"\bhospital\s+day\s*#?\s*(\d{1,3})\b", "hospital_day", AnchorKind.ADMISSION, -1),
    (r"\bHD\s*#?\s*(\d{1,3})\b", "hd", AnchorKind.ADMISSION, -1),
    (r"\badmission\s+day\s*#?\s*(\d{1,3})\b", "admission_day", AnchorKind.ADMISSION, -1),
    (r"\bday\s+(\d{1,3})\s+of\s+(?:admission|hospitali[sz]ation|(?:the\s+)?stay)\b", "day_of_admission", AnchorKind.ADMISSION, -1),
    (r"\b(\d{1,3})\s+days?\s+(?:after|following|post)\s+admission\b", "days_after_admission", AnchorKind.ADMISSION, 0),
]

_COMPILED_RELATIVE = [
    (re.compile(p, re.IGNORECASE), marker, kind, base)
    for p, marker, kind, base in _RELATIVE_PATTERNS
]


# ── Anchor detection ─────────────────────────────────────────────────────


def find_anchors(text: str, rules: RuleTable, note_id: str | None = None) -> list[Anchor]:
    """All labeled anchor dates, every occurrence kept so conflicts stay visible."""
    anchors: list[Anchor] = []
    for field_name, kind in FIELD_TO_ANCHOR.items():
        for hit in match_rules(rules.for_field(field_name), text, multi_valued=True):
            d = parse_date_text(hit.text)
            if d is None:
                continue
            anchors.append(Anchor(
                kind=kind,
                date=d,
                raw_text=hit.text,
                start=hit.start,
                rule_id=hit.rule.rule_id,
                note_id=note_id,
            ))
    anchors.sort(key=lambda a: a.start)
    return anchors


def anchor_dates(anchors: list[Anchor], kind: AnchorKind) -> list[date]:
    """Distinct anchor dates of one kind, in first-seen order."""
    seen: list[date] = []
    for a in anchors:
        if a.kind == kind and a.date not in seen:
            seen.append(a.date)
    return seen


def resolve_reference(ref: TemporalReference, anchors: list[Anchor]) -> TemporalReference:
    """
    Resolve a relative reference against anchors. Returns a new reference.
    Absolute references are returned unchanged.
    """
    if ref.kind == TemporalKind.ABSOLUTE or ref.required_anchor is None or ref.offset_days is None:
        return ref

    candidates = anchor_dates(anchors, ref.required_anchor)
    if len(candidates) == 1:
        return ref.model_copy(update={
            "resolved_date": candidates[0] + timedelta(days=ref.offset_days),
            "anchor_used": ref.required_anchor,
            "status": ReferenceStatus.RESOLVED,
        })

    status = (
        ReferenceStatus.UNRESOLVED_NO_ANCHOR
        if not candidates
        else ReferenceStatus.UNRESOLVED_AMBIGUOUS_ANCHOR
    )
    return ref.model_copy(update={"resolved_date": None, "anchor_used": None, "status": status})


# ── Reference extraction ─────────────────────────────────────────────────


def find_relative_references(text: str) -> list[TemporalReference]:
    refs: list[TemporalReference] = []
    claimed: list[tuple[int, int]] = []
    for pattern, marker, kind, base in _COMPILED_RELATIVE:
        for m in pattern.finditer(text):
            start, end = m.span()
            if any(start < c_end and c_start < end for c_start, c_end in claimed):
                continue
            claimed.append((start, end))
            n = int(m.group(1))
            refs.append(TemporalReference(
                kind=TemporalKind.RELATIVE,
                raw_text=m.group(0),
                start=start,
                end=end,
                offset_days=max(0, n + base),
                marker=marker,
                required_anchor=kind,
                status=ReferenceStatus.UNRESOLVED_NO_ANCHOR,
            ))
    return refs


def extract_temporal_references(
    text: str,
    rules: RuleTable,
    note_id: str | None = None,
) -> tuple[list[TemporalReference], list[Anchor], list[Warning]]:
    """
    Extract absolute and relative references plus anchors for one note.
    Returns (references ordered by position, anchors, warnings).
    """
    warnings: list[Warning] = []

    anchors = find_anchors(text, rules, note_id)

    references: list[TemporalReference] = [
        TemporalReference(
            kind=TemporalKind.ABSOLUTE,
            raw_text=text[start:end],
            start=start,
            end=end,
            resolved_date=d,
            status=ReferenceStatus.RESOLVED,
        )
        for d, start, end in find_dates_in_text(text)
    ]

    for ref in find_relative_references(text):
        resolved = resolve_reference(ref, anchors)
        if resolved.status == ReferenceStatus.UNRESOLVED_AMBIGUOUS_ANCHOR:
            warnings.append(Warning(
                code="AMBIGUOUS_ANCHOR",
                message=(
                    f"'{ref.raw_text}' needs a {ref.required_anchor.value} anchor but "
                    f"{len(anchor_dates(anchors, ref.required_anchor))} conflicting dates exist"
                ),
                note_id=note_id,
            ))
        references.append(resolved)

    references.sort(key=lambda r: r.start)

    for kind in AnchorKind:
        dates = anchor_dates(anchors, kind)
        if len(dates) == 1:
            logger.info(f"Anchor date found ({kind.value}): {dates[0]}")
        elif len(dates) > 1:
            logger.info(f"Conflicting {kind.value} anchors: {[d.isoformat() for d in dates]}")

    return references, anchors, warnings


# ── Date association ─────────────────────────────────────────────────────


def sentence_bounds(text: str, pos: int) -> tuple[int, int]:
    left = max(text.rfind(c, 0, pos) for c in ".\n;") + 1
    rights = [i for i in (text.find(c, pos) for c in ".\n;") if i != -1]
    return left, (min(rights) if rights else len(text))


def associate_date(
    text: str,
    start: int,
    end: int,
    references: list[TemporalReference],
    window: int = 200,
) -> TemporalReference | None:
    """
    Nearest temporal reference to a span within +/- window characters.
    References in the same sentence win over closer ones outside it.
    """
    s_left, s_right = sentence_bounds(text, start)
    best: tuple[tuple[int, int], TemporalReference] | None = None
    for ref in references:
        if ref.end <= start:
            distance = start - ref.end
        elif ref.start >= end:
            distance = ref.start - end
        else:
            distance = 0
        if distance > window:
            continue
        same_sentence = s_left <= ref.start < s_right
        key = (0 if same_sentence else 1, distance)
        if best is None or key < best[0]:
            best = (key, ref)
    return best[1] if best else None
