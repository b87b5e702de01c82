"""
Step 2 — Note segmentation.
Split normalized note text into labeled sections by header-keyword matching.
Text before the first recognized header is kept as an "unclassified" section.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import Section, Warning

logger = logging.getLogger(__name__)

UNCLASSIFIED = "unclassified"

# ── Header keywords ──────────────────────────────────────────────────────
# Order matters: the first label whose pattern matches a header line wins.

_SECTION_HEADERS: list[tuple[str, str]] = [
    ("chief_complaint", r"chief complaint|cc|presenting complaint|reason for (?:admission|consult(?:ation)?)"),
    ("history_present_illness", r"history of present(?:ing)? illness|hpi|present illness|history"),
    ("past_medical_history", r"past medical history|pmh|medical history|past history|pmhx"),
    ("medications", r"(?:home |discharge |current |admission )?medications?|meds"),
    ("allergies", r"allerg(?:y|ies)"),
    ("neuro_exam", r"neuro(?:logical)?(?: exam(?:ination)?)?"),
    ("physical_exam", r"physical exam(?:ination)?|exam(?:ination)?|pe"),
    ("imaging", r"imaging|radiology|studies|ct|mri|cta"),
    ("labs", r"labs?|laboratory(?: (?:data|results))?|lab results"),
    ("procedures", r"procedures?(?: performed)?|operations?(?: performed)?|operative (?:procedure|course|note)"),
    ("hospital_course", r"(?:brief )?hospital course|clinical course|icu course|course"),
    ("complications", r"complications?|adverse events"),
    ("diagnosis", r"(?:primary |principal |discharge |admission |admitting |final |secondary )?diagnos[ei]s"),
    ("assessment", r"assessment(?: (?:and|&) plan)?|a/p|a&p|impression"),
    ("plan", r"plan|recommendations?"),
    ("discharge", r"discharge(?: summary| instructions| condition| disposition| status)?|disposition"),
    ("follow_up", r"follow[- ]?up(?: (?:plan|appointments?|instructions))?|f/u"),
]

_HEADER_RES: list[tuple[str, re.Pattern]] = [
    (label, re.compile(rf"^[ \t]*(?:[-*#=•]+[ \t]*|\d+[.)][ \t]*)?(?:{kw})[ \t]*(?::|-{{1,3}}(?=[ \t])|$)", re.IGNORECASE))
    for label, kw in _SECTION_HEADERS
]

_LINE_RE = re.compile(r"[^\n]*\n?")


def _match_header(line: str) -> tuple[str, int] | None:
    """Return (label, header_length) when a line opens a section."""
    stripped = line.rstrip("\n")
    for label, pattern in _HEADER_RES:
        m = pattern.match(stripped)
        if m:
            return label, m.end()
    return None


def segment_note(text: str) -> tuple[list[Section], list[Warning]]:
    """
    Segment text into non-overlapping, offset-ordered sections.
    Returns (sections, warnings).
    """
    warnings: list[Warning] = []
    if not text:
        return [], warnings

    # (label, header_start, content_start)
    headers: list[tuple[str, int, int]] = []
    pos = 0
    for m in _LINE_RE.finditer(text):
        line = m.group(0)
        if not line:
            break
        found = _match_header(line)
        if found:
            label, header_len = found
            headers.append((label, pos, pos + header_len))
        pos += len(line)

    sections: list[Section] = []
    first_start = headers[0][1] if headers else len(text)
    if text[:first_start].strip():
        sections.append(Section(
            label=UNCLASSIFIED,
            text=text[:first_start].strip(),
            start_offset=0,
            end_offset=first_start,
        ))

    for i, (label, start, content_start) in enumerate(headers):
        end = headers[i + 1][1] if i + 1 < len(headers) else len(text)
        sections.append(Section(
            label=label,
            text=text[content_start:end].strip(),
            start_offset=start,
            end_offset=end,
        ))

    if not headers:
        warnings.append(Warning(
            code="NO_SECTION_HEADERS",
            message="No recognizable section headers; note treated as unclassified",
        ))
    logger.debug(f"Segmented note into {len(sections)} sections: {[s.label for s in sections]}")
    return sections, warnings


def section_at(sections: tuple[Section, ...] | list[Section], offset: int) -> str:
    """Label of the section covering a character offset."""
    for s in sections:
        if s.start_offset <= offset < s.end_offset:
            return s.label
    return UNCLASSIFIED


def sections_with_label(sections: list[Section], label: str) -> list[Section]:
    return [s for s in sections if s.label == label]
