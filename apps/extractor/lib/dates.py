"""
Calendar date patterns and parsing shared by the temporal extractor and the
date-field rules.
"""
from __future__ import annotations

import re
from datetime import date

# ── Date regex patterns ──────────────────────────────────────────────────

_FULL_MONTHS = (
    "January|February|March|April|May|June|July|August"
    "|September|October|November|December"
)
_ABBREV_MONTHS = "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec"
_MONTHS = f"(?:{_FULL_MONTHS}|{_ABBREV_MONTHS})"

_DATE_PATTERNS = [
    # 0: MM/DD/YYYY or MM-DD-YYYY
    r"(?<!\d)(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})(?!\d)",
    # 1: YYYY-MM-DD
    r"(?<!\d)(\d{4})[/\-](\d{1,2})[/\-](\d{1,2})(?!\d)",
    # 2: Month DD, YYYY (full or abbreviated, optional ordinal suffix)
    rf"\b({_MONTHS})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})(?!\d)",
    # 3: DD Month YYYY
    rf"(?<!\d)(\d{{1,2}})\s+({_MONTHS})\.?,?\s+(\d{{4}})(?!\d)",
    # 4: MM/DD/YY
    r"(?<!\d)(\d{1,2})/(\d{1,2})/(\d{2})(?![\d/])",
]

_COMPILED = [re.compile(p, re.IGNORECASE) for p in _DATE_PATTERNS]

# Single alternation for embedding inside label rules: "Admission date: <DATE>"
DATE_ALTERNATION = (
    r"(?:\d{1,2}[/\-]\d{1,2}[/\-]\d{4}"
    r"|\d{4}[/\-]\d{1,2}[/\-]\d{1,2}"
    rf"|{_MONTHS}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}"
    rf"|\d{{1,2}}\s+{_MONTHS}\.?,?\s+\d{{4}}"
    r"|\d{1,2}/\d{1,2}/\d{2}(?![\d/]))"
)

_MONTH_MAP = {
    "january": 1, "february": 2, "march": 3, "april": 4,
    "may": 5, "june": 6, "july": 7, "august": 8,
    "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4,
    "jun": 6, "jul": 7, "aug": 8, "sep": 9, "sept": 9,
    "oct": 10, "nov": 11, "dec": 12,
}


def _parse_date_from_match(match: re.Match, pattern_index: int) -> date | None:
    """Parse a date from a regex match based on which pattern matched."""
    try:
        groups = match.groups()
        if pattern_index == 0:  # MM/DD/YYYY
            month, day, year = int(groups[0]), int(groups[1]), int(groups[2])
        elif pattern_index == 1:  # YYYY-MM-DD
            year, month, day = int(groups[0]), int(groups[1]), int(groups[2])
        elif pattern_index == 2:  # Month DD YYYY
            month = _MONTH_MAP.get(groups[0].lower(), 0)
            day, year = int(groups[1]), int(groups[2])
        elif pattern_index == 3:  # DD Month YYYY
            day = int(groups[0])
            month = _MONTH_MAP.get(groups[1].lower(), 0)
            year = int(groups[2])
        elif pattern_index == 4:  # MM/DD/YY
            month, day = int(groups[0]), int(groups[1])
            year = 2000 + int(groups[2])
        else:
            return None

        if 1 <= month <= 12 and 1 <= day <= 31 and 1900 <= year <= 2100:
            return date(year, month, day)
    except (ValueError, IndexError):
        pass
    return None


def parse_date_text(text: str) -> date | None:
    """Parse a standalone date string in any supported format."""
    candidate = text.strip()
    for i, pattern in enumerate(_COMPILED):
        m = pattern.fullmatch(candidate)
        if m:
            return _parse_date_from_match(m, i)
    return None


def find_dates_in_text(text: str) -> list[tuple[date, int, int]]:
    """
    Find all dates in text as (date, start, end), ordered by position.
    A span already claimed by an earlier pattern is not matched again.
    """
    results: list[tuple[date, int, int]] = []
    claimed: list[tuple[int, int]] = []
    for i, pattern in enumerate(_COMPILED):
        for m in pattern.finditer(text):
            start, end = m.span()
            if any(start < c_end and c_start < end for c_start, c_end in claimed):
                continue
            d = _parse_date_from_match(m, i)
            if d:
                claimed.append((start, end))
                results.append((d, start, end))
    results.sort(key=lambda r: r[1])
    return results
