"""
Medications: {name, dose, frequency, status} from a fixed drug list.

Brand names and abbreviations canonicalize to the generic name
(Keppra -> levetiracetam, ASA -> aspirin). Dose and frequency are read from
the rest of the clause; status from verbs around the mention.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import ExtractedField, StructuredValue, Warning
from apps.extractor.lib.rule_engine import HIGH, rule

from .common import ExtractionContext, clause_bounds, field_from_hit, unique_by_value

logger = logging.getLogger(__name__)

# (generic name, pattern incl. brand names)
_DRUGS: list[tuple[str, str]] = [
    ("nimodipine", r"nimodipine|nimotop"),
    ("levetiracetam", r"levetiracetam|keppra"),
    ("phenytoin", r"phenytoin|fosphenytoin|dilantin"),
    ("valproate", r"valproate|valproic\s+acid|depakote"),
    ("aspirin", r"aspirin|\bASA\b"),
    ("clopidogrel", r"clopidogrel|plavix"),
    ("heparin", r"(?:subcutaneous\s+|SQ\s+|SC\s+)?heparin"),
    ("enoxaparin", r"enoxaparin|lovenox"),
    ("warfarin", r"warfarin|coumadin"),
    ("apixaban", r"apixaban|eliquis"),
    ("dexamethasone", r"dexamethasone|decadron"),
    ("mannitol", r"mannitol"),
    ("hypertonic saline", r"hypertonic\s+saline|(?:3|23\.4)\s?%\s+(?:saline|NaCl)|\bHTS\b"),
    ("nicardipine", r"nicardipine|cardene"),
    ("clevidipine", r"clevidipine|cleviprex"),
    ("labetalol", r"labetalol"),
    ("metoprolol", r"metoprolol|lopressor|toprol"),
    ("acetaminophen", r"acetaminophen|tylenol|\bAPAP\b|paracetamol"),
    ("oxycodone", r"oxycodone|percocet"),
    ("ondansetron", r"ondansetron|zofran"),
    ("pantoprazole", r"pantoprazole|protonix"),
    ("atorvastatin", r"atorvastatin|lipitor"),
    ("temozolomide", r"temozolomide|temodar"),
]

RULES = tuple(
    rule(f"medications.{name.replace(' ', '_')}", "medications",
         rf"\b(?:{pattern})\b", HIGH, 60, canonical=name)
    for name, pattern in _DRUGS
)

_DOSE_RE = re.compile(
    r"\b(\d+(?:\.\d+)?\s*(?:mg|mcg|g|units?|mEq|mL)(?:/(?:kg|hr|h|day))?)(?![a-z])",
    re.IGNORECASE,
)
_FREQ_RE = re.compile(
    r"\b(once\s+daily|twice\s+daily|daily|nightly|BID|TID|QID|QHS|QD|PRN|q\s?\d{1,2}\s?h(?:rs?|ours)?"
    r"|every\s+\d{1,2}\s+hours|as\s+needed)\b",
    re.IGNORECASE,
)

# Checked in order; first hit wins.
_STATUS_CUES: list[tuple[str, re.Pattern]] = [
    ("discontinued", re.compile(r"\b(?:discontinu(?:ed|e)|stopped|held|d/c'?d|tapered\s+off|weaned\s+off|off\s+of)\b", re.I)),
    ("changed", re.compile(r"\b(?:increased|decreased|changed|switched|titrated|uptitrated|reduced)\b", re.I)),
    ("started", re.compile(r"\b(?:started|initiated|began|begun|loaded|load(?:ing)?\s+dose|given|administered|new(?:ly)?)\b", re.I)),
    ("continued", re.compile(r"\b(?:continu(?:e|ed|ing)|resume[ds]?|maintained\s+on|remains?\s+on)\b", re.I)),
]

_NEXT_DRUG_RE = re.compile("|".join(rf"\b(?:{p})\b" for _, p in _DRUGS), re.IGNORECASE)


def _frequency_label(raw: str) -> str:
    raw = re.sub(r"\s+", " ", raw)
    return raw.upper() if re.fullmatch(r"[A-Za-z]{2,3}|q ?\d{1,2} ?h", raw, re.I) else raw.lower()


def _medication_status(clause_before: str, clause_after: str) -> str:
    for status, cue in _STATUS_CUES:
        if cue.search(clause_before) or cue.search(clause_after):
            return status
    return "active"


def extract_medications(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    warnings: list[Warning] = []
    fields: list[ExtractedField] = []

    for hit in ctx.rules.evaluate("medications", ctx.text):
        name = hit.rule.canonical or hit.text.lower()
        left, right = clause_bounds(ctx.text, hit.start, hit.end)

        # Dose/frequency belong to this drug only up to the next drug name
        tail = ctx.text[hit.end:right]
        nxt = _NEXT_DRUG_RE.search(tail)
        if nxt:
            tail = tail[:nxt.start()]
        tail = tail[:80]

        dose = _DOSE_RE.search(tail)
        freq = _FREQ_RE.search(tail)
        head = ctx.text[max(left, hit.start - 40):hit.start]
        prev = list(_NEXT_DRUG_RE.finditer(head))
        if prev:
            head = head[prev[-1].end():]
        status = _medication_status(head, tail)

        value = StructuredValue(
            label=name,
            subfields={
                "name": name,
                "dose": re.sub(r"\s+", " ", dose.group(1)) if dose else None,
                "frequency": _frequency_label(freq.group(1)) if freq else None,
                "status": status,
            },
        )
        fields.append(field_from_hit(ctx, hit, value))

    fields = unique_by_value(sorted(fields, key=lambda f: f.evidence.start))
    logger.debug(f"Medications for {ctx.note_id}: {[f.display_value() for f in fields]}")
    return fields, warnings
