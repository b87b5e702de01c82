"""
Complications.

Each category has two rules: an indicator form ("developed X", "complicated by X")
at HIGH and a bare mention at MEDIUM. Mentions in a prophylaxis / monitoring /
risk context are not complications and produce no candidate. Negated mentions
are left for the negation filter.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import ExtractedField, Warning
from apps.extractor.lib.rule_engine import HIGH, MEDIUM, rule

from .common import ExtractionContext, clause_bounds, field_from_hit, has_cue

logger = logging.getLogger(__name__)

# (key, canonical value, pattern)
_CATEGORIES: list[tuple[str, str, str]] = [
    ("vasospasm", "vasospasm", r"(?:(?:cerebral|angiographic|symptomatic|clinical)\s+)?vasospasm"),
    ("dci", "delayed cerebral ischemia", r"delayed\s+cerebral\s+ischemia|\bDCI\b"),
    ("hydrocephalus", "hydrocephalus", r"(?:(?:acute|communicating|obstructive)\s+)?hydrocephalus"),
    ("rebleed", "rebleeding", r"re-?bleed(?:ing)?|re-?rupture|re-?hemorrhage"),
    ("seizure", "seizure", r"seizures?|status\s+epilepticus"),
    ("infarct", "cerebral infarction", r"(?:cerebral\s+|new\s+)?infarct(?:ion|s)?|\bstroke\b"),
    ("dvt", "deep vein thrombosis", r"deep\s+(?:vein|venous)\s+thrombosis|\bDVT\b"),
    ("pe", "pulmonary embolism", r"pulmonary\s+embol(?:ism|us|i)"),
    ("cns_infection", "CNS infection", r"meningitis|ventriculitis"),
    ("wound_infection", "wound infection", r"(?:wound|surgical\s+site|incision(?:al)?)\s+infection|\bSSI\b"),
    ("pneumonia", "pneumonia", r"(?:aspiration\s+|ventilator[-\s]associated\s+)?pneumonia|\bPNA\b|\bVAP\b"),
    ("uti", "urinary tract infection", r"urinary\s+tract\s+infection|\bUTI\b"),
    ("sepsis", "sepsis", r"sepsis|septic\s+shock"),
    ("hyponatremia", "hyponatremia", r"hyponatr[ae]mia|\bSIADH\b|cerebral\s+salt\s+wasting|\bCSW\b"),
    ("csf_leak", "CSF leak", r"(?:CSF|cerebrospinal\s+fluid)\s+leak(?:age)?"),
    ("edema", "cerebral edema", r"cerebral\s+edema|brain\s+swelling|cerebral\s+swelling"),
    ("icp", "elevated ICP", r"(?:elevated|increased|raised)\s+(?:ICP|intracranial\s+pressures?)|intracranial\s+hypertension"),
    ("respiratory_failure", "respiratory failure", r"(?:acute\s+)?respiratory\s+failure|re-?intubat(?:ion|ed)"),
    ("afib", "atrial fibrillation", r"atrial\s+fibrillation|\ba-?fib\b"),
    ("delirium", "delirium", r"delirium|acute\s+confusional\s+state"),
]

_INDICATOR = (
    r"\b(?:developed|develops|complicated\s+by|significant\s+for|notable\s+for|suffered|experienced"
    r"|course\s+(?:was\s+)?complicated\s+by|found\s+to\s+have|diagnosed\s+with)\s+"
    r"(?:(?:an?|new|recurrent|mild|moderate|severe|symptomatic|acute|early|late)\s+)*"
)


def _build_rules():
    out = []
    for key, canonical, pattern in _CATEGORIES:
        out.append(rule(f"complications.{key}.indicator", "complications",
                        rf"{_INDICATOR}(?P<c>{pattern})\b", HIGH, 90, group="c", canonical=canonical))
    for key, canonical, pattern in _CATEGORIES:
        out.append(rule(f"complications.{key}.mention", "complications",
                        rf"\b(?P<c>{pattern})\b", MEDIUM, 50, group="c", canonical=canonical))
    return tuple(out)


RULES = _build_rules()

_EXCLUSION_BEFORE_RE = re.compile(
    r"\b(?:prophyla(?:xis|ctic(?:ally)?)|monitor(?:ed|ing)?\s+(?:closely\s+)?for|risk\s+(?:of|for)"
    r"|screen(?:ed|ing)?\s+for|watch(?:ed|ing)?\s+for|rule\s+out|r/o|prevent(?:ion\s+of)?|at\s+risk)\b",
    re.IGNORECASE,
)
_EXCLUSION_AFTER_RE = re.compile(
    r"^\s*(?:prophyla(?:xis|ctic)|precautions?|watch|protocol|monitoring|risk|screening|prevention)\b",
    re.IGNORECASE,
)


def in_exclusion_context(text: str, start: int, end: int) -> bool:
    """True for "seizure prophylaxis", "monitor for vasospasm", "risk of rebleeding", ..."""
    if has_cue(text, start, end, _EXCLUSION_BEFORE_RE):
        return True
    _, right = clause_bounds(text, start, end)
    return bool(_EXCLUSION_AFTER_RE.match(text[end:right]))


def extract_complications(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    """
    Every non-excluded mention becomes a candidate. Repeated mentions are kept
    so that a negated first mention cannot hide a later affirmed one; the
    calibrator collapses equal values afterwards.
    """
    warnings: list[Warning] = []
    fields: list[ExtractedField] = []
    excluded = 0

    for hit in ctx.rules.evaluate("complications", ctx.text):
        if in_exclusion_context(ctx.text, hit.start, hit.end):
            excluded += 1
            continue
        fields.append(field_from_hit(ctx, hit))

    fields.sort(key=lambda f: f.evidence.start)
    if excluded:
        logger.debug(f"Skipped {excluded} complication mentions in prophylaxis/monitoring context ({ctx.note_id})")
    return fields, warnings
