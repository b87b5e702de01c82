"""
Pathology: diagnosis candidates, severity grades, aneurysm location.

Diagnoses are canonicalized to a class name ("aneurysmal SAH", "SAH",
"glioblastoma", ...). The record's primary pathology is the highest
confidence candidate after calibration.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import ExtractedField, StructuredValue, Warning
from apps.extractor.lib.rule_engine import CRITICAL, HIGH, LOW, MEDIUM, match_rules, rule

from .common import ExtractionContext, clean_phrase, field_from_hit

logger = logging.getLogger(__name__)

# Keyword rules double as the canonicalizer for free-text diagnosis labels.
_KEYWORD_RULES = (
    rule("pathology.kw.aneurysmal_sah", "pathology",
         r"\baneurysmal\s+(?:subarachnoid\s+(?:hemorrhage|haemorrhage)|SAH)\b|\baSAH\b",
         0.80, 70, canonical="aneurysmal SAH"),
    rule("pathology.kw.sah", "pathology",
         r"\bsubarachnoid\s+(?:hemorrhage|haemorrhage)\b|\bSAH\b",
         MEDIUM, 60, canonical="SAH"),
    rule("pathology.kw.chronic_sdh", "pathology",
         r"\bchronic\s+subdural\s+(?:hematoma|hemorrhage)\b|\bcSDH\b",
         MEDIUM, 58, canonical="chronic subdural hematoma"),
    rule("pathology.kw.sdh", "pathology",
         r"\b(?:acute\s+)?subdural\s+(?:hematoma|hemorrhage)\b|\bSDH\b",
         MEDIUM, 55, canonical="subdural hematoma"),
    rule("pathology.kw.edh", "pathology",
         r"\bepidural\s+(?:hematoma|hemorrhage)\b|\bEDH\b",
         MEDIUM, 55, canonical="epidural hematoma"),
    rule("pathology.kw.ich", "pathology",
         r"\b(?:intracerebral|intraparenchymal)\s+(?:hemorrhage|haemorrhage)\b|\bICH\b",
         MEDIUM, 55, canonical="intracerebral hemorrhage"),
    rule("pathology.kw.avm", "pathology",
         r"\barteriovenous\s+malformation\b|\bAVM\b",
         MEDIUM, 55, canonical="arteriovenous malformation"),
    rule("pathology.kw.gbm", "pathology",
         r"\bglioblastoma(?:\s+multiforme)?\b|\bGBM\b",
         MEDIUM, 55, canonical="glioblastoma"),
    rule("pathology.kw.meningioma", "pathology",
         r"\bmeningioma\b", MEDIUM, 55, canonical="meningioma"),
    rule("pathology.kw.glioma", "pathology",
         r"\b(?:(?:low|high)[-\s]grade\s+)?glioma\b|\bastrocytoma\b|\boligodendroglioma\b",
         MEDIUM, 50, canonical="glioma"),
    rule("pathology.kw.metastasis", "pathology",
         r"\b(?:brain\s+|cerebral\s+)?metastas[ie]s\b|\bmetastatic\s+(?:disease|lesion|tumou?r)s?\b",
         MEDIUM, 50, canonical="brain metastasis"),
    rule("pathology.kw.tbi", "pathology",
         r"\btraumatic\s+brain\s+injury\b|\bTBI\b", MEDIUM, 50, canonical="traumatic brain injury"),
    rule("pathology.kw.spinal_stenosis", "pathology",
         r"\b(?:lumbar|cervical|thoracic|spinal)\s+(?:canal\s+)?stenosis\b",
         MEDIUM, 50, canonical="spinal stenosis"),
    rule("pathology.kw.stroke", "pathology",
         r"\b(?:acute\s+)?ischemic\s+stroke\b", MEDIUM, 45, canonical="ischemic stroke"),
    rule("pathology.kw.aneurysm", "pathology",
         r"\b(?:ruptured|unruptured|intracranial|cerebral)\s+aneurysm\b",
         0.60, 40, canonical="cerebral aneurysm"),
    rule("pathology.kw.nph", "pathology",
         r"\bnormal\s+pressure\s+hydrocephalus\b|\bNPH\b", MEDIUM, 45, canonical="normal pressure hydrocephalus"),
    rule("pathology.kw.hydrocephalus", "pathology",
         r"\bhydrocephalus\b", LOW, 30, canonical="hydrocephalus"),
    rule("pathology.kw.hunt_hess_implies_sah", "pathology",
         r"\bHunt\s*(?:and|&)\s*Hess\b", LOW, 20, canonical="SAH"),
)

RULES = (
    rule("pathology.diagnosis_label", "pathology",
         r"\b(?:(?:primary|principal|admitting|admission|discharge|final|working)\s+)?diagnos[ie]s\s*[:\-]\s*(?:\d+[.)]\s*)?(?P<dx>[^\n;]+)",
         CRITICAL, 100, group="dx"),
    rule("pathology.primary_phrase", "pathology",
         r"\bprimary\s+diagnosis\s+(?:of|is|was)\s+(?P<dx>[^.;\n]+)",
         CRITICAL, 98, group="dx"),
    rule("pathology.diagnosed_with", "pathology",
         r"\b(?:diagnosed\s+with|consistent\s+with|found\s+to\s+have)\s+(?:an?\s+)?(?P<dx>[^.;,\n]+)",
         HIGH, 80, group="dx"),
    rule("pathology.parenthetical", "pathology",
         r"\((?P<dx>aSAH|SAH|ICH|IVH|SDH|cSDH|EDH|TBI|GBM|AVM|NPH)\)",
         HIGH, 78, group="dx", flags=0),
) + _KEYWORD_RULES + (
    # ── Grades ───────────────────────────────────────────────────────────
    rule("pathology.grade.hunt_hess", "pathology.grade",
         r"\b(?:Hunt\s*(?:and|&)\s*Hess|H&H|HH)\s*(?:grade|score)?\s*[:#=]?\s*(?P<g>[1-5]|IV|V|I{1,3})\b",
         0.90, 90, group="g", canonical="Hunt and Hess"),
    rule("pathology.grade.modified_fisher", "pathology.grade",
         r"\b(?:modified\s+Fisher|mFisher|mF)\s*(?:grade|scale|score)?\s*[:#=]?\s*(?P<g>[0-4])\b",
         0.90, 88, group="g", canonical="modified Fisher"),
    rule("pathology.grade.wfns", "pathology.grade",
         r"\bWFNS\s*(?:grade|score)?\s*[:#=]?\s*(?P<g>[1-5]|IV|V|I{1,3})\b",
         0.90, 85, group="g", canonical="WFNS"),
    rule("pathology.grade.fisher", "pathology.grade",
         r"\bFisher\s*(?:grade|scale|score|group)?\s*[:#=]?\s*(?P<g>[1-4]|IV|I{1,3})\b",
         HIGH, 80, group="g", canonical="Fisher"),
    rule("pathology.grade.gcs", "pathology.grade",
         r"\b(?:GCS|Glasgow\s+Coma\s+Scal?e?)\s*(?:score)?\s*(?:of|:|=)?\s*(?P<g>1[0-5]|[3-9])\b",
         HIGH, 70, group="g", canonical="GCS"),

    # ── Location ─────────────────────────────────────────────────────────
    rule("pathology.location.aneurysm_site", "pathology.location",
         r"\b(?P<loc>(?:(?:left|right|L|R)\s+)?(?:ACom[Am]?|anterior\s+communicating|PCom[Am]?|posterior\s+communicating"
         r"|MCA|middle\s+cerebral|ICA|internal\s+carotid|basilar(?:\s+tip)?|vertebral|PICA|ACA|anterior\s+cerebral"
         r"|ophthalmic|SCA|pericallosal)(?:\s+(?:artery|bifurcation|terminus))?)\s+aneurysm",
         HIGH, 90, group="loc"),
)

_ROMAN = {"I": 1, "II": 2, "III": 3, "IV": 4, "V": 5}
_TRAILING_CLAUSE_RE = re.compile(r"(?:\.\s|\s+(?:s/p|status post|with|who|and was)\b).*$", re.IGNORECASE)


def canonical_pathology(text: str) -> str:
    """Map free diagnosis text onto a known class, else return the cleaned phrase."""
    hits = match_rules(_KEYWORD_RULES, text)
    if hits:
        best = max(hits, key=lambda h: (h.rule.priority, -h.start))
        return best.rule.canonical or clean_phrase(best.text)
    return clean_phrase(_TRAILING_CLAUSE_RE.sub("", text)).rstrip(".")


def _grade_value(raw: str) -> int:
    return _ROMAN[raw.upper()] if raw.upper() in _ROMAN else int(raw)


def extract_pathology(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    warnings: list[Warning] = []
    fields: list[ExtractedField] = []

    for hit in ctx.rules.evaluate("pathology", ctx.text):
        if hit.rule.canonical:
            fields.append(field_from_hit(ctx, hit))
            continue
        value = canonical_pathology(hit.text)
        if not value:
            continue
        fields.append(field_from_hit(ctx, hit, value))

    for hit in ctx.rules.evaluate("pathology.grade", ctx.text):
        scale = hit.rule.canonical or hit.rule.rule_id
        grade = _grade_value(hit.text)
        value = StructuredValue(
            label=f"{scale} {grade}",
            subfields={"scale": scale, "grade": grade},
        )
        fields.append(field_from_hit(ctx, hit, value))

    for hit in ctx.rules.evaluate("pathology.location", ctx.text):
        fields.append(field_from_hit(ctx, hit))

    if not any(f.field_name == "pathology" for f in fields):
        logger.debug(f"No diagnosis candidates in note {ctx.note_id}")
    return fields, warnings
