"""
Exam findings and imaging results.

Both fields are negation-filtered downstream, so every mention becomes a
candidate here. Imaging candidates carry the finding span as evidence so
that "CT showed no hydrocephalus" is caught by the negation scope.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import ExtractedField, Warning
from apps.extractor.lib.rule_engine import HIGH, LOW, MEDIUM, rule
from apps.extractor.steps.step02_segment import section_at

from .common import ExtractionContext, clean_phrase, make_field

logger = logging.getLogger(__name__)

_SIDE = r"(?:(?:left|right|L|R|bilateral|mild|dense|severe)\s+)?"

# (key, canonical or None to keep matched text, pattern)
_EXAM: list[tuple[str, str | None, str]] = [
    ("hemiparesis", None, rf"{_SIDE}(?:hemiparesis|hemiplegia)"),
    ("weakness", None, rf"{_SIDE}(?:(?:upper|lower)\s+extremity\s+|arm\s+|leg\s+|facial\s+)?weakness"),
    ("aphasia", None, r"(?:expressive\s+|receptive\s+|global\s+)?aphasia"),
    ("dysarthria", "dysarthria", r"dysarthria"),
    ("facial_droop", None, rf"{_SIDE}facial\s+droop"),
    ("pronator_drift", None, rf"{_SIDE}pronator\s+drift"),
    ("neglect", None, rf"{_SIDE}neglect"),
    ("ataxia", None, r"(?:truncal\s+|gait\s+)?ataxia"),
    ("hemianopia", None, rf"{_SIDE}(?:homonymous\s+)?hemianopsia|{_SIDE}(?:homonymous\s+)?hemianopia|visual\s+field\s+(?:cut|deficit)"),
    ("cn_palsy", None, rf"{_SIDE}(?:CN\s*(?:III|IV|VI|VII|[3467])|(?:third|fourth|sixth|seventh)\s+(?:cranial\s+)?nerve)\s+palsy"),
    ("pupils", None, r"pupils?\s+(?:are\s+|were\s+)?(?:equal|unequal|fixed|dilated|reactive|sluggish|pinpoint|ERRL|PERRLA?)[^.;,\n]{0,30}|\bPERRLA?\b|anisocoria"),
    ("meningismus", "meningismus", r"nuchal\s+rigidity|meningismus|neck\s+stiffness"),
    ("papilledema", "papilledema", r"papilledema"),
    ("photophobia", "photophobia", r"photophobia"),
    ("headache", None, r"(?:worst\s+headache\s+of\s+(?:my|his|her|their)\s+life|thunderclap\s+headache|severe\s+headache|headaches?)"),
    ("loc", "loss of consciousness", r"loss\s+of\s+consciousness|\bLOC\b"),
    ("mental_status", None, r"(?:confus(?:ed|ion)|letharg(?:y|ic)|obtunded|somnolent|stupor(?:ous)?|comatose)"),
    ("nausea", "nausea/vomiting", r"nausea(?:\s+(?:and|/)\s+vomiting)?|emesis|vomiting"),
    ("numbness", None, rf"{_SIDE}(?:numbness|paresthesias?|sensory\s+loss)"),
]

_STUDY = (
    r"(?:(?:non-?contrast\s+|repeat\s+|follow[-\s]?up\s+|initial\s+)?"
    r"(?:CT\s+angiogra(?:m|phy)|CTA|CTP|CT|MRI|MRA|DSA|TCDs?|transcranial\s+dopplers?"
    r"|(?:cerebral\s+|diagnostic\s+|catheter\s+)?angiogra(?:m|phy))"
    r"(?:\s+(?:head|brain|spine|c-spine|l-spine|neck|of\s+the\s+(?:head|brain|spine)))?"
    r"(?:\s+(?:with|without|w/o|w/)\s+contrast)?)"
)

_IMAGING_FINDING_KW = (
    r"(?:(?:diffuse|focal|thick|thin|layering|extensive)\s+)?(?:subarachnoid|intraventricular|intraparenchymal|subdural|epidural)"
    r"\s+(?:hemorrhage|blood|hematoma|collection)|midline\s+shift|mass\s+effect|herniation|hydrocephalus"
    r"|(?:new\s+)?infarcts?|vasospasm|(?:\d+(?:\.\d+)?\s*mm\s+)?aneurysm|edema|ventriculomegaly"
)

RULES = tuple(
    rule(f"exam_findings.{key}", "exam_findings", rf"\b(?:{pattern})\b", MEDIUM, 50, canonical=canonical)
    for key, canonical, pattern in _EXAM
) + (
    rule("imaging.study_verb", "imaging",
         rf"\b(?P<study>{_STUDY})\s+(?:\w+\s+)?(?:showed|shows|demonstrated|demonstrates|revealed|reveals"
         rf"|confirmed|confirms|was\s+notable\s+for|notable\s+for|was\s+significant\s+for)\s+(?P<finding>[^.;\n]+)",
         HIGH, 90, group="finding"),
    rule("imaging.study_label", "imaging",
         rf"^[ \t]*(?:-\s*)?(?P<study>{_STUDY})\s*:\s*(?P<finding>[^.;\n]+)",
         HIGH, 85, group="finding", flags=re.IGNORECASE | re.MULTILINE),
    rule("imaging.keyword", "imaging",
         rf"\b(?P<finding>{_IMAGING_FINDING_KW})\b", LOW, 30, group="finding"),
)

_IMAGING_SECTIONS = {"imaging"}
_TRAILING_RE = re.compile(r",?\s+(?:and\s+(?:was|the\s+patient)|which|after\s+which)\b.*$", re.IGNORECASE)


def extract_exam_findings(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    fields: list[ExtractedField] = []
    for hit in ctx.rules.evaluate("exam_findings", ctx.text):
        value = hit.rule.canonical or clean_phrase(hit.text).lower()
        fields.append(make_field(ctx, "exam_findings", ctx.rules.canonicalize("exam_findings", value),
                                 hit.start, hit.end, hit.weight, hit.rule.rule_id))
    fields.sort(key=lambda f: f.evidence.start)
    return fields, []


def extract_imaging(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    """
    "CT head showed diffuse SAH" -> "CT head: diffuse SAH". Bare finding keywords
    count only inside an imaging section.
    """
    fields: list[ExtractedField] = []
    for hit in ctx.rules.evaluate("imaging", ctx.text):
        if hit.rule.rule_id == "imaging.keyword":
            if section_at(ctx.sections, hit.start) not in _IMAGING_SECTIONS:
                continue
            value = clean_phrase(hit.text)
        else:
            study = clean_phrase(hit.match.group("study"))
            finding = clean_phrase(_TRAILING_RE.sub("", hit.text))
            if not finding:
                continue
            value = f"{study}: {finding}"
        fields.append(make_field(ctx, "imaging", ctx.rules.canonicalize("imaging", value),
                                 hit.start, hit.end, hit.weight, hit.rule.rule_id))
    fields.sort(key=lambda f: f.evidence.start)
    logger.debug(f"Imaging findings for {ctx.note_id}: {len(fields)}")
    return fields, []
