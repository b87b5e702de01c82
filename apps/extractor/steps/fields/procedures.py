"""
Procedures.

Precedence (highest first):
  1. "Procedure: X" label
  2. trigger verbs (underwent / received / had / performed) widened to the clause end
  3. passive "X was performed"
  4. compound phrases ("angiogram with coiling", "craniotomy for aneurysm clipping")
  5. bare keywords

A lower-priority match inside a span already claimed is dropped, so a compound
phrase is never split into its constituent keywords.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import ExtractedField, Warning
from apps.extractor.lib.dates import DATE_ALTERNATION
from apps.extractor.lib.rule_engine import CRITICAL, HIGH, MEDIUM, RuleHit, match_rules, rule

from .common import ExtractionContext, clean_phrase, field_from_hit, make_field, unique_by_value

logger = logging.getLogger(__name__)

_KW = (
    r"angiogra(?:m|phy)|coiling|coil\s+embolization|embolization|craniotomy|craniectomy|cranioplasty"
    r"|clipping|resection|biopsy|drain|shunt|laminectomy|discectomy|fusion|ventriculostomy"
    r"|tracheostomy|thrombectomy|lumbar\s+puncture|EVD|ACDF|evacuation|stenting"
)
_OTHER_TRIGGER = r"(?!\b(?:underwent|received|had|performed)\b)"

RULES = (
    rule("procedures.label", "procedures",
         r"\b(?:procedures?|operations?|surgery|surgeries)(?:\s+performed)?\s*:[ \t]*(?P<proc>[^.;\n]+)",
         CRITICAL, 100, group="proc"),
    rule("procedures.trigger_verb", "procedures",
         rf"\b(?:underwent|received|had|performed)\s+(?P<proc>(?:{_OTHER_TRIGGER}[^.;\n]){{0,60}}?\b(?:{_KW})\b[^.;\n]*)",
         CRITICAL - 0.02, 95, group="proc"),
    rule("procedures.passive_performed", "procedures",
         rf"(?P<proc>\b(?!(?:and|then|also|subsequently)\b)[A-Za-z](?:{_OTHER_TRIGGER}[^.;,\n])*?\b(?:{_KW})\b[^.;,\n]*?)"
         rf"\s+(?:was\s+|were\s+)?(?:performed|completed|done)\b",
         0.92, 92, group="proc"),

    # ── Compound phrases ─────────────────────────────────────────────────
    rule("procedures.compound.angiogram_with_coiling", "procedures",
         r"\b(?:cerebral\s+|diagnostic\s+|catheter\s+)?angiogra(?:m|phy)\s+(?:with|and|\+|&)\s+(?:endovascular\s+)?"
         r"(?:coil(?:ing|\s+embolization)|embolization|stent(?:ing)?|thrombectomy)\b",
         HIGH, 80),
    rule("procedures.compound.craniotomy_for", "procedures",
         r"\b(?:(?:left|right|bilateral|pterional|frontotemporal|orbitozygomatic|suboccipital)\s+)*"
         r"craniotomy\s+(?:for|and|with)\s+(?:[\w-]+\s+){0,2}(?:clipping|resection|evacuation|biopsy)\b",
         HIGH, 80),
    rule("procedures.compound.coil_embolization", "procedures",
         r"\b(?:endovascular\s+)?coil\s+embolization\b|\bendovascular\s+coiling\b", HIGH, 78),
    rule("procedures.compound.aneurysm_clipping", "procedures",
         r"\b(?:aneurysm|microsurgical|surgical)\s+clipping\b", HIGH, 78),
    rule("procedures.compound.evd_placement", "procedures",
         r"\b(?:EVD|external\s+ventricular\s+drain|ventriculostomy)\s+(?:placement|insertion)\b"
         r"|\bplacement\s+of\s+(?:an?\s+)?(?:EVD|external\s+ventricular\s+drain)\b", HIGH, 78),
    rule("procedures.compound.vp_shunt", "procedures",
         r"\b(?:VP|ventriculoperitoneal)\s+shunt(?:\s+placement)?\b", HIGH, 78),
    rule("procedures.compound.extent_of_resection", "procedures",
         r"\b(?:gross\s+total|subtotal|near\s+total)\s+resection\b", HIGH, 76),
    rule("procedures.compound.decompressive_craniectomy", "procedures",
         r"\bdecompressive\s+(?:hemi)?craniectomy\b", HIGH, 76),
    rule("procedures.compound.acdf", "procedures",
         r"\banterior\s+cervical\s+discectomy\s+and\s+fusion\b|\bACDF\b", HIGH, 76),
    rule("procedures.compound.lumbar_drain", "procedures",
         r"\blumbar\s+drain(?:\s+placement)?\b", HIGH, 74),

    # ── Bare keywords ────────────────────────────────────────────────────
    rule("procedures.keyword", "procedures",
         r"\b(?:craniotomy|craniectomy|cranioplasty|clipping|coiling|embolization|angiogra(?:m|phy)"
         r"|laminectomy|discectomy|ventriculostomy|tracheostomy|thrombectomy|lumbar\s+puncture)\b",
         MEDIUM, 50),
)

_LEADING_RE = re.compile(
    rf"^(?:(?:on|dated)\s+{DATE_ALTERNATION}[,\s]*)?(?:(?:an?|the|emergent|urgent|successful)\s+)*",
    re.IGNORECASE,
)
_TRAILING_RES = [
    re.compile(rf"\s+(?:on|dated)\s+(?:{DATE_ALTERNATION}|POD|hospital\s+day|HD).*$", re.IGNORECASE),
    re.compile(r"\s+(?:without|with\s+no)\s+(?:any\s+)?(?:complications?|incident|issues).*$", re.IGNORECASE),
    re.compile(r"\s+(?:by|under)\s+(?:Dr\.?|the\s+\w+\s+team|general\s+anesthesia).*$", re.IGNORECASE),
    re.compile(r",?\s+(?:which|complicated\s+by|after\s+which|and\s+(?:was|tolerated|developed|subsequently|then|required))\b.*$", re.IGNORECASE),
]
_KW_RE = re.compile(rf"\b(?:{_KW})\b", re.IGNORECASE)
_PHRASE_RULES = ("procedures.compound.", "procedures.keyword")
_LIST_SPLIT_RE = re.compile(r"\s*(?:,|\band\s+(?=(?:an?\s+)?(?:[\w-]+\s+){0,3}(?:" + _KW + r")\b))\s*", re.IGNORECASE)


def clean_procedure(text: str) -> str:
    value = _LEADING_RE.sub("", text.strip())
    for pattern in _TRAILING_RES:
        value = pattern.sub("", value)
    return clean_phrase(value)


def _phrases_within(ctx: ExtractionContext, hit: RuleHit) -> list[ExtractedField]:
    """Compound or keyword phrases inside a clause hit whose cleaned value lost its procedure."""
    rules = [r for r in ctx.rules.for_field("procedures") if r.rule_id.startswith(_PHRASE_RULES)]
    fields: list[ExtractedField] = []
    for sub in match_rules(rules, ctx.text[hit.start:hit.end], multi_valued=True):
        value = sub.rule.canonical or clean_procedure(sub.text)
        fields.append(make_field(
            ctx, "procedures", ctx.rules.canonicalize("procedures", value),
            hit.start + sub.start, hit.start + sub.end, sub.weight, sub.rule.rule_id,
        ))
    return fields


def extract_procedures(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    warnings: list[Warning] = []
    fields: list[ExtractedField] = []

    for hit in ctx.rules.evaluate("procedures", ctx.text):
        if hit.rule.rule_id == "procedures.label":
            # "Procedure: EVD placement, cerebral angiogram with coiling"
            offset = hit.start
            for part in _LIST_SPLIT_RE.split(hit.text):
                idx = ctx.text.find(part, offset) if part else -1
                value = clean_procedure(part)
                if not value or idx < 0:
                    continue
                offset = idx + len(part)
                fields.append(make_field(
                    ctx, "procedures", ctx.rules.canonicalize("procedures", value),
                    idx, idx + len(part), hit.weight, hit.rule.rule_id,
                ))
            continue

        value = hit.rule.canonical or clean_procedure(hit.text)
        if not value:
            continue
        if not hit.rule.canonical and not _KW_RE.search(value):
            # "had worsening headache and was taken for craniotomy"
            fields.extend(_phrases_within(ctx, hit))
            continue
        fields.append(field_from_hit(ctx, hit, value))

    fields = unique_by_value(fields)
    logger.debug(f"Procedure candidates for {ctx.note_id}: {[f.display_value() for f in fields]}")
    return fields, warnings
