"""
Anchor date rules (admission, procedure, ictus, discharge) and the dates.*
field extractor built on the anchors the temporal step found.
"""
from __future__ import annotations

from packages.shared.models import AnchorKind, ExtractedField, Warning
from apps.extractor.lib.dates import DATE_ALTERNATION as _D
from apps.extractor.lib.rule_engine import CRITICAL, HIGH, LOW, MEDIUM, rule

from .common import ExtractionContext, make_field

FIELD_TO_ANCHOR: dict[str, AnchorKind] = {
    "dates.admission": AnchorKind.ADMISSION,
    "dates.procedure": AnchorKind.PROCEDURE,
    "dates.ictus": AnchorKind.ICTUS,
    "dates.discharge": AnchorKind.DISCHARGE,
}

RULES = (
    # ── Admission ────────────────────────────────────────────────────────
    rule("dates.admission.label", "dates.admission",
         rf"\b(?:date of admission|admission date|admit date|date admitted)\s*[:\-]?\s*(?P<date>{_D})",
         CRITICAL, 100, group="date"),
    rule("dates.admission.admitted_on", "dates.admission",
         rf"\b(?:was\s+)?admitted\s+(?:to\s+[^.;\n]{{0,60}}?\s+)?(?:on\s+)?(?P<date>{_D})",
         HIGH, 90, group="date"),
    rule("dates.admission.presented_on", "dates.admission",
         rf"\bpresented\s+(?:to\s+[^.;\n]{{0,60}}?\s+)?on\s+(?P<date>{_D})",
         MEDIUM, 50, group="date"),

    # ── Procedure ────────────────────────────────────────────────────────
    rule("dates.procedure.label", "dates.procedure",
         rf"\b(?:date of (?:surgery|procedure|operation)|(?:surgery|procedure|operation|operative) date)\s*[:\-]?\s*(?P<date>{_D})",
         CRITICAL, 100, group="date"),
    rule("dates.procedure.underwent_on", "dates.procedure",
         rf"\b(?:underwent|s/p|status post)\s+[^.;\n]{{1,120}}?\s+on\s+(?P<date>{_D})",
         HIGH, 90, group="date"),
    rule("dates.procedure.performed_on", "dates.procedure",
         rf"\bperformed\s+(?:on\s+)?(?P<date>{_D})",
         HIGH, 85, group="date"),

    # ── Ictus ────────────────────────────────────────────────────────────
    rule("dates.ictus.label", "dates.ictus",
         rf"\b(?:ictus|symptom onset|onset)(?:\s+date)?\s*(?:on|was|:|-)?\s*(?P<date>{_D})",
         CRITICAL, 100, group="date"),
    rule("dates.ictus.ruptured_on", "dates.ictus",
         rf"\b(?:ruptured|rupture)\s+(?:on|date)?\s*:?\s*(?P<date>{_D})",
         HIGH, 90, group="date"),
    rule("dates.ictus.presented_with_on", "dates.ictus",
         rf"\bpresented\s+with\s+[^.;\n]{{0,60}}?(?:SAH|subarachnoid hemorrhage|hemorrhage|headache)\s+on\s+(?P<date>{_D})",
         HIGH, 85, group="date"),

    # ── Discharge ────────────────────────────────────────────────────────
    rule("dates.discharge.label", "dates.discharge",
         rf"\b(?:date of discharge|discharge date)\s*[:\-]?\s*(?P<date>{_D})",
         CRITICAL, 100, group="date"),
    rule("dates.discharge.discharged_on", "dates.discharge",
         rf"\bdischarged\s+(?:home\s+|to\s+[^.;\n]{{0,40}}?\s+)?(?:on\s+)?(?P<date>{_D})",
         HIGH, 90, group="date"),
    rule("dates.discharge.dc_on", "dates.discharge",
         rf"\b(?:d/c|dc)\s+(?:on\s+)?(?P<date>{_D})",
         LOW, 40, group="date"),
)


def extract_dates(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    """
    Turn anchors into dates.* candidates. Anchors were produced by the temporal
    step from the same rules, so this extractor reads them instead of rematching.
    """
    warnings: list[Warning] = []
    fields: list[ExtractedField] = []
    by_kind = {kind: name for name, kind in FIELD_TO_ANCHOR.items()}

    for anchor in ctx.anchors:
        field_name = by_kind[anchor.kind]
        r = ctx.rules.get(anchor.rule_id) if anchor.rule_id else None
        weight = r.weight if r else MEDIUM
        f = make_field(
            ctx,
            field_name,
            anchor.date,
            anchor.start,
            anchor.start + len(anchor.raw_text),
            weight,
            anchor.rule_id,
        )
        fields.append(f.model_copy(update={"date": anchor.date}))

    return fields, warnings
