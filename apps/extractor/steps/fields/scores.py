"""
Functional outcome scores: mRS, GOS / GOS-E, KPS, ECOG, NIHSS.
"""
from __future__ import annotations

from packages.shared.models import ExtractedField, StructuredValue, Warning
from apps.extractor.lib.rule_engine import HIGH, rule

from .common import ExtractionContext, field_from_hit

_LINK = r"\s*(?:score)?\s*(?:of|:|=|was|is|at)?\s*"

RULES = (
    rule("functional_scores.mrs", "functional_scores",
         rf"\b(?:mRS|modified\s+Rankin(?:\s+Scale)?){_LINK}(?P<v>[0-6])\b",
         HIGH, 90, group="v", canonical="mRS"),
    rule("functional_scores.gose", "functional_scores",
         rf"\b(?:GOS-?E|Glasgow\s+Outcome\s+Scale[-\s]Extended){_LINK}(?P<v>[1-8])\b",
         HIGH, 88, group="v", canonical="GOS-E"),
    rule("functional_scores.gos", "functional_scores",
         rf"\b(?:GOS|Glasgow\s+Outcome\s+Scale){_LINK}(?P<v>[1-5])\b",
         HIGH, 86, group="v", canonical="GOS"),
    rule("functional_scores.kps", "functional_scores",
         rf"\b(?:KPS|Karnofsky(?:\s+Performance\s+(?:Status|Scale))?){_LINK}(?P<v>100|[1-9]0|0)\b",
         HIGH, 85, group="v", canonical="KPS"),
    rule("functional_scores.ecog", "functional_scores",
         rf"\bECOG(?:\s+(?:PS|performance\s+status))?{_LINK}(?P<v>[0-5])\b",
         HIGH, 85, group="v", canonical="ECOG"),
    rule("functional_scores.nihss", "functional_scores",
         rf"\b(?:NIHSS|NIH\s+Stroke\s+Scale){_LINK}(?P<v>4[0-2]|[1-3]?\d)\b",
         HIGH, 85, group="v", canonical="NIHSS"),
)


def extract_functional_scores(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    fields: list[ExtractedField] = []
    for hit in ctx.rules.evaluate("functional_scores", ctx.text):
        scale = hit.rule.canonical or hit.rule.rule_id
        value = int(hit.text)
        fields.append(field_from_hit(ctx, hit, StructuredValue(
            label=f"{scale} {value}",
            subfields={"scale": scale, "value": value},
        )))
    fields.sort(key=lambda f: f.evidence.start)
    return fields, []
