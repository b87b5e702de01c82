"""
Demographics: name, age, gender.

Surface forms: "55-year-old male", "55 yo F", "Age: 55", "John Doe, 55M",
and a bare "55M" at end of line.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import ExtractedField, Warning
from apps.extractor.lib.rule_engine import CRITICAL, HIGH, LOW, MEDIUM, rule

from .common import ExtractionContext, field_from_hit

logger = logging.getLogger(__name__)

_SEX_WORDS = r"male|female|man|woman|gentleman|lady|boy|girl"

RULES = (
    # ── Age ──────────────────────────────────────────────────────────────
    rule("demographics.age.years_old", "demographics.age",
         r"\b(?P<age>\d{1,3})[-\s]?(?:year|yr)s?[-\s]?old\b", CRITICAL, 100, group="age"),
    rule("demographics.age.label", "demographics.age",
         r"\bage\s*[:=]\s*(?P<age>\d{1,3})\b", CRITICAL, 95, group="age"),
    rule("demographics.age.comma_sex", "demographics.age",
         r",\s*(?P<age>\d{1,3})\s?[MF]\b", 0.90, 90, group="age", flags=0),
    rule("demographics.age.line_end_sex", "demographics.age",
         r"(?<![\d./])(?P<age>\d{1,3})\s?[MF][ \t]*$", 0.88, 85, group="age", flags=re.MULTILINE),
    rule("demographics.age.yo", "demographics.age",
         r"\b(?P<age>\d{1,3})\s*(?:yo|y/o|y\.o\.|yof|yom)\b", HIGH, 80, group="age"),
    rule("demographics.age.n_sex_word", "demographics.age",
         rf"\b(?P<age>\d{{1,3}})\s+(?:{_SEX_WORDS})\b", MEDIUM, 60, group="age"),

    # ── Gender ───────────────────────────────────────────────────────────
    rule("demographics.gender.label", "demographics.gender",
         r"\b(?:sex|gender)\s*[:=]\s*(?P<sex>male|female|m|f)\b", CRITICAL, 100, group="sex"),
    rule("demographics.gender.comma_sex", "demographics.gender",
         r",\s*\d{1,3}\s?(?P<sex>[MF])\b", 0.90, 90, group="sex", flags=0),
    rule("demographics.gender.line_end_sex", "demographics.gender",
         r"(?<![\d./])\d{1,3}\s?(?P<sex>[MF])[ \t]*$", 0.88, 85, group="sex", flags=re.MULTILINE),
    rule("demographics.gender.years_old_sex", "demographics.gender",
         rf"\b\d{{1,3}}[-\s]?(?:year|yr)s?[-\s]?old\s+(?P<sex>{_SEX_WORDS})\b", HIGH, 80, group="sex"),
    rule("demographics.gender.yo_sex", "demographics.gender",
         r"\b\d{1,3}\s*(?:yo|y/o)\s*(?P<sex>male|female|m|f)\b", HIGH, 75, group="sex"),
    rule("demographics.gender.pronoun", "demographics.gender",
         r"\b(?P<sex>he|his|him|she|her|hers)\b", LOW, 10, group="sex"),

    # ── Name ─────────────────────────────────────────────────────────────
    rule("demographics.name.label", "demographics.name",
         r"(?i:\b(?:patient(?:\s+name)?|name)\s*:)[ \t]*(?P<name>[A-Z][A-Za-z'\-]+(?:[ \t]+[A-Z][A-Za-z'\-.]+){0,3})",
         HIGH, 100, group="name", flags=0),
)

_FEMALE = {"f", "female", "woman", "lady", "girl", "she", "her", "hers"}
_MALE = {"m", "male", "man", "gentleman", "boy", "he", "his", "him"}


def _normalize_sex(raw: str) -> str | None:
    low = raw.lower()
    if low in _FEMALE:
        return "F"
    if low in _MALE:
        return "M"
    return None


def extract_demographics(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    """Age, gender and name candidates, one per firing rule."""
    warnings: list[Warning] = []
    fields: list[ExtractedField] = []

    for hit in ctx.rules.evaluate("demographics.age", ctx.text):
        age = int(hit.text)
        if not 0 <= age <= 120:
            warnings.append(Warning(
                code="IMPLAUSIBLE_AGE",
                message=f"Ignored implausible age {age} from rule {hit.rule.rule_id}",
                note_id=ctx.note_id,
            ))
            continue
        fields.append(field_from_hit(ctx, hit, age))

    for hit in ctx.rules.evaluate("demographics.gender", ctx.text):
        sex = _normalize_sex(hit.text)
        if sex:
            fields.append(field_from_hit(ctx, hit, sex))

    for hit in ctx.rules.evaluate("demographics.name", ctx.text):
        fields.append(field_from_hit(ctx, hit))

    logger.debug(f"Demographics candidates for {ctx.note_id}: {len(fields)}")
    return fields, warnings
