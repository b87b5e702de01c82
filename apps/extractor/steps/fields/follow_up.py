"""
Follow-up plans and discharge disposition.
"""
from __future__ import annotations

import re

from packages.shared.models import ExtractedField, StructuredValue, Warning
from apps.extractor.lib.dates import DATE_ALTERNATION as _D
from apps.extractor.lib.rule_engine import CRITICAL, HIGH, MEDIUM, rule

from .common import ExtractionContext, clean_phrase, field_from_hit, unique_by_value

_INTERVAL = r"\d+(?:\s*(?:-|to)\s*\d+)?\s+(?:days?|weeks?|months?|years?)"

RULES = (
    # ── Follow-up ────────────────────────────────────────────────────────
    rule("follow_up.imaging", "follow_up",
         rf"\b(?:repeat|follow[-\s]?up|surveillance)\s+(?P<who>(?:CT|CTA|MRI|MRA|angiogra(?:m|phy)|imaging)[^.;\n]{{0,30}}?)\s+"
         rf"(?:in|within)\s+(?P<when>{_INTERVAL})",
         HIGH, 95),
    rule("follow_up.with_in", "follow_up",
         rf"\b(?:follow[-\s]?up|f/u)\s+(?:with\s+(?P<who>(?:Dr\.?\s+)?[^.;\n]{{1,60}}?)\s+)?(?:in|within)\s+(?P<when>{_INTERVAL})",
         HIGH, 90),
    rule("follow_up.clinic", "follow_up",
         rf"\b(?:return|see|come\s+back)\s+(?:to\s+)?(?:the\s+)?(?P<who>(?:[\w-]+\s+)?clinic)\s+(?:in\s+)?(?P<when>{_INTERVAL})",
         HIGH, 85),
    rule("follow_up.appointment", "follow_up",
         rf"\bappointment\s+(?:scheduled\s+)?(?:with\s+(?P<who>(?:Dr\.?\s+)?[^.;\n]{{1,60}}?)\s+)?(?:for|in|on)\s+(?P<when>{_INTERVAL}|{_D})",
         HIGH, 85),
    rule("follow_up.with_only", "follow_up",
         r"\b(?:follow[-\s]?up|f/u)\s+with\s+(?P<who>(?:Dr\.?\s+)?[A-Za-z][\w.\s-]{1,40}?)(?=\s*(?:[.;,\n]|$|as\s+(?:an\s+)?outpatient))",
         MEDIUM, 60),

    # ── Disposition ──────────────────────────────────────────────────────
    rule("discharge.disposition.label", "discharge.disposition",
         r"\b(?:discharge\s+)?disposition\s*:\s*(?P<d>[^.;\n]+)",
         CRITICAL, 100, group="d"),
    rule("discharge.disposition.discharged_to", "discharge.disposition",
         r"\bdischarged\s+(?:on\s+\S+\s+)?(?:to\s+)?(?P<d>home(?:\s+with\s+(?:services|home\s+health|family))?"
         r"|(?:an?\s+)?(?:acute\s+|inpatient\s+|subacute\s+)?rehab(?:ilitation)?(?:\s+(?:facility|center|unit))?"
         r"|(?:an?\s+)?(?:SNF|skilled\s+nursing(?:\s+facility)?|nursing\s+home|LTACH?|long[-\s]term\s+acute\s+care|hospice|IRF))\b",
         HIGH, 90, group="d"),
)

# First match wins.
_DISPOSITIONS: list[tuple[str, re.Pattern]] = [
    ("hospice", re.compile(r"hospice", re.I)),
    ("LTACH", re.compile(r"LTACH?|long[-\s]term\s+acute", re.I)),
    ("SNF", re.compile(r"\bSNF\b|skilled\s+nursing|nursing\s+home", re.I)),
    ("rehabilitation", re.compile(r"rehab|\bIRF\b", re.I)),
    ("home with services", re.compile(r"home\s+with\s+(?:services|home\s+health)", re.I)),
    ("home", re.compile(r"\bhome\b", re.I)),
]


def canonical_disposition(text: str) -> str:
    for label, pattern in _DISPOSITIONS:
        if pattern.search(text):
            return label
    return clean_phrase(text).lower()


def extract_follow_up(ctx: ExtractionContext) -> tuple[list[ExtractedField], list[Warning]]:
    """Follow-up entries {with, interval} plus the discharge disposition."""
    fields: list[ExtractedField] = []

    for hit in ctx.rules.evaluate("follow_up", ctx.text):
        groups = hit.match.groupdict()
        who = clean_phrase(groups.get("who") or "") or None
        when = clean_phrase(groups.get("when") or "") or None
        if who and when:
            preposition = "in" if re.match(_INTERVAL, when) else "on"
            label = f"{who} {preposition} {when}"
        elif when:
            label = f"follow up in {when}"
        else:
            label = f"follow up with {who}"
        fields.append(field_from_hit(ctx, hit, StructuredValue(
            label=label,
            subfields={"with": who, "interval": when},
        )))

    for hit in ctx.rules.evaluate("discharge.disposition", ctx.text):
        fields.append(field_from_hit(ctx, hit, canonical_disposition(hit.text)))

    return unique_by_value(fields), []
