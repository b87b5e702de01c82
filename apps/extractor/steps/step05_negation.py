"""
Step 5 — Negation filtering (NegEx).

Trigger phrases open a scope of up to `window` tokens, forward for
pre-triggers ("no vasospasm") and backward for post-triggers ("vasospasm was
ruled out"). A scope stops at a terminator word ("but", "however", ...) or a
sentence boundary. Pseudo-triggers ("no change", "not only") never negate.

A candidate in a negatable field is suppressed when its evidence falls inside
a scope, unless an affirming cue ("developed", "complicated by", ...) sits
between the trigger and the candidate.
"""
from __future__ import annotations

import logging
import re

from packages.shared.models import (
    EvidenceSpan,
    ExtractedField,
    NegationSpan,
    Polarity,
    TriggerDirection,
    Warning,
)

logger = logging.getLogger(__name__)

NEGATABLE_FIELDS = frozenset({"complications", "exam_findings", "imaging", "pathology"})

# ── Trigger lists ────────────────────────────────────────────────────────

PRE_TRIGGERS = (
    "no", "not", "without", "denies", "denied", "negative for",
    "absence of", "absent", "free of", "ruled out", "rules out",
)
EXTENDED_PRE_TRIGGERS = (
    "no evidence of", "no signs of", "no symptoms of",
    "did not", "does not", "cannot", "unable to",
    "fails to", "failed to", "never", "neither",
)
POST_TRIGGERS = (
    "unlikely", "was ruled out", "is ruled out", "ruled out",
    "not present", "not seen", "not noted", "not observed",
)
PSEUDO_TRIGGERS = (
    "not only", "no increase", "no change", "no longer",
    "not certain", "not sure", "no significant change", "without difficulty",
)
TERMINATORS = (
    "but", "however", "although", "except", "besides",
    "yet", "though", "still", "nevertheless", "aside from",
)
AFFIRMING_TRIGGERS = (
    "developed", "positive for", "complicated by", "consistent with",
    "significant for", "notable for",
)

_PRE_CONFIDENCE = 0.95
_EXTENDED_CONFIDENCE = 0.90
_POST_CONFIDENCE = 0.85


def _phrase_re(phrases) -> re.Pattern:
    alts = sorted({p for p in phrases}, key=len, reverse=True)
    body = "|".join(r"\s+".join(re.escape(w) for w in p.split()) for p in alts)
    return re.compile(rf"(?<![\w-])(?:{body})(?![\w-])", re.IGNORECASE)


_PRE_RE = _phrase_re(PRE_TRIGGERS + EXTENDED_PRE_TRIGGERS)
_POST_RE = _phrase_re(POST_TRIGGERS)
_PSEUDO_RE = _phrase_re(PSEUDO_TRIGGERS)
_TERMINATOR_RE = _phrase_re(TERMINATORS)
_AFFIRM_RE = _phrase_re(AFFIRMING_TRIGGERS)

_EXTENDED = {p.lower() for p in EXTENDED_PRE_TRIGGERS}
_BOUNDARY_RE = re.compile(r"[;:\n]|\.(?!\d)")
_TOKEN_RE = re.compile(r"[\w'/-]+")


# ── Scope detection ──────────────────────────────────────────────────────


def _sentences(text: str) -> list[tuple[int, int]]:
    bounds: list[tuple[int, int]] = []
    start = 0
    for m in _BOUNDARY_RE.finditer(text):
        if m.start() > start:
            bounds.append((start, m.start()))
        start = m.end()
    if start < len(text):
        bounds.append((start, len(text)))
    return bounds


def _pre_scope_end(text: str, trig_end: int, sent_end: int, window: int) -> int:
    stop = sent_end
    term = _TERMINATOR_RE.search(text, trig_end, sent_end)
    if term:
        stop = term.start()
    end = trig_end
    for i, tok in enumerate(_TOKEN_RE.finditer(text, trig_end, stop)):
        if i >= window:
            break
        end = tok.end()
    return end


def _post_scope_start(text: str, sent_start: int, trig_start: int, window: int) -> int:
    start = sent_start
    for term in _TERMINATOR_RE.finditer(text, sent_start, trig_start):
        start = term.end()
    tokens = list(_TOKEN_RE.finditer(text, start, trig_start))
    if not tokens:
        return trig_start
    return tokens[-window:][0].start()


def find_negation_spans(text: str, window: int = 6) -> list[NegationSpan]:
    """All negation scopes in text, ordered by trigger position."""
    spans: list[NegationSpan] = []
    if not text:
        return spans

    for sent_start, sent_end in _sentences(text):
        pseudo = [m.span() for m in _PSEUDO_RE.finditer(text, sent_start, sent_end)]

        def _is_pseudo(start: int, end: int) -> bool:
            return any(start < p_end and p_start < end for p_start, p_end in pseudo)

        for m in _PRE_RE.finditer(text, sent_start, sent_end):
            if _is_pseudo(*m.span()):
                continue
            scope_end = _pre_scope_end(text, m.end(), sent_end, window)
            if scope_end <= m.end():
                continue
            trigger = re.sub(r"\s+", " ", m.group(0).lower())
            spans.append(NegationSpan(
                scope_start=m.end(),
                scope_end=scope_end,
                trigger=trigger,
                trigger_start=m.start(),
                trigger_end=m.end(),
                direction=TriggerDirection.PRE,
                polarity=Polarity.NEGATED,
                confidence=_EXTENDED_CONFIDENCE if trigger in _EXTENDED else _PRE_CONFIDENCE,
            ))

        for m in _POST_RE.finditer(text, sent_start, sent_end):
            if _is_pseudo(*m.span()):
                continue
            scope_start = _post_scope_start(text, sent_start, m.start(), window)
            if scope_start >= m.start():
                continue
            spans.append(NegationSpan(
                scope_start=scope_start,
                scope_end=m.start(),
                trigger=re.sub(r"\s+", " ", m.group(0).lower()),
                trigger_start=m.start(),
                trigger_end=m.end(),
                direction=TriggerDirection.POST,
                polarity=Polarity.NEGATED,
                confidence=_POST_CONFIDENCE,
            ))

    spans.sort(key=lambda s: (s.trigger_start, s.direction.value))
    return spans


# ── Polarity ─────────────────────────────────────────────────────────────


def _negating_span(evidence: EvidenceSpan, spans: list[NegationSpan], text: str) -> NegationSpan | None:
    for span in spans:
        if span.polarity != Polarity.NEGATED or not span.covers(evidence.start):
            continue
        if span.direction == TriggerDirection.PRE:
            between = text[span.trigger_end:evidence.start]
        else:
            between = text[evidence.end:span.trigger_start]
        if _AFFIRM_RE.search(between):
            continue
        return span
    return None


def polarity_for(evidence: EvidenceSpan, spans: list[NegationSpan], text: str) -> Polarity:
    """NEGATED when a scope covers the evidence with no affirming cue in between."""
    return Polarity.NEGATED if _negating_span(evidence, spans, text) else Polarity.AFFIRMED


def filter_negated(
    candidates: list[ExtractedField],
    text: str,
    spans: list[NegationSpan] | None = None,
    window: int = 6,
    fields: frozenset[str] = NEGATABLE_FIELDS,
) -> tuple[list[ExtractedField], list[ExtractedField], list[NegationSpan], list[Warning]]:
    """
    Split candidates into (kept, suppressed). Fields outside `fields` pass
    through untouched. Returns (kept, suppressed, spans, warnings).
    """
    warnings: list[Warning] = []
    if spans is None:
        spans = find_negation_spans(text, window)

    kept: list[ExtractedField] = []
    suppressed: list[ExtractedField] = []
    for c in candidates:
        if c.field_name not in fields:
            kept.append(c)
            continue
        span = _negating_span(c.evidence, spans, text)
        if span is None:
            kept.append(c)
            continue
        logger.debug(
            f"Suppressed {c.field_name}='{c.display_value()}' (trigger '{span.trigger}', {span.direction.value})"
        )
        suppressed.append(c)

    if suppressed:
        logger.info(f"Negation filter suppressed {len(suppressed)} of {len(candidates)} candidates")
    return kept, suppressed, spans, warnings
