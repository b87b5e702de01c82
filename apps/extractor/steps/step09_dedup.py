"""
Step 9 — Cross-note deduplication.

Runs over preprocessed notes before field extraction:
  1. exact duplicates (same normalized text) collapse into the earlier note
  2. near duplicates (hybrid similarity >= threshold) keep the more detailed note
  3. complementary fragments (0.3 <= similarity < min(0.6, threshold)) that
     share a temporal context are merged sentence by sentence
  4. sentences repeated earlier in the batch are dropped from later text
Passes repeat until nothing changes, so running the step on its own output
is a no-op.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from packages.shared.models import (
    DedupCluster,
    DedupKind,
    DedupMetadata,
    PipelineConfig,
    RawNote,
    Warning,
    normalize_text_value,
)
from apps.extractor.lib.dates import find_dates_in_text
from apps.extractor.lib.similarity import SimilarityBreakdown, extract_concepts, hybrid_similarity
from apps.extractor.steps.step03_temporal import find_relative_references

logger = logging.getLogger(__name__)

MERGE_FLOOR = 0.3
MERGE_CEILING = 0.6
MIN_SENTENCE_CHARS = 10

HIGH_VALUE_KEYWORDS = ("operative", "procedure", "impression", "assessment", "discharge", "follow-up")

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")


@dataclass
class _Group:
    note: RawNote
    position: int
    members: list[str] = field(default_factory=list)
    kinds: set[DedupKind] = field(default_factory=set)
    similarity: float = 1.0


# ── Note features ────────────────────────────────────────────────────────


def temporal_context(text: str) -> set[str]:
    """Absolute dates (ISO) and relative markers ("pod:3", "hd:2") found in text."""
    markers = {d.isoformat() for d, _, _ in find_dates_in_text(text)}
    for ref in find_relative_references(text):
        markers.add(f"{ref.required_anchor.value}:{ref.offset_days}")
    return markers


def detail_score(text: str) -> float:
    """
    How much a note says: length/100, +10 per medical concept,
    +5 per temporal marker, +15 per high-value keyword.
    """
    lowered = text.lower()
    score = len(text) / 100
    score += 10 * len(extract_concepts(text))
    score += 5 * (len(find_dates_in_text(text)) + len(find_relative_references(text)))
    score += 15 * sum(1 for kw in HIGH_VALUE_KEYWORDS if kw in lowered)
    return score


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s and s.strip()]


def merge_texts(primary: str, other: str) -> str:
    """primary unchanged, followed by the sentences of other it does not already contain."""
    seen = {normalize_text_value(s) for s in split_sentences(primary)}
    extra: list[str] = []
    for sentence in split_sentences(other):
        key = normalize_text_value(sentence)
        if not key or key in seen:
            continue
        seen.add(key)
        extra.append(sentence)
    if not extra:
        return primary
    return primary.rstrip() + "\n" + "\n".join(extra)


def _sentence_spans(text: str) -> list[tuple[int, int, int]]:
    """(start, end, next_start) per sentence; next_start includes the separator."""
    spans: list[tuple[int, int, int]] = []
    pos = 0
    for m in _SENTENCE_SPLIT_RE.finditer(text):
        spans.append((pos, m.start(), m.end()))
        pos = m.end()
    if pos < len(text):
        spans.append((pos, len(text), len(text)))
    return spans


def remove_repeated_sentences(notes: list[RawNote]) -> tuple[list[RawNote], int]:
    """
    Drop sentences whose normalized text already appeared earlier in the batch,
    in this note or a previous one. Short sentences and section headers stay.
    """
    seen: set[str] = set()
    out: list[RawNote] = []
    removed_total = 0
    for note in notes:
        text = note.text
        pieces: list[str] = []
        removed = 0
        for start, end, next_start in _sentence_spans(text):
            sentence = text[start:end].strip()
            key = normalize_text_value(sentence)
            if len(sentence) < MIN_SENTENCE_CHARS or sentence.endswith(":") or not key:
                pieces.append(text[start:next_start])
                continue
            if key in seen:
                removed += 1
                continue
            seen.add(key)
            pieces.append(text[start:next_start])

        new_text = "".join(pieces).rstrip()
        if removed and new_text:
            logger.debug(f"Removed {removed} repeated sentences from {note.note_id}")
            out.append(note.model_copy(update={"text": new_text}))
            removed_total += removed
        else:
            out.append(note)
    return out, removed_total


# ── Pair search ──────────────────────────────────────────────────────────


class _SimilarityCache:
    def __init__(self):
        self._cache: dict[tuple[str, str], SimilarityBreakdown] = {}

    def get(self, a: str, b: str) -> SimilarityBreakdown:
        key = (a, b)
        if key not in self._cache:
            self._cache[key] = hybrid_similarity(a, b)
        return self._cache[key]


def _find_action(
    groups: list[_Group],
    config: PipelineConfig,
    cache: _SimilarityCache,
) -> tuple[DedupKind, int, int, float] | None:
    """First applicable (kind, i, j, similarity): exact, then near, then merge."""
    pairs: list[tuple[int, int, SimilarityBreakdown]] = []
    for i in range(len(groups)):
        for j in range(i + 1, len(groups)):
            sim = cache.get(groups[i].note.text, groups[j].note.text)
            if sim.exact:
                return DedupKind.EXACT, i, j, 1.0
            pairs.append((i, j, sim))

    for i, j, sim in pairs:
        if sim.combined >= config.similarity_threshold:
            return DedupKind.NEAR, i, j, sim.combined

    if not config.merge_complementary:
        return None
    ceiling = min(MERGE_CEILING, config.similarity_threshold)
    for i, j, sim in pairs:
        if not MERGE_FLOOR <= sim.combined < ceiling:
            continue
        if temporal_context(groups[i].note.text) & temporal_context(groups[j].note.text):
            return DedupKind.MERGED, i, j, sim.combined
    return None


def _absorb(keep: _Group, drop: _Group, kind: DedupKind, similarity: float) -> None:
    keep.members.extend(drop.members)
    keep.kinds |= drop.kinds | {kind}
    keep.similarity = min(keep.similarity, drop.similarity, similarity)
    keep.position = min(keep.position, drop.position)


# ── Entry point ──────────────────────────────────────────────────────────


def deduplicate_notes(
    notes: list[RawNote],
    config: PipelineConfig,
) -> tuple[list[RawNote], DedupMetadata, list[DedupCluster], list[Warning]]:
    """
    Return (survivors, metadata, clusters, warnings).
    Every note must already carry a unique note_id.
    """
    warnings: list[Warning] = []
    metadata = DedupMetadata(input_count=len(notes))
    groups = [_Group(note=n, position=i, members=[n.note_id]) for i, n in enumerate(notes)]
    cache = _SimilarityCache()

    while len(groups) > 1:
        action = _find_action(groups, config, cache)
        if action is None:
            break
        kind, i, j, similarity = action
        a, b = groups[i], groups[j]

        if kind == DedupKind.EXACT:
            keep, drop = a, b
            metadata.exact_duplicates_removed += 1
        else:
            # Earlier note wins ties.
            keep, drop = (b, a) if detail_score(b.note.text) > detail_score(a.note.text) else (a, b)
            if kind == DedupKind.NEAR:
                metadata.near_duplicates_removed += 1
            else:
                keep.note = keep.note.model_copy(update={"text": merge_texts(keep.note.text, drop.note.text)})
                metadata.merge_count += 1

        logger.info(
            f"Dedup {kind.value}: {drop.note.note_id} -> {keep.note.note_id} (similarity {similarity:.3f})"
        )
        _absorb(keep, drop, kind, similarity)
        groups.remove(drop)
        groups.sort(key=lambda g: g.position)

    texts, metadata.sentences_removed = remove_repeated_sentences([g.note for g in groups])
    for g, note in zip(groups, texts):
        g.note = note

    if not config.preserve_chronology:
        groups.sort(key=lambda g: -detail_score(g.note.text))

    clusters: list[DedupCluster] = []
    for g in groups:
        if len(g.members) < 2:
            continue
        if DedupKind.MERGED in g.kinds:
            kind = DedupKind.MERGED
        elif DedupKind.NEAR in g.kinds:
            kind = DedupKind.NEAR
        else:
            kind = DedupKind.EXACT
        clusters.append(DedupCluster(
            representative_id=g.note.note_id,
            member_ids=list(g.members),
            kind=kind,
            similarity=round(g.similarity, 4),
        ))

    survivors = [g.note for g in groups]
    metadata.output_count = len(survivors)
    logger.info(
        f"Dedup: {metadata.input_count} -> {metadata.output_count} notes "
        f"(exact={metadata.exact_duplicates_removed}, near={metadata.near_duplicates_removed}, "
        f"merged={metadata.merge_count}, sentences={metadata.sentences_removed})"
    )
    return survivors, metadata, clusters, warnings
