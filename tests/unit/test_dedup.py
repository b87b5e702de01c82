"""
Unit tests for cross-note deduplication (Step 9).
"""
import pytest

from packages.shared.models import DedupKind, PipelineConfig, RawNote
from apps.extractor.lib.similarity import SimilarityBreakdown
from apps.extractor.steps import step09_dedup
from apps.extractor.steps.step09_dedup import (
    deduplicate_notes,
    detail_score,
    merge_texts,
    remove_repeated_sentences,
    temporal_context,
)

_OPERATIVE = "Patient underwent clipping of left MCA aneurysm on 10/11/2025. No vasospasm."


def _make_notes(*texts: str) -> list[RawNote]:
    return [RawNote(text=t, note_id=f"n{i + 1}", ordinal=i) for i, t in enumerate(texts)]


def _fixed_similarity(combined: float):
    def _sim(a: str, b: str) -> SimilarityBreakdown:
        return SimilarityBreakdown(jaccard=combined, levenshtein=combined, semantic=combined, combined=combined)
    return _sim


class TestExactAndNear:
    def test_exact_duplicate_collapses_to_earlier(self):
        survivors, meta, clusters, warnings = deduplicate_notes(
            _make_notes(_OPERATIVE, _OPERATIVE.upper()), PipelineConfig(),
        )
        assert [n.note_id for n in survivors] == ["n1"]
        assert meta.exact_duplicates_removed == 1
        assert (meta.input_count, meta.output_count) == (2, 1)
        assert clusters[0].kind == DedupKind.EXACT
        assert clusters[0].member_ids == ["n1", "n2"]
        assert clusters[0].similarity == 1.0
        assert warnings == []

    def test_near_duplicate_keeps_more_detailed_note(self):
        notes = _make_notes(_OPERATIVE, _OPERATIVE + " Discharge planned.")
        survivors, meta, clusters, _ = deduplicate_notes(notes, PipelineConfig())
        assert [n.note_id for n in survivors] == ["n2"]
        assert meta.near_duplicates_removed == 1
        assert clusters[0].representative_id == "n2"
        assert clusters[0].member_ids == ["n2", "n1"]
        assert clusters[0].kind == DedupKind.NEAR

    def test_idempotent(self):
        notes = _make_notes(_OPERATIVE, _OPERATIVE, "Glioblastoma resection, started dexamethasone.")
        once, _, _, _ = deduplicate_notes(notes, PipelineConfig())
        twice, meta, clusters, _ = deduplicate_notes(once, PipelineConfig())
        assert [n.text for n in twice] == [n.text for n in once]
        assert meta.output_count == meta.input_count
        assert clusters == []

    @pytest.mark.parametrize("combined,expected", [(0.85, 1), (0.8499, 2)])
    def test_threshold_is_inclusive(self, monkeypatch, combined, expected):
        monkeypatch.setattr(step09_dedup, "hybrid_similarity", _fixed_similarity(combined))
        survivors, _, _, _ = deduplicate_notes(
            _make_notes("Note one text.", "Note two text."), PipelineConfig(similarity_threshold=0.85),
        )
        assert len(survivors) == expected


class TestMerge:
    def test_complementary_notes_with_shared_date_merge(self, monkeypatch):
        monkeypatch.setattr(step09_dedup, "hybrid_similarity", _fixed_similarity(0.45))
        first = "Left craniotomy on 10/11/2025."
        second = "Clipping of MCA aneurysm on 10/11/2025. No vasospasm."
        survivors, meta, clusters, _ = deduplicate_notes(_make_notes(first, second), PipelineConfig())
        assert [n.note_id for n in survivors] == ["n2"]
        assert survivors[0].text == second + "\nLeft craniotomy on 10/11/2025."
        assert meta.merge_count == 1
        assert clusters[0].kind == DedupKind.MERGED
        assert clusters[0].similarity == 0.45

    def test_no_shared_temporal_context_no_merge(self, monkeypatch):
        monkeypatch.setattr(step09_dedup, "hybrid_similarity", _fixed_similarity(0.45))
        notes = _make_notes("Craniotomy on 10/11/2025.", "Vasospasm on 10/15/2025.")
        survivors, meta, _, _ = deduplicate_notes(notes, PipelineConfig())
        assert len(survivors) == 2
        assert meta.merge_count == 0

    def test_merge_disabled(self, monkeypatch):
        monkeypatch.setattr(step09_dedup, "hybrid_similarity", _fixed_similarity(0.45))
        notes = _make_notes("Craniotomy on 10/11/2025.", "Clipping on 10/11/2025.")
        survivors, _, _, _ = deduplicate_notes(notes, PipelineConfig(merge_complementary=False))
        assert len(survivors) == 2

    def test_merge_texts_skips_known_sentences(self):
        assert merge_texts("A stable. B noted.", "B noted. C new.") == "A stable. B noted.\nC new."
        assert merge_texts("A stable.", "a stable") == "A stable."


class TestOrderingAndFeatures:
    def test_preserve_chronology(self, monkeypatch):
        monkeypatch.setattr(step09_dedup, "hybrid_similarity", _fixed_similarity(0.0))
        notes = _make_notes("Stable.", "Discharge summary: clipping on 10/11/2025, vasospasm on POD 5.")
        kept, _, _, _ = deduplicate_notes(notes, PipelineConfig())
        assert [n.note_id for n in kept] == ["n1", "n2"]
        ranked, _, _, _ = deduplicate_notes(notes, PipelineConfig(preserve_chronology=False))
        assert [n.note_id for n in ranked] == ["n2", "n1"]

    def test_temporal_context(self):
        assert temporal_context("Clipping on 10/11/2025, POD 3 stable.") == {"2025-10-11", "procedure:3"}

    def test_detail_score_rewards_content(self):
        assert detail_score("Operative note: clipping on 10/11/2025.") > detail_score("Stable overnight.")


class TestRepeatedSentences:
    def test_sentence_repeated_in_later_note_is_dropped(self, monkeypatch):
        monkeypatch.setattr(step09_dedup, "hybrid_similarity", _fixed_similarity(0.0))
        notes = _make_notes(
            "Clipping of left MCA aneurysm on 10/11/2025. No vasospasm on TCDs.",
            "Started dexamethasone for edema. No vasospasm on TCDs.",
        )
        survivors, meta, clusters, _ = deduplicate_notes(notes, PipelineConfig())
        assert [n.text for n in survivors] == [
            "Clipping of left MCA aneurysm on 10/11/2025. No vasospasm on TCDs.",
            "Started dexamethasone for edema.",
        ]
        assert meta.sentences_removed == 1
        assert meta.output_count == 2
        assert clusters == []

    def test_repeat_within_note_keeps_headers_and_short_sentences(self):
        text = "Hospital Course:\nNeuro exam stable today. Stable.\nPlan:\nNeuro exam stable today. Stable."
        notes, removed = remove_repeated_sentences(_make_notes(text))
        assert notes[0].text == "Hospital Course:\nNeuro exam stable today. Stable.\nPlan:\nStable."
        assert removed == 1

    def test_nothing_repeated_returns_notes_unchanged(self):
        notes = _make_notes("Clipping on 10/11/2025.", "Vasospasm on POD 5.")
        kept, removed = remove_repeated_sentences(notes)
        assert kept == notes
        assert removed == 0
