"""
Unit tests for hybrid text similarity.
"""
import pytest

from apps.extractor.lib.similarity import (
    W_JACCARD,
    W_LEVENSHTEIN,
    W_SEMANTIC,
    extract_concepts,
    hybrid_similarity,
    jaccard,
    levenshtein_similarity,
    semantic_similarity,
    tokenize,
)


class TestComponents:
    def test_weights_sum_to_one(self):
        assert W_JACCARD + W_LEVENSHTEIN + W_SEMANTIC == pytest.approx(1.0)

    def test_tokenize_drops_short_words_and_punctuation(self):
        assert tokenize("CT of the head, stable.") == {"the", "head", "stable"}

    def test_jaccard(self):
        assert jaccard(set(), set()) == 1.0
        assert jaccard({"a"}, {"b"}) == 0.0
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)

    def test_levenshtein(self):
        assert levenshtein_similarity("abc", "abd") == pytest.approx(2 / 3)
        assert levenshtein_similarity("", "") == 1.0
        assert levenshtein_similarity("Stable.", "stable") == 1.0

    def test_synonyms_map_to_one_concept(self):
        assert extract_concepts("patient was coiled yesterday") == {"aneurysm coiling"}
        assert extract_concepts("endovascular coiling performed") == {"aneurysm coiling"}
        assert semantic_similarity("patient was coiled", "endovascular coiling performed") == 1.0

    def test_semantic_falls_back_to_tokens(self):
        assert semantic_similarity("patient resting comfortably", "patient resting quietly") == pytest.approx(0.5)


class TestHybrid:
    def test_exact_after_normalization(self):
        sim = hybrid_similarity("No vasospasm.", "no  vasospasm")
        assert sim.exact is True
        assert sim.combined == 1.0

    def test_combined_is_weighted_sum(self):
        a = "Patient underwent clipping of left MCA aneurysm. No vasospasm."
        b = "Left MCA aneurysm clipped. Vasospasm on day 7 treated."
        sim = hybrid_similarity(a, b)
        assert sim.exact is False
        expected = W_JACCARD * sim.jaccard + W_LEVENSHTEIN * sim.levenshtein + W_SEMANTIC * sim.semantic
        assert sim.combined == pytest.approx(expected, abs=1e-3)
        assert 0.0 <= sim.combined <= 1.0

    def test_unrelated_notes_score_low(self):
        sim = hybrid_similarity(
            "Glioblastoma resection, started dexamethasone.",
            "Lumbar drain placed for CSF leak after cranioplasty.",
        )
        assert sim.combined < 0.3

    def test_symmetric(self):
        a = "Coiling of AComm aneurysm on 03/05/2024."
        b = "Aneurysm coiled 03/05/2024, no complications."
        assert hybrid_similarity(a, b).combined == hybrid_similarity(b, a).combined
