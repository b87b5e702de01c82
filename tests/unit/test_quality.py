"""
Unit tests for source quality assessment (Step 7).
"""
from datetime import date

import pytest

from packages.shared.models import (
    EvidenceSpan,
    ExtractedField,
    PipelineConfig,
    QualityGrade,
    ReferenceStatus,
    ScalarValue,
    Section,
    TemporalKind,
    TemporalReference,
)
from apps.extractor.steps.step07_quality import (
    assess_batch,
    assess_quality,
    coherence_score,
    grade_for,
    timeline_presence_score,
    validation_checks,
)


def _make_field(field_name: str, value, when: date | None = None) -> ExtractedField:
    return ExtractedField(
        field_name=field_name,
        value=ScalarValue(value=value),
        confidence=0.85,
        raw_confidence=0.85,
        evidence=EvidenceSpan(start=0, end=1, text="x"),
        date=when,
    )


def _make_sections() -> list[Section]:
    labels = ["history_present_illness", "neuro_exam", "hospital_course", "plan", "discharge"]
    return [Section(label=label, text="...", start_offset=i * 10, end_offset=i * 10 + 10) for i, label in enumerate(labels)]


def _full_candidates() -> list[ExtractedField]:
    return [
        _make_field("demographics.age", 55),
        _make_field("demographics.gender", "M"),
        _make_field("pathology", "aneurysmal SAH"),
        _make_field("procedures", "clipping", date(2025, 10, 11)),
        _make_field("dates.admission", date(2025, 10, 10), date(2025, 10, 10)),
        _make_field("dates.ictus", date(2025, 10, 10), date(2025, 10, 10)),
        _make_field("dates.discharge", date(2025, 10, 20), date(2025, 10, 20)),
    ]


class TestGrades:
    @pytest.mark.parametrize("score,grade", [
        (1.0, QualityGrade.EXCELLENT),
        (0.90, QualityGrade.EXCELLENT),
        (0.89, QualityGrade.GOOD),
        (0.75, QualityGrade.GOOD),
        (0.60, QualityGrade.FAIR),
        (0.40, QualityGrade.POOR),
        (0.39, QualityGrade.VERY_POOR),
        (0.0, QualityGrade.VERY_POOR),
    ])
    def test_grade_cut_points(self, score, grade):
        assert grade_for(score) == grade


class TestAssessQuality:
    def test_complete_note_scores_well(self):
        qa, warnings = assess_quality(_full_candidates(), _make_sections(), [], PipelineConfig(), "n1")
        assert qa.component_scores.validation == 1.0
        assert qa.component_scores.coherence == 1.0
        assert qa.component_scores.timeline_presence == 1.0
        assert qa.grade in (QualityGrade.EXCELLENT, QualityGrade.GOOD)
        assert qa.grade == grade_for(qa.score)
        assert warnings == []

    def test_score_monotone_in_required_fields(self):
        config = PipelineConfig()
        candidates = _full_candidates()
        previous, _ = assess_quality(candidates, _make_sections(), [], config)
        for name in ("pathology", "demographics.gender", "procedures"):
            candidates = [c for c in candidates if c.field_name != name]
            current, _ = assess_quality(candidates, _make_sections(), [], config)
            assert current.score < previous.score
            previous = current

    def test_missing_required_reported(self):
        candidates = [c for c in _full_candidates() if c.field_name != "pathology"]
        qa, _ = assess_quality(candidates, _make_sections(), [], PipelineConfig())
        assert "Missing required fields: pathology" in qa.issues
        assert "Document pathology explicitly" in qa.recommendations

    def test_empty_note_is_very_poor_with_warning(self):
        qa, warnings = assess_quality([], [], [], PipelineConfig(), "n1")
        assert qa.score == 0.0
        assert qa.grade == QualityGrade.VERY_POOR
        assert "No dates found" in qa.issues
        assert [(w.code, w.note_id) for w in warnings] == [("LOW_SOURCE_QUALITY", "n1")]


class TestComponents:
    def test_discharge_before_admission_fails(self):
        candidates = [
            _make_field("dates.admission", date(2025, 10, 10), date(2025, 10, 10)),
            _make_field("dates.discharge", date(2025, 10, 1), date(2025, 10, 1)),
        ]
        checks = validation_checks(candidates)
        assert checks["discharge_after_admission"] is False

    def test_missing_inputs_fail_checks(self):
        assert not any(validation_checks([]).values())

    def test_implausible_age(self):
        assert validation_checks([_make_field("demographics.age", 130)])["age_plausible"] is False

    def test_coherence_counts_groups(self):
        score, missing = coherence_score(_make_sections()[:3])
        assert score == pytest.approx(0.6)
        assert missing == ["assessment/plan", "discharge/follow-up"]

    def test_timeline_presence(self):
        one = [_make_field("procedures", "clipping", date(2025, 10, 11))]
        assert timeline_presence_score(one, []) == (0.5, 1)
        relative = TemporalReference(
            kind=TemporalKind.RELATIVE, raw_text="POD 2", start=0, end=5,
            status=ReferenceStatus.UNRESOLVED_NO_ANCHOR,
        )
        assert timeline_presence_score([], [relative]) == (0.5, 0)
        assert timeline_presence_score([], []) == (0.0, 0)


class TestBatch:
    def test_batch_is_mean(self):
        good, _ = assess_quality(_full_candidates(), _make_sections(), [], PipelineConfig())
        bad, _ = assess_quality([], [], [], PipelineConfig())
        batch = assess_batch([good, bad])
        assert batch.score == pytest.approx(round((good.score + bad.score) / 2, 4))
        assert batch.grade == grade_for(batch.score)
        assert "No dates found" in batch.issues

    def test_single_and_empty(self):
        qa, _ = assess_quality(_full_candidates(), _make_sections(), [], PipelineConfig())
        assert assess_batch([qa]) is qa
        assert assess_batch([]).grade == QualityGrade.VERY_POOR
