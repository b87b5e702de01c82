"""
Unit tests for confidence calibration (Step 8).
"""
from datetime import date

import pytest

from packages.shared.models import (
    KNOWN_FIELDS,
    EvidenceSpan,
    ExtractedField,
    MultiValuedSlot,
    QualityGrade,
    ScalarSlot,
    ScalarValue,
)
from apps.extractor.steps.step08_calibrate import (
    EXTERNAL_CONFIDENCE,
    EXTERNAL_SOURCE,
    calibrate_field,
    calibrate_fields,
    collapse_candidates,
    corroboration_bonus,
    merge_external_candidates,
    quality_multiplier,
)


def _make_field(field_name: str, value, raw: float = 0.8, sources=("n1:plan",), start: int = 0, note_id="n1") -> ExtractedField:
    return ExtractedField(
        field_name=field_name,
        value=ScalarValue(value=value),
        confidence=raw,
        raw_confidence=raw,
        evidence=EvidenceSpan(start=start, end=start + 1, text="x"),
        sources=list(sources),
        note_id=note_id,
    )


class TestFactors:
    def test_corroboration_bonus(self):
        assert corroboration_bonus(0) == 1.0
        assert corroboration_bonus(1) == 1.0
        assert corroboration_bonus(2) == pytest.approx(1.05)
        assert corroboration_bonus(3) == pytest.approx(1.10)
        assert corroboration_bonus(4) == pytest.approx(1.15)
        assert corroboration_bonus(10) == pytest.approx(1.15)

    def test_multipliers_ordered_by_grade(self):
        grades = [
            QualityGrade.EXCELLENT, QualityGrade.GOOD, QualityGrade.FAIR,
            QualityGrade.POOR, QualityGrade.VERY_POOR,
        ]
        values = [quality_multiplier(g) for g in grades]
        assert values == sorted(values, reverse=True)
        assert values[0] == 1.0


class TestCalibrateField:
    def test_formula_and_clamp(self):
        field = _make_field("procedures", "clipping", raw=0.95, sources=("n1:plan", "n2:plan", "n3:plan"))
        out = calibrate_field(field, QualityGrade.EXCELLENT)
        assert out.confidence == 1.0
        assert out.raw_confidence == 0.95
        assert out.calibrated is True

    def test_idempotent(self):
        field = _make_field("procedures", "clipping", raw=0.8)
        once = calibrate_field(field, QualityGrade.FAIR)
        twice = calibrate_field(once, QualityGrade.FAIR)
        assert once.confidence == twice.confidence == pytest.approx(0.68)


class TestCollapse:
    def test_equal_values_collapse_with_union_of_sources(self):
        collapsed = collapse_candidates([
            _make_field("complications", "vasospasm", raw=0.7, sources=("n1:hospital_course",)),
            _make_field("complications", "Vasospasm", raw=0.85, sources=("n2:plan",)),
            _make_field("complications", "seizure", raw=0.7),
        ])
        assert [c.plain_value() for c in collapsed] == ["Vasospasm", "seizure"]
        assert collapsed[0].raw_confidence == 0.85
        assert collapsed[0].sources == ["n1:hospital_course", "n2:plan"]


class TestCalibrateFields:
    def test_every_known_field_present(self):
        slots, warnings = calibrate_fields([], QualityGrade.GOOD)
        assert set(slots) == set(KNOWN_FIELDS)
        assert warnings == []
        assert isinstance(slots["procedures"], MultiValuedSlot)
        assert isinstance(slots["pathology"], ScalarSlot)
        assert slots["pathology"].primary is None

    def test_primary_is_highest_calibrated(self):
        slots, _ = calibrate_fields([
            _make_field("demographics.age", 54, raw=0.7, start=0),
            _make_field("demographics.age", 55, raw=0.9, start=5),
            _make_field("demographics.age", 56, raw=0.9, start=9),
        ], QualityGrade.EXCELLENT)
        slot = slots["demographics.age"]
        assert slot.primary.plain_value() == 55
        assert [f.plain_value() for f in slot.secondary] == [56, 54]

    def test_per_note_grade(self):
        slots, _ = calibrate_fields(
            [_make_field("procedures", "clipping", raw=0.8, note_id="bad")],
            QualityGrade.EXCELLENT,
            note_grades={"bad": QualityGrade.VERY_POOR},
        )
        assert slots["procedures"].items[0].confidence == pytest.approx(0.52)

    def test_unknown_field_dropped_with_warning(self):
        slots, warnings = calibrate_fields([_make_field("blood_type", "O+")], QualityGrade.GOOD)
        assert "blood_type" not in slots
        assert [w.code for w in warnings] == ["UNKNOWN_FIELD"]


class TestExternalCandidates:
    def test_merge(self):
        merged, warnings = merge_external_candidates([], {
            "procedures": ["clipping", "EVD placement"],
            "dates.admission": "10/10/2025",
            "favorite_color": "blue",
        })
        assert [w.code for w in warnings] == ["UNKNOWN_EXTERNAL_FIELD"]
        assert [m.plain_value() for m in merged if m.field_name == "procedures"] == ["clipping", "EVD placement"]
        admission = [m for m in merged if m.field_name == "dates.admission"][0]
        assert admission.date == date(2025, 10, 10)
        assert admission.plain_value() == date(2025, 10, 10)
        assert all(m.sources == [EXTERNAL_SOURCE] for m in merged)
        assert all(m.raw_confidence == EXTERNAL_CONFIDENCE for m in merged)

    def test_external_corroborates_extracted_value(self):
        merged, _ = merge_external_candidates([_make_field("procedures", "clipping", raw=0.7)], {"procedures": "Clipping"})
        slots, _ = calibrate_fields(merged, QualityGrade.EXCELLENT)
        items = slots["procedures"].items
        assert len(items) == 1
        assert items[0].sources == ["n1:plan", EXTERNAL_SOURCE]
        assert items[0].confidence == pytest.approx(0.945)

    def test_none_is_noop(self):
        existing = [_make_field("procedures", "clipping")]
        merged, warnings = merge_external_candidates(existing, None)
        assert merged == existing
        assert warnings == []
