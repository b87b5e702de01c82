"""
Unit tests for pathology extraction (Step 4).
"""
from packages.shared.models import QualityGrade, ScalarSlot
from apps.extractor.lib.rule_engine import CRITICAL
from apps.extractor.steps.fields import DEFAULT_RULE_TABLE, ExtractionContext, extract_pathology
from apps.extractor.steps.fields.pathology import canonical_pathology
from apps.extractor.steps.step08_calibrate import calibrate_fields


def _make_ctx(text: str) -> ExtractionContext:
    return ExtractionContext(text=text, rules=DEFAULT_RULE_TABLE, note_id="n1")


def _values(fields, name):
    return [f.plain_value() for f in fields if f.field_name == name]


class TestDiagnosis:
    def test_diagnosis_label_is_canonicalized(self):
        fields, _ = extract_pathology(_make_ctx("Diagnosis: aneurysmal subarachnoid hemorrhage (SAH)"))
        labelled = [f for f in fields if f.rule_id == "pathology.diagnosis_label"]
        assert len(labelled) == 1
        assert labelled[0].plain_value() == "aneurysmal SAH"
        assert labelled[0].raw_confidence == CRITICAL

    def test_primary_is_highest_confidence_after_calibration(self):
        fields, _ = extract_pathology(_make_ctx("Diagnosis: aneurysmal subarachnoid hemorrhage (SAH)"))
        slots, _ = calibrate_fields(fields, QualityGrade.EXCELLENT)
        slot = slots["pathology"]
        assert isinstance(slot, ScalarSlot)
        assert slot.primary.plain_value() == "aneurysmal SAH"
        assert "SAH" in [f.plain_value() for f in slot.secondary]

    def test_canonical_pathology(self):
        assert canonical_pathology("ruptured aneurysm with SAH") == "SAH"
        assert canonical_pathology("GBM") == "glioblastoma"
        assert canonical_pathology("pituitary adenoma s/p resection") == "pituitary adenoma"

    def test_no_diagnosis(self):
        fields, warnings = extract_pathology(_make_ctx("Ambulating in the hallway."))
        assert fields == []
        assert warnings == []


class TestGradesAndLocation:
    def test_hunt_hess_grade(self):
        fields, _ = extract_pathology(_make_ctx("Hunt and Hess grade 3 on arrival."))
        grades = [f for f in fields if f.field_name == "pathology.grade"]
        assert [g.plain_value() for g in grades] == ["Hunt and Hess 3"]
        assert grades[0].value.subfields == {"scale": "Hunt and Hess", "grade": 3}

    def test_roman_numeral_grade(self):
        fields, _ = extract_pathology(_make_ctx("H&H IV"))
        assert _values(fields, "pathology.grade") == ["Hunt and Hess 4"]

    def test_modified_fisher_not_duplicated_as_fisher(self):
        fields, _ = extract_pathology(_make_ctx("Hunt and Hess grade 3, modified Fisher grade 3."))
        assert _values(fields, "pathology.grade") == ["Hunt and Hess 3", "modified Fisher 3"]

    def test_aneurysm_location(self):
        fields, _ = extract_pathology(_make_ctx("Angiogram showed a left MCA aneurysm."))
        assert _values(fields, "pathology.location") == ["left MCA"]
