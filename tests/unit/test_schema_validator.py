"""
Unit tests for schema validator.
"""
from __future__ import annotations

from datetime import date

from packages.shared.models import (
    ComponentScores,
    EvidenceSpan,
    ExtractedField,
    MultiValuedSlot,
    QualityAssessment,
    QualityGrade,
    ScalarSlot,
    ScalarValue,
    StructuredRecord,
    StructuredValue,
    TemporalQualifier,
    TimelineEvent,
    TimelineEventType,
)
from packages.shared.schema_validator import validate_output
from apps.extractor.pipeline import record_to_dict


def _make_record() -> dict:
    age = ExtractedField(
        field_name="demographics.age",
        value=ScalarValue(value=55),
        confidence=0.9,
        raw_confidence=0.9,
        evidence=EvidenceSpan(start=10, end=12, text="55"),
        note_id="n1",
        sources=["n1:unclassified"],
        calibrated=True,
    )
    med = ExtractedField(
        field_name="medications",
        value=StructuredValue(label="nimodipine", subfields={"name": "nimodipine", "dose": "60 mg", "frequency": None}),
        confidence=0.85,
        raw_confidence=0.85,
        evidence=EvidenceSpan(start=40, end=50, text="nimodipine"),
        note_id="n1",
        date=date(2025, 10, 14),
        qualifier=TemporalQualifier.PROCEDURE_RELATIVE,
        calibrated=True,
    )
    record = StructuredRecord(
        fields={
            "demographics.age": ScalarSlot(primary=age),
            "medications": MultiValuedSlot(items=[med]),
        },
        quality=QualityAssessment(
            score=0.8,
            grade=QualityGrade.GOOD,
            component_scores=ComponentScores(completeness=0.7, validation=0.75, coherence=1.0, timeline_presence=1.0),
        ),
        timeline=[
            TimelineEvent(
                date=date(2025, 10, 14),
                type=TimelineEventType.MEDICATION,
                description="nimodipine",
                source_field_refs=["n1#medications@40"],
                note_id="n1",
            ),
        ],
        notes_processed=1,
        rule_table_version="test-1",
    )
    return record_to_dict(record)


def test_validate_output_valid():
    """A serialized record validates."""
    is_valid, errors = validate_output(_make_record())
    assert is_valid, f"Validation failed: {errors}"
    assert errors == []


def test_validate_output_missing_required_key():
    data = _make_record()
    del data["quality"]
    is_valid, errors = validate_output(data)
    assert not is_valid
    assert any(e.startswith("<root>") and "quality" in e for e in errors)


def test_validate_output_bad_date_format():
    data = _make_record()
    data["timeline"][0]["date"] = "2025-13-45"
    is_valid, errors = validate_output(data)
    assert not is_valid


def test_validate_output_anchored_event_needs_date():
    data = _make_record()
    data["timeline"][0]["date"] = None
    is_valid, _ = validate_output(data)
    assert not is_valid
    data["timeline"][0]["unanchored"] = True
    is_valid, errors = validate_output(data)
    assert is_valid, errors


def test_validate_output_confidence_out_of_range():
    data = _make_record()
    data["fields"]["demographics.age"]["primary"]["confidence"] = 1.5
    is_valid, errors = validate_output(data)
    assert not is_valid
    assert any(e.startswith("fields") for e in errors)
