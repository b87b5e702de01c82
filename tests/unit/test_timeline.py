"""
Unit tests for the timeline builder (Step 10).
"""
from datetime import date

from packages.shared.models import (
    Anchor,
    AnchorKind,
    EvidenceSpan,
    ExtractedField,
    ReferenceStatus,
    ScalarValue,
    TemporalReference,
    TimelineEventType,
)
from apps.extractor.steps.step03_temporal import find_relative_references
from apps.extractor.steps.step10_timeline import build_timeline, describe, event_type_for, field_ref


def _make_field(
    field_name: str,
    value,
    when: date | None = None,
    start: int = 0,
    note_id: str = "n1",
    ordinal: int = 0,
    reference: TemporalReference | None = None,
    evidence: str = "x",
) -> ExtractedField:
    return ExtractedField(
        field_name=field_name,
        value=ScalarValue(value=value),
        confidence=0.85,
        raw_confidence=0.85,
        evidence=EvidenceSpan(start=start, end=start + len(evidence), text=evidence),
        note_id=note_id,
        note_ordinal=ordinal,
        date=when,
        reference=reference,
    )


class TestBuildTimeline:
    def test_one_event_per_dated_fact_sorted(self):
        fields = {
            "n1": [
                _make_field("dates.discharge", date(2025, 10, 20), date(2025, 10, 20), start=90),
                _make_field("dates.admission", date(2025, 10, 10), date(2025, 10, 10), start=10),
                _make_field("procedures", "clipping", date(2025, 10, 11), start=40),
                _make_field("demographics.age", 55, start=0),
            ],
        }
        events, warnings = build_timeline(fields, {})
        assert [e.type for e in events] == [
            TimelineEventType.ADMISSION,
            TimelineEventType.PROCEDURE,
            TimelineEventType.DISCHARGE,
        ]
        assert [e.order for e in events] == [0, 1, 2]
        assert [e.description for e in events] == ["Admission", "clipping", "Discharge"]
        assert warnings == []

    def test_same_date_orders_by_note_then_offset(self):
        day = date(2025, 10, 11)
        fields = {
            "n2": [_make_field("complications", "vasospasm", day, start=5, note_id="n2", ordinal=1)],
            "n1": [
                _make_field("procedures", "coiling", day, start=50),
                _make_field("medications", "nimodipine", day, start=20),
            ],
        }
        events, _ = build_timeline(fields, {})
        assert [e.description for e in events] == ["nimodipine", "coiling", "vasospasm"]

    def test_unanchored_events_trail(self):
        pod = find_relative_references("POD 2")[0]
        fields = {
            "n1": [
                _make_field("complications", "vasospasm", reference=pod, start=10),
                _make_field("procedures", "clipping", date(2025, 10, 11), start=40),
            ],
        }
        events, warnings = build_timeline(fields, {})
        assert len(events) == 2
        assert events[-1].unanchored is True
        assert events[-1].date is None
        assert events[-1].relative_marker == "POD 2"
        assert [w.code for w in warnings] == ["UNANCHORED_EVENTS"]

    def test_cross_note_retry_resolves_relative_reference(self):
        pod = find_relative_references("POD 3")[0]
        assert pod.status == ReferenceStatus.UNRESOLVED_NO_ANCHOR
        fields = {"n2": [_make_field("complications", "vasospasm", reference=pod, note_id="n2", ordinal=1)]}
        anchors = {
            "n1": [Anchor(kind=AnchorKind.PROCEDURE, date=date(2025, 10, 11), raw_text="10/11/2025", start=0, note_id="n1")],
        }
        events, warnings = build_timeline(fields, anchors)
        assert events[0].date == date(2025, 10, 14)
        assert events[0].unanchored is False
        assert warnings == []

    def test_empty(self):
        assert build_timeline({}, {}) == ([], [])


class TestHelpers:
    def test_event_types(self):
        assert event_type_for("dates.ictus") == TimelineEventType.ICTUS
        assert event_type_for("functional_scores") == TimelineEventType.FINDING
        assert event_type_for("pathology") == TimelineEventType.OTHER

    def test_describe_procedure_date(self):
        field = _make_field("dates.procedure", date(2025, 10, 11), date(2025, 10, 11),
                            evidence="October 11, 2025")
        assert describe(field) == "Procedure (October 11, 2025)"

    def test_field_ref(self):
        assert field_ref(_make_field("procedures", "clipping", start=42)) == "n1#procedures@42"
