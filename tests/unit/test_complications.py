"""
Unit tests for complication extraction (Step 4).
"""
from apps.extractor.lib.rule_engine import HIGH, MEDIUM
from apps.extractor.steps.fields import DEFAULT_RULE_TABLE, ExtractionContext, extract_complications
from apps.extractor.steps.fields.complications import in_exclusion_context


def _make_ctx(text: str) -> ExtractionContext:
    return ExtractionContext(text=text, rules=DEFAULT_RULE_TABLE, note_id="n1")


class TestComplications:
    def test_indicator_form_is_high_confidence(self):
        fields, _ = extract_complications(_make_ctx("Hospital course complicated by vasospasm."))
        assert [f.plain_value() for f in fields] == ["vasospasm"]
        assert fields[0].raw_confidence == HIGH
        assert fields[0].rule_id == "complications.vasospasm.indicator"

    def test_bare_mention_is_medium(self):
        fields, _ = extract_complications(_make_ctx("Hyponatremia corrected with salt tabs."))
        assert [f.plain_value() for f in fields] == ["hyponatremia"]
        assert fields[0].raw_confidence == MEDIUM

    def test_prophylaxis_context_excluded(self):
        fields, _ = extract_complications(_make_ctx("Started seizure prophylaxis with Keppra."))
        assert fields == []

    def test_monitoring_context_excluded(self):
        fields, _ = extract_complications(_make_ctx("Monitor for vasospasm with daily TCDs."))
        assert fields == []

    def test_repeated_mentions_are_all_kept(self):
        text = "No vasospasm on day 3. Vasospasm on day 7."
        fields, _ = extract_complications(_make_ctx(text))
        assert [f.plain_value() for f in fields] == ["vasospasm", "vasospasm"]
        assert fields[0].evidence.start < fields[1].evidence.start

    def test_exclusion_helper(self):
        text = "Patient at risk of rebleeding."
        start = text.index("rebleeding")
        assert in_exclusion_context(text, start, start + len("rebleeding"))
        text = "Patient developed rebleeding."
        start = text.index("rebleeding")
        assert not in_exclusion_context(text, start, start + len("rebleeding"))
