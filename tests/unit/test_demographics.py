"""
Unit tests for demographics extraction (Step 4).
"""
from apps.extractor.lib.rule_engine import HIGH
from apps.extractor.steps.fields import DEFAULT_RULE_TABLE, ExtractionContext, extract_demographics


def _make_ctx(text: str) -> ExtractionContext:
    return ExtractionContext(text=text, rules=DEFAULT_RULE_TABLE, note_id="n1")


def _best(fields, name):
    matching = [f for f in fields if f.field_name == name]
    return max(matching, key=lambda f: f.raw_confidence) if matching else None


class TestAgeAndGender:
    def test_comma_age_sex(self):
        fields, _ = extract_demographics(_make_ctx("John Doe, 55M presented with headache."))
        age = _best(fields, "demographics.age")
        gender = _best(fields, "demographics.gender")
        assert age.plain_value() == 55
        assert age.raw_confidence >= HIGH
        assert age.rule_id == "demographics.age.comma_sex"
        assert gender.plain_value() == "M"
        assert gender.raw_confidence >= HIGH

    def test_age_sex_at_line_end(self):
        fields, _ = extract_demographics(_make_ctx("Seen in clinic today\nJane Roe 62F"))
        age = _best(fields, "demographics.age")
        gender = _best(fields, "demographics.gender")
        assert age.plain_value() == 62
        assert age.raw_confidence >= HIGH
        assert gender.plain_value() == "F"

    def test_year_old_phrase(self):
        fields, _ = extract_demographics(_make_ctx("A 45-year-old woman with thunderclap headache."))
        assert _best(fields, "demographics.age").plain_value() == 45
        assert _best(fields, "demographics.gender").plain_value() == "F"

    def test_pronoun_is_low_confidence_fallback(self):
        fields, _ = extract_demographics(_make_ctx("She reports headache."))
        gender = _best(fields, "demographics.gender")
        assert gender.plain_value() == "F"
        assert gender.raw_confidence < HIGH

    def test_implausible_age_warns(self):
        fields, warnings = extract_demographics(_make_ctx("Age: 150"))
        assert _best(fields, "demographics.age") is None
        assert [w.code for w in warnings] == ["IMPLAUSIBLE_AGE"]

    def test_no_demographics(self):
        fields, warnings = extract_demographics(_make_ctx("Stable overnight."))
        assert fields == []
        assert warnings == []


class TestName:
    def test_labeled_name(self):
        fields, _ = extract_demographics(_make_ctx("Patient: John Doe, 55M"))
        assert _best(fields, "demographics.name").plain_value() == "John Doe"
