"""
Unit tests for procedure extraction (Step 4).
"""
from apps.extractor.lib.rule_engine import CRITICAL, MEDIUM
from apps.extractor.steps.fields import DEFAULT_RULE_TABLE, ExtractionContext, extract_procedures
from apps.extractor.steps.fields.procedures import clean_procedure


def _make_ctx(text: str) -> ExtractionContext:
    return ExtractionContext(text=text, rules=DEFAULT_RULE_TABLE, note_id="n1")


def _values(text: str) -> list[str]:
    fields, _ = extract_procedures(_make_ctx(text))
    return [f.plain_value() for f in fields]


class TestProcedures:
    def test_compound_phrase_is_not_split(self):
        assert _values("Patient underwent cerebral angiogram with coiling.") == [
            "cerebral angiogram with coiling",
        ]

    def test_label_list_is_split(self):
        fields, _ = extract_procedures(_make_ctx("Procedures: EVD placement, cerebral angiogram with coiling"))
        assert [f.plain_value() for f in fields] == ["EVD placement", "cerebral angiogram with coiling"]
        assert all(f.raw_confidence == CRITICAL for f in fields)
        text = "Procedures: EVD placement, cerebral angiogram with coiling"
        assert text[fields[1].evidence.start:fields[1].evidence.end] == "cerebral angiogram with coiling"

    def test_passive_performed(self):
        fields, _ = extract_procedures(_make_ctx(
            "Left craniotomy for aneurysm clipping was performed on October 11, 2025."
        ))
        assert [f.plain_value() for f in fields] == ["Left craniotomy for aneurysm clipping"]
        assert fields[0].rule_id == "procedures.passive_performed"

    def test_passive_performed_stops_at_comma(self):
        assert _values(
            "Hunt and Hess grade 3, left craniotomy for aneurysm clipping performed on October 11, 2025."
        ) == ["left craniotomy for aneurysm clipping"]

    def test_clause_without_procedure_falls_back_to_keyword(self):
        fields, _ = extract_procedures(_make_ctx(
            "The patient had worsening headache and was taken for emergent craniotomy."
        ))
        assert [f.plain_value() for f in fields] == ["craniotomy"]
        assert fields[0].rule_id == "procedures.keyword"
        assert fields[0].evidence.text == "craniotomy"

    def test_bare_keyword_is_medium(self):
        fields, _ = extract_procedures(_make_ctx("Neurosurgery discussed possible craniotomy."))
        assert [f.plain_value() for f in fields] == ["craniotomy"]
        assert fields[0].raw_confidence == MEDIUM

    def test_trailing_date_trimmed(self):
        assert _values("She underwent VP shunt placement on 03/12/2024.") == ["VP shunt placement"]

    def test_clean_procedure(self):
        assert clean_procedure("an emergent EVD placement without complications") == "EVD placement"
        assert clean_procedure("coiling by Dr. Smith") == "coiling"

    def test_no_procedures(self):
        assert _values("Neuro exam unchanged.") == []
