"""
Unit tests for the rule table and matching engine.
"""
import pytest

from packages.shared.errors import ConfigurationError
from apps.extractor.lib.rule_engine import (
    HIGH,
    MEDIUM,
    RuleOverrides,
    RuleTable,
    match_rules,
    rule,
)
from apps.extractor.steps.fields import DEFAULT_RULE_TABLE, RULE_TABLE_VERSION


def _make_table(*rules, version: str = "test-1", normalizations=None) -> RuleTable:
    return RuleTable(version, rules, normalizations)


class TestRuleTableValidation:
    def test_default_table_is_valid(self):
        assert len(DEFAULT_RULE_TABLE) > 0
        assert DEFAULT_RULE_TABLE.version == RULE_TABLE_VERSION

    def test_duplicate_rule_id_rejected(self):
        with pytest.raises(ConfigurationError):
            _make_table(
                rule("dup", "procedures", r"craniotomy", HIGH, 10),
                rule("dup", "procedures", r"clipping", HIGH, 10),
            )

    def test_weight_outside_unit_interval_rejected(self):
        with pytest.raises(ConfigurationError):
            _make_table(rule("w", "procedures", r"craniotomy", 1.5, 10))

    def test_unknown_field_rejected(self):
        with pytest.raises(ConfigurationError):
            _make_table(rule("u", "not.a.field", r"x", HIGH, 10))

    def test_missing_group_rejected(self):
        with pytest.raises(ConfigurationError):
            _make_table(rule("g", "pathology", r"(?P<dx>SAH)", HIGH, 10, group="other"))

    def test_empty_version_rejected(self):
        with pytest.raises(ConfigurationError):
            RuleTable("", ())

    def test_for_field_sorted_by_priority(self):
        table = _make_table(
            rule("low", "procedures", r"clipping", MEDIUM, 10),
            rule("high", "procedures", r"clipping", HIGH, 90),
        )
        assert [r.rule_id for r in table.for_field("procedures")] == ["high", "low"]


class TestMatchRules:
    def test_scalar_mode_first_match_per_rule(self):
        rules = (rule("age", "demographics.age", r"(\d+) yo", HIGH, 10, group=1),)
        hits = match_rules(rules, "55 yo, previously 54 yo")
        assert len(hits) == 1
        assert hits[0].text == "55"

    def test_scalar_mode_keeps_winning_rule_first(self):
        rules = (
            rule("a", "demographics.age", r"age: (\d+)", HIGH, 90, group=1),
            rule("b", "demographics.age", r"(\d+) yo", MEDIUM, 10, group=1),
        )
        hits = match_rules(rules, "55 yo. age: 56")
        assert [h.rule.rule_id for h in hits] == ["a", "b"]
        assert hits[0].text == "56"

    def test_multi_valued_drops_overlapping_lower_priority(self):
        rules = (
            rule("compound", "procedures", r"angiogram with coiling", HIGH, 80),
            rule("kw", "procedures", r"angiogram|coiling", MEDIUM, 50),
        )
        hits = match_rules(rules, "angiogram with coiling, later angiogram", multi_valued=True)
        assert [(h.rule.rule_id, h.text) for h in hits] == [
            ("compound", "angiogram with coiling"),
            ("kw", "angiogram"),
        ]

    def test_hit_offsets_exclude_whitespace(self):
        rules = (rule("dx", "pathology", r"Diagnosis:(?P<dx>.+)", HIGH, 10, group="dx"),)
        text = "Diagnosis:   SAH"
        hit = match_rules(rules, text)[0]
        assert text[hit.start:hit.end] == "SAH"

    def test_empty_text(self):
        rules = (rule("kw", "procedures", r"coiling", MEDIUM, 50),)
        assert match_rules(rules, "") == []


class TestOverrides:
    def test_with_overrides_returns_new_table(self):
        table = _make_table(rule("kw", "procedures", r"coiling", MEDIUM, 50))
        updated = table.with_overrides(RuleOverrides(version="o1", weights={"kw": 0.9}))
        assert updated.version == "test-1+o1"
        assert updated.get("kw").weight == 0.9
        assert table.get("kw").weight == MEDIUM

    def test_override_for_unknown_rule_rejected(self):
        table = _make_table(rule("kw", "procedures", r"coiling", MEDIUM, 50))
        with pytest.raises(ConfigurationError):
            table.with_overrides(RuleOverrides(version="o1", weights={"missing": 0.9}))

    def test_override_weight_out_of_range_rejected(self):
        table = _make_table(rule("kw", "procedures", r"coiling", MEDIUM, 50))
        with pytest.raises(ConfigurationError):
            table.with_overrides(RuleOverrides(version="o1", weights={"kw": 2.0}))

    def test_normalizations_canonicalize_values(self):
        table = _make_table(rule("kw", "procedures", r"coiling", MEDIUM, 50))
        updated = table.with_overrides(RuleOverrides(
            version="o2",
            normalizations={"procedures": {"Coiling": "aneurysm coiling"}},
        ))
        assert updated.canonicalize("procedures", "coiling") == "aneurysm coiling"
        assert updated.canonicalize("procedures", "clipping") == "clipping"
        assert table.canonicalize("procedures", "coiling") == "coiling"
