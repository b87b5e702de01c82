"""
Rule table + matching engine.

Every pattern used by the field extractors is a frozen Rule record held in a
versioned RuleTable. Extractors never compile their own ad hoc cascades: they
ask the table for a field's rules and run them through match_rules(), which
evaluates in declared priority order and records which rule fired.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from packages.shared.errors import ConfigurationError
from packages.shared.models import KNOWN_FIELDS, MULTI_VALUED_FIELDS, normalize_text_value

logger = logging.getLogger(__name__)

# ── Confidence weights ───────────────────────────────────────────────────

CRITICAL = 0.95
HIGH = 0.85
MEDIUM = 0.70
LOW = 0.50


@dataclass(frozen=True)
class Rule:
    rule_id: str
    field: str
    pattern: re.Pattern
    weight: float
    priority: int  # higher fires first
    group: int | str = 0
    canonical: str | None = None
    tags: tuple[str, ...] = ()


def rule(
    rule_id: str,
    field_name: str,
    pattern: str,
    weight: float,
    priority: int,
    group: int | str = 0,
    canonical: str | None = None,
    flags: int = re.IGNORECASE,
    tags: tuple[str, ...] = (),
) -> Rule:
    """Build a Rule with a compiled pattern."""
    return Rule(
        rule_id=rule_id,
        field=field_name,
        pattern=re.compile(pattern, flags),
        weight=weight,
        priority=priority,
        group=group,
        canonical=canonical,
        tags=tuple(tags),
    )


@dataclass(frozen=True)
class RuleOverrides:
    """
    Confirmed corrections supplied by an external store.

    weights:        {rule_id: weight}
    normalizations: {field_name: {raw value: canonical value}}
    """
    version: str
    weights: Mapping[str, float] = field(default_factory=dict)
    normalizations: Mapping[str, Mapping[str, str]] = field(default_factory=dict)


@dataclass(frozen=True)
class RuleHit:
    rule: Rule
    match: re.Match
    text: str
    start: int
    end: int

    @property
    def weight(self) -> float:
        return self.rule.weight

    def overlaps(self, other: "RuleHit") -> bool:
        return self.start < other.end and other.start < self.end


class RuleTable:
    """Immutable, versioned collection of rules. Validated once at construction."""

    def __init__(
        self,
        version: str,
        rules: tuple[Rule, ...] | list[Rule],
        normalizations: Mapping[str, Mapping[str, str]] | None = None,
    ):
        self._version = version
        self._rules = tuple(rules)
        norm = {
            f: MappingProxyType({normalize_text_value(k): v for k, v in m.items()})
            for f, m in (normalizations or {}).items()
        }
        self._normalizations = MappingProxyType(norm)
        self._validate()
        grouped: dict[str, list[Rule]] = {}
        for r in self._rules:
            grouped.setdefault(r.field, []).append(r)
        # sorted() is stable, so declaration order breaks priority ties
        self._by_field: dict[str, tuple[Rule, ...]] = {
            f: tuple(sorted(rs, key=lambda r: -r.priority)) for f, rs in grouped.items()
        }

    @property
    def version(self) -> str:
        return self._version

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def _validate(self) -> None:
        if not self._version:
            raise ConfigurationError("Rule table version must be non-empty")
        seen: set[str] = set()
        for r in self._rules:
            if r.rule_id in seen:
                raise ConfigurationError(f"Duplicate rule_id '{r.rule_id}'")
            seen.add(r.rule_id)
            if r.field not in KNOWN_FIELDS:
                raise ConfigurationError(f"Rule '{r.rule_id}' targets unknown field '{r.field}'")
            if not 0.0 <= r.weight <= 1.0:
                raise ConfigurationError(f"Rule '{r.rule_id}' weight {r.weight} outside [0, 1]")
            if isinstance(r.group, int):
                if r.group > r.pattern.groups:
                    raise ConfigurationError(f"Rule '{r.rule_id}' references missing group {r.group}")
            elif r.group not in r.pattern.groupindex:
                raise ConfigurationError(f"Rule '{r.rule_id}' references missing group '{r.group}'")
        for f in self._normalizations:
            if f not in KNOWN_FIELDS:
                raise ConfigurationError(f"Normalization targets unknown field '{f}'")

    def for_field(self, field_name: str) -> tuple[Rule, ...]:
        """Rules for a field in descending priority (declaration order breaks ties)."""
        return self._by_field.get(field_name, ())

    def get(self, rule_id: str) -> Rule | None:
        for r in self._rules:
            if r.rule_id == rule_id:
                return r
        return None

    def canonicalize(self, field_name: str, value: str) -> str:
        """Apply a confirmed value normalization if one exists for this field."""
        mapping = self._normalizations.get(field_name)
        if not mapping:
            return value
        return mapping.get(normalize_text_value(value), value)

    def with_overrides(self, overrides: RuleOverrides) -> "RuleTable":
        """Return a new table with weight overrides applied. This table is unchanged."""
        known = {r.rule_id for r in self._rules}
        unknown = set(overrides.weights) - known
        if unknown:
            raise ConfigurationError(f"Overrides reference unknown rules: {sorted(unknown)}")
        rules = tuple(
            Rule(
                rule_id=r.rule_id,
                field=r.field,
                pattern=r.pattern,
                weight=float(overrides.weights.get(r.rule_id, r.weight)),
                priority=r.priority,
                group=r.group,
                canonical=r.canonical,
                tags=r.tags,
            )
            for r in self._rules
        )
        merged: dict[str, dict[str, str]] = {f: dict(m) for f, m in self._normalizations.items()}
        for f, m in overrides.normalizations.items():
            merged.setdefault(f, {}).update(m)
        logger.info(
            f"Applied rule overrides {overrides.version}: "
            f"{len(overrides.weights)} weights, {sum(len(m) for m in overrides.normalizations.values())} normalizations"
        )
        return RuleTable(f"{self._version}+{overrides.version}", rules, merged)

    def evaluate(self, field_name: str, text: str) -> list[RuleHit]:
        return match_rules(
            self.for_field(field_name),
            text,
            multi_valued=field_name in MULTI_VALUED_FIELDS,
        )


# ── Matching engine ──────────────────────────────────────────────────────


def match_rules(
    rules: tuple[Rule, ...] | list[Rule],
    text: str,
    multi_valued: bool = False,
) -> list[RuleHit]:
    """
    Evaluate rules in the given order.

    Scalar fields: each rule contributes its first match, so the result is one
    candidate per firing rule with the winning rule first.
    Multi-valued fields: every match is kept unless it overlaps a span already
    claimed by an earlier (higher priority) hit.
    """
    hits: list[RuleHit] = []
    if not text:
        return hits

    for r in rules:
        for m in r.pattern.finditer(text):
            start, end = m.span(r.group)
            if start < 0:
                continue
            value = m.group(r.group) or ""
            stripped = value.strip()
            if not stripped:
                continue
            lead = len(value) - len(value.lstrip())
            hit = RuleHit(
                rule=r,
                match=m,
                text=stripped,
                start=start + lead,
                end=start + lead + len(stripped),
            )
            if multi_valued:
                if any(hit.overlaps(h) for h in hits):
                    continue
                hits.append(hit)
            else:
                hits.append(hit)
                break

    return hits
