from __future__ import annotations

import operator
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sustainwatch.domain.models import (
    AlertSeverity,
    Comparator,
    Indicator,
    Severity,
    ThresholdRule,
)
from sustainwatch.domain.rulesets import rule_sort_key

SEVERITY_RANK: dict[Severity, int] = {
    Severity.OK: 0,
    Severity.WARN: 1,
    Severity.CRIT: 2,
}

COMPARATORS: dict[Comparator, Callable[[float, float], bool]] = {
    Comparator.LE: operator.le,
    Comparator.LT: operator.lt,
    Comparator.GE: operator.ge,
    Comparator.GT: operator.gt,
}


@dataclass(frozen=True)
class Sample:
    indicator: Indicator
    value: float
    it_load_pct: int | None = None


@dataclass(frozen=True)
class Evaluation:
    severity: Severity
    matched_rule: ThresholdRule | None = None
    load_band: int | None = None
    boundary_rule: ThresholdRule | None = None

    @property
    def is_breach(self) -> bool:
        return self.severity != Severity.OK


def severity_rank(severity: Severity | AlertSeverity) -> int:
    return SEVERITY_RANK[Severity(severity)]


def select_load_band(bands: Iterable[int], it_load_pct: int | None) -> int | None:
    """Round the IT load up to the next defined band.

    Loads above every band use the highest band. No load, or no bands,
    selects nothing.
    """
    ordered = sorted(set(bands))
    if it_load_pct is None or not ordered:
        return None
    for band in ordered:
        if band >= it_load_pct:
            return band
    return ordered[-1]


def applicable_rules(sample: Sample, rules: Iterable[ThresholdRule]) -> tuple[int | None, list[ThresholdRule]]:
    same_indicator = [rule for rule in rules if rule.indicator == sample.indicator]
    bands = [rule.load_band for rule in same_indicator if rule.load_band is not None]
    selected = select_load_band(bands, sample.it_load_pct)
    candidates = [
        rule
        for rule in same_indicator
        if rule.load_band is None or (selected is not None and rule.load_band == selected)
    ]
    return selected, candidates


def is_compliant(value: float, comparator: Comparator, threshold: float) -> bool:
    return COMPARATORS[comparator](value, threshold)


def is_breached(rule: ThresholdRule, value: float) -> bool:
    # Rules state the compliant condition; a breach is its negation.
    return not is_compliant(value, rule.comparator, rule.value)


def evaluate(sample: Sample, rules: Iterable[ThresholdRule]) -> Evaluation:
    """Classify one reading against a rule set.

    The highest-severity breached rule wins. Among rules of equal severity
    the first in canonical rule order is reported.
    """
    selected_band, candidates = applicable_rules(sample, rules)
    breached = [rule for rule in sorted(candidates, key=rule_sort_key) if is_breached(rule, sample.value)]
    if not breached:
        # compliant everywhere; remember the rule the value sits closest to
        boundary = min(
            candidates,
            key=lambda rule: (abs(rule.value - sample.value), rule_sort_key(rule)),
            default=None,
        )
        return Evaluation(severity=Severity.OK, load_band=selected_band, boundary_rule=boundary)

    winner = breached[0]
    for rule in breached[1:]:
        if severity_rank(rule.severity) > severity_rank(winner.severity):
            winner = rule
    return Evaluation(
        severity=Severity(winner.severity),
        matched_rule=winner,
        load_band=selected_band,
    )
