from __future__ import annotations

import pytest

from sustainwatch.domain.evaluator import Sample, evaluate, select_load_band
from sustainwatch.domain.models import AlertSeverity, Comparator, Indicator, PueMode, Severity, ThresholdRule
from sustainwatch.domain.rulesets import build_preset_rules

GMDC_LOAD_AWARE = build_preset_rules("GMDC_SG_2024", PueMode.LOAD_AWARE)


@pytest.mark.parametrize(
    ("it_load_pct", "expected"),
    [(40, 50), (50, 50), (1, 25), (76, 100), (100, 100)],
)
def test_load_band_rounds_up_to_next_defined_band(it_load_pct: int, expected: int) -> None:
    assert select_load_band([25, 50, 75, 100], it_load_pct) == expected


def test_load_band_above_all_bands_uses_highest() -> None:
    assert select_load_band([25, 50, 75], 90) == 75


def test_load_band_absent_selects_nothing() -> None:
    assert select_load_band([25, 50, 75, 100], None) is None
    assert select_load_band([], 40) is None


def test_band_40_is_judged_against_band_50_thresholds() -> None:
    result = evaluate(Sample(Indicator.PUE, 1.36, it_load_pct=40), GMDC_LOAD_AWARE)

    assert result.severity == Severity.WARN
    assert result.load_band == 50
    assert result.matched_rule is not None
    assert result.matched_rule.load_band == 50
    assert result.matched_rule.value == 1.33


def test_missing_load_only_uses_unbanded_rules() -> None:
    rules = [
        *GMDC_LOAD_AWARE,
        ThresholdRule(indicator=Indicator.PUE, comparator=Comparator.LE, value=1.5, severity=AlertSeverity.CRIT),
    ]

    result = evaluate(Sample(Indicator.PUE, 1.45, it_load_pct=None), rules)
    assert result.severity == Severity.OK
    assert result.load_band is None

    result = evaluate(Sample(Indicator.PUE, 1.6, it_load_pct=None), rules)
    assert result.severity == Severity.CRIT
    assert result.matched_rule is not None
    assert result.matched_rule.load_band is None


def test_highest_severity_wins() -> None:
    warn = ThresholdRule(indicator=Indicator.PUE, comparator=Comparator.LE, value=1.33, severity=AlertSeverity.WARN)
    crit = ThresholdRule(indicator=Indicator.PUE, comparator=Comparator.LE, value=1.28, severity=AlertSeverity.CRIT)

    result = evaluate(Sample(Indicator.PUE, 1.40), [warn, crit])

    assert result.severity == Severity.CRIT
    assert result.matched_rule == crit


def test_comparator_states_the_compliant_condition() -> None:
    floor = ThresholdRule(indicator=Indicator.WUE, comparator=Comparator.GE, value=1.0, severity=AlertSeverity.WARN)
    ceiling = ThresholdRule(indicator=Indicator.WUE, comparator=Comparator.LT, value=2.0, severity=AlertSeverity.CRIT)

    assert evaluate(Sample(Indicator.WUE, 1.0), [floor, ceiling]).severity == Severity.OK
    assert evaluate(Sample(Indicator.WUE, 0.9), [floor, ceiling]).severity == Severity.WARN
    assert evaluate(Sample(Indicator.WUE, 2.0), [floor, ceiling]).severity == Severity.CRIT


def test_boundary_value_is_compliant_for_le_rules() -> None:
    result = evaluate(Sample(Indicator.PUE, 1.39, it_load_pct=50), GMDC_LOAD_AWARE)

    assert result.severity == Severity.WARN


def test_no_rules_means_ok() -> None:
    result = evaluate(Sample(Indicator.CUE, 9.9, it_load_pct=50), [])

    assert result.severity == Severity.OK
    assert result.matched_rule is None
    assert not result.is_breach


def test_rules_for_other_indicators_are_ignored() -> None:
    only_pue = [rule for rule in GMDC_LOAD_AWARE if rule.indicator == Indicator.PUE]

    assert evaluate(Sample(Indicator.WUE, 5.0, it_load_pct=50), only_pue).severity == Severity.OK


def test_compliant_sample_reports_nearest_rule_in_band() -> None:
    result = evaluate(Sample(Indicator.PUE, 1.30, it_load_pct=50), GMDC_LOAD_AWARE)

    assert result.severity == Severity.OK
    assert result.boundary_rule is not None
    assert result.boundary_rule.load_band == 50
    assert result.boundary_rule.severity == AlertSeverity.WARN
    assert result.boundary_rule.value == 1.33
    assert evaluate(Sample(Indicator.CUE, 0.1), []).boundary_rule is None
