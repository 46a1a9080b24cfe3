from __future__ import annotations

from sustainwatch.domain.models import AlertSeverity, Indicator, PueMode, ThresholdRule
from sustainwatch.domain.rulesets import (
    build_preset_rules,
    derive_cue,
    effective_pue_mode,
    rule_sort_key,
)


def _values(rules: list[ThresholdRule], indicator: Indicator, severity: AlertSeverity) -> list[float]:
    return [rule.value for rule in rules if rule.indicator == indicator and rule.severity == severity]


def test_corp_default_cue_is_derived_from_pue() -> None:
    rules = build_preset_rules("CORP_DEFAULT", PueMode.STATIC)

    assert derive_cue(1.35) == 0.548
    assert _values(rules, Indicator.CUE, AlertSeverity.WARN) == [0.548]
    assert _values(rules, Indicator.CUE, AlertSeverity.CRIT) == [derive_cue(1.4)]


def test_gmdc_load_aware_emits_one_pair_per_band() -> None:
    rules = build_preset_rules("GMDC_SG_2024", PueMode.LOAD_AWARE)
    pue_rules = [rule for rule in rules if rule.indicator == Indicator.PUE]

    assert [rule.load_band for rule in pue_rules] == [25, 25, 50, 50, 75, 75, 100, 100]
    band_50 = {rule.severity: rule.value for rule in pue_rules if rule.load_band == 50}
    assert band_50 == {AlertSeverity.WARN: 1.33, AlertSeverity.CRIT: 1.39}
    assert all(rule.load_band is None for rule in rules if rule.indicator != Indicator.PUE)


def test_gmdc_static_uses_full_load_values_without_band() -> None:
    rules = build_preset_rules("GMDC_SG_2024", PueMode.STATIC)
    pue_rules = [rule for rule in rules if rule.indicator == Indicator.PUE]

    assert [(rule.severity, rule.value, rule.load_band) for rule in pue_rules] == [
        (AlertSeverity.WARN, 1.28, None),
        (AlertSeverity.CRIT, 1.35, None),
    ]


def test_gdcr_preset_only_warns() -> None:
    rules = build_preset_rules("GDCR_SG_2034", PueMode.STATIC)

    assert len(rules) == 3
    assert {rule.severity for rule in rules} == {AlertSeverity.WARN}
    assert _values(rules, Indicator.CUE, AlertSeverity.WARN) == [0.527]


def test_preset_rules_are_in_stable_display_order() -> None:
    for code in ("GMDC_SG_2024", "GDCR_SG_2034", "CORP_DEFAULT", "SLA_STRICT"):
        rules = build_preset_rules(code, effective_pue_mode(code, None))
        assert rules == sorted(rules, key=rule_sort_key)
        assert [rule.indicator for rule in rules][0] == Indicator.PUE
        assert [rule.indicator for rule in rules][-1] == Indicator.CUE


def test_unknown_framework_has_no_preset() -> None:
    assert build_preset_rules("NOT_A_FRAMEWORK", PueMode.STATIC) == []
    assert effective_pue_mode("NOT_A_FRAMEWORK", PueMode.LOAD_AWARE) == PueMode.STATIC


def test_load_aware_is_coerced_for_static_only_presets() -> None:
    assert effective_pue_mode("CORP_DEFAULT", PueMode.LOAD_AWARE) == PueMode.STATIC
    assert effective_pue_mode("GMDC_SG_2024", None) == PueMode.LOAD_AWARE
    assert effective_pue_mode("GMDC_SG_2024", PueMode.STATIC) == PueMode.STATIC
