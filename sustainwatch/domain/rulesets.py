from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sustainwatch.domain.models import (
    AlertSeverity,
    Comparator,
    Indicator,
    PueMode,
    ThresholdRule,
)

# Singapore grid emission factor, kgCO2e per kWh.
GRID_EMISSION_FACTOR_SG = 0.4057

CANONICAL_LOAD_BANDS = (25, 50, 75, 100)

INDICATOR_ORDER: dict[Indicator, int] = {
    Indicator.PUE: 0,
    Indicator.WUE: 1,
    Indicator.CUE: 2,
}

RULE_SEVERITY_ORDER: dict[AlertSeverity, int] = {
    AlertSeverity.WARN: 0,
    AlertSeverity.CRIT: 1,
}


@dataclass(frozen=True)
class FrameworkPreset:
    code: str
    display_name: str
    description: str
    default_pue_mode: PueMode
    supports_load_aware: bool


@dataclass(frozen=True)
class PueBand:
    band: int
    warn: float
    crit: float


FRAMEWORK_PRESETS: dict[str, FrameworkPreset] = {
    "GMDC_SG_2024": FrameworkPreset(
        code="GMDC_SG_2024",
        display_name="GMDC_SG_2024 (Singapore Green Mark)",
        description="Aligns to BCA-IMDA Green Mark bands. Platinum maps to WARN, GoldPLUS to CRIT.",
        default_pue_mode=PueMode.LOAD_AWARE,
        supports_load_aware=True,
    ),
    "GDCR_SG_2034": FrameworkPreset(
        code="GDCR_SG_2034",
        display_name="GDCR_SG_2034 (SG Green DC Roadmap)",
        description="Singapore Green Data Centre Roadmap targets for PUE/WUE/CUE at 100% IT load.",
        default_pue_mode=PueMode.STATIC,
        supports_load_aware=False,
    ),
    "CORP_DEFAULT": FrameworkPreset(
        code="CORP_DEFAULT",
        display_name="CORP_DEFAULT (Company baseline)",
        description="Slightly tighter than GMDC, simple static PUE/WUE/CUE thresholds.",
        default_pue_mode=PueMode.STATIC,
        supports_load_aware=False,
    ),
    "SLA_STRICT": FrameworkPreset(
        code="SLA_STRICT",
        display_name="SLA_STRICT (Premium SLA)",
        description="Strict thresholds for premium or customer SLA sites, static PUE/WUE/CUE.",
        default_pue_mode=PueMode.STATIC,
        supports_load_aware=False,
    ),
}

GMDC_PUE_BANDS = (
    PueBand(band=25, warn=1.39, crit=1.46),
    PueBand(band=50, warn=1.33, crit=1.39),
    PueBand(band=75, warn=1.29, crit=1.36),
    PueBand(band=100, warn=1.28, crit=1.35),
)


def derive_cue(pue_threshold: float, emission_factor: float = GRID_EMISSION_FACTOR_SG) -> float:
    return round(pue_threshold * emission_factor, 3)


def effective_pue_mode(framework_code: str, requested: PueMode | None) -> PueMode:
    """Resolve the PUE mode a preset is actually built with.

    ``None`` selects the preset's default mode. LOAD_AWARE is coerced to
    STATIC for presets that do not define load bands. Unknown frameworks
    always resolve to STATIC.
    """
    preset = FRAMEWORK_PRESETS.get(framework_code)
    if preset is None:
        return PueMode.STATIC
    mode = requested or preset.default_pue_mode
    if mode == PueMode.LOAD_AWARE and not preset.supports_load_aware:
        return PueMode.STATIC
    return mode


def _rule(
    indicator: Indicator,
    severity: AlertSeverity,
    value: float,
    load_band: int | None = None,
) -> ThresholdRule:
    return ThresholdRule(
        indicator=indicator,
        comparator=Comparator.LE,
        value=value,
        severity=severity,
        load_band=load_band,
    )


def _pair(
    indicator: Indicator,
    warn: float,
    crit: float,
    load_band: int | None = None,
) -> list[ThresholdRule]:
    return [
        _rule(indicator, AlertSeverity.WARN, warn, load_band),
        _rule(indicator, AlertSeverity.CRIT, crit, load_band),
    ]


def _build_gmdc(pue_mode: PueMode) -> list[ThresholdRule]:
    rules: list[ThresholdRule] = []
    if pue_mode == PueMode.LOAD_AWARE:
        for band in GMDC_PUE_BANDS:
            rules.extend(_pair(Indicator.PUE, band.warn, band.crit, band.band))
    else:
        full_load = next(band for band in GMDC_PUE_BANDS if band.band == 100)
        rules.extend(_pair(Indicator.PUE, full_load.warn, full_load.crit))
    rules.extend(_pair(Indicator.WUE, 2.0, 2.2))
    rules.extend(_pair(Indicator.CUE, 0.564, 0.592))
    return rules


def _build_gdcr(_pue_mode: PueMode) -> list[ThresholdRule]:
    return [
        _rule(Indicator.PUE, AlertSeverity.WARN, 1.3),
        _rule(Indicator.WUE, AlertSeverity.WARN, 2.0),
        _rule(Indicator.CUE, AlertSeverity.WARN, derive_cue(1.3)),
    ]


def _build_corp_default(_pue_mode: PueMode) -> list[ThresholdRule]:
    return [
        *_pair(Indicator.PUE, 1.35, 1.4),
        *_pair(Indicator.WUE, 1.9, 2.1),
        *_pair(Indicator.CUE, derive_cue(1.35), derive_cue(1.4)),
    ]


def _build_sla_strict(_pue_mode: PueMode) -> list[ThresholdRule]:
    return [
        *_pair(Indicator.PUE, 1.3, 1.35),
        *_pair(Indicator.WUE, 1.8, 2.0),
        *_pair(Indicator.CUE, derive_cue(1.3), derive_cue(1.35)),
    ]


_PRESET_BUILDERS: dict[str, Callable[[PueMode], list[ThresholdRule]]] = {
    "GMDC_SG_2024": _build_gmdc,
    "GDCR_SG_2034": _build_gdcr,
    "CORP_DEFAULT": _build_corp_default,
    "SLA_STRICT": _build_sla_strict,
}


def rule_sort_key(rule: ThresholdRule) -> tuple[int, int, int, float]:
    band = rule.load_band if rule.load_band is not None else -1
    return (
        INDICATOR_ORDER[rule.indicator],
        band,
        RULE_SEVERITY_ORDER[rule.severity],
        rule.value,
    )


def sort_rules(rules: Iterable[ThresholdRule]) -> list[ThresholdRule]:
    return sorted(rules, key=rule_sort_key)


def build_preset_rules(framework_code: str, pue_mode: PueMode) -> list[ThresholdRule]:
    """Materialize the threshold rules of a named framework preset.

    Unknown framework codes yield an empty list; an empty result means the
    rules must be configured manually. In STATIC mode PUE rules carry no
    load band. WUE and CUE rules never carry one.
    """
    builder = _PRESET_BUILDERS.get(framework_code)
    if builder is None:
        return []
    return sort_rules(builder(pue_mode))
