from __future__ import annotations

import os
from dataclasses import dataclass, replace
from datetime import datetime

from sustainwatch.domain.evaluator import Evaluation, severity_rank
from sustainwatch.domain.models import (
    AlertAction,
    AlertSeverity,
    AlertStatus,
    Comparator,
)

ALERT_STATUS_TRANSITIONS: dict[AlertStatus, set[AlertStatus]] = {
    AlertStatus.OPEN: {AlertStatus.OPEN, AlertStatus.CLEARED},
    AlertStatus.CLEARED: set(),
}


def can_transition(source: AlertStatus, target: AlertStatus) -> bool:
    return target in ALERT_STATUS_TRANSITIONS.get(source, set())


@dataclass(frozen=True)
class AlertPolicy:
    clear_ok_samples: int = 3
    clear_band_pct: float = 2.0

    def __post_init__(self) -> None:
        if self.clear_ok_samples < 1:
            raise ValueError("clear_ok_samples must be at least 1")
        if self.clear_band_pct < 0:
            raise ValueError("clear_band_pct must not be negative")

    @classmethod
    def from_env(cls) -> AlertPolicy:
        return cls(
            clear_ok_samples=int(os.getenv("ALERT_CLEAR_OK_SAMPLES", "3")),
            clear_band_pct=float(os.getenv("ALERT_CLEAR_BAND_PCT", "2.0")),
        )


@dataclass(frozen=True)
class OpenAlertState:
    severity: AlertSeverity
    comparator: Comparator
    threshold_value: float
    observed_value: float
    load_band: int | None
    ok_streak: int
    last_measured_at: datetime


@dataclass(frozen=True)
class Transition:
    action: AlertAction
    state: OpenAlertState | None


def clears_band(value: float, comparator: Comparator, threshold: float, band_pct: float) -> bool:
    """True when ``value`` sits on the compliant side of ``threshold`` by at least ``band_pct`` percent."""
    margin = abs(threshold) * band_pct / 100.0
    if comparator == Comparator.LE:
        return value <= threshold - margin
    if comparator == Comparator.LT:
        return value < threshold - margin
    if comparator == Comparator.GE:
        return value >= threshold + margin
    return value > threshold + margin


def _breach_state(evaluation: Evaluation, observed_value: float, measured_at: datetime) -> OpenAlertState:
    rule = evaluation.matched_rule
    if rule is None:
        raise ValueError("breach evaluation without a matched rule")
    return OpenAlertState(
        severity=rule.severity,
        comparator=rule.comparator,
        threshold_value=rule.value,
        observed_value=observed_value,
        load_band=rule.load_band,
        ok_streak=0,
        last_measured_at=measured_at,
    )


def next_transition(
    current: OpenAlertState | None,
    evaluation: Evaluation,
    observed_value: float,
    measured_at: datetime,
    policy: AlertPolicy,
    *,
    not_before: datetime | None = None,
) -> Transition:
    """Apply one evaluation to the alert state of a single key.

    ``current`` is the open alert of the key, or ``None`` when the key has
    no open alert. ``not_before`` is the latest sample time the key has
    already applied when no alert is open (the last cleared alert's mark).
    Samples at or before the applied time are replays or out of order and
    are ignored. The returned state is what must be stored on the open
    row; for CLEARED it is the final state of the row being closed.
    """
    if current is None:
        if not_before is not None and measured_at <= not_before:
            return Transition(action=AlertAction.IGNORED_STALE, state=None)
        if not evaluation.is_breach:
            return Transition(action=AlertAction.NOOP, state=None)
        return Transition(
            action=AlertAction.OPENED,
            state=_breach_state(evaluation, observed_value, measured_at),
        )

    if measured_at <= current.last_measured_at:
        return Transition(action=AlertAction.IGNORED_STALE, state=current)

    if evaluation.is_breach:
        updated = _breach_state(evaluation, observed_value, measured_at)
        previous_rank = severity_rank(current.severity)
        new_rank = severity_rank(updated.severity)
        if new_rank > previous_rank:
            action = AlertAction.ESCALATED
        elif new_rank < previous_rank:
            action = AlertAction.DEESCALATED
        else:
            action = AlertAction.UPDATED
        return Transition(action=action, state=updated)

    # The margin is taken from the nearest compliant boundary of this sample,
    # not from the possibly looser rule the alert was raised on.
    boundary = evaluation.boundary_rule
    if boundary is not None:
        qualifies = clears_band(observed_value, boundary.comparator, boundary.value, policy.clear_band_pct)
    else:
        qualifies = clears_band(observed_value, current.comparator, current.threshold_value, policy.clear_band_pct)
    streak = current.ok_streak + 1 if qualifies else 0
    holding = replace(current, ok_streak=streak, last_measured_at=measured_at)
    if streak >= policy.clear_ok_samples:
        return Transition(action=AlertAction.CLEARED, state=holding)
    return Transition(action=AlertAction.HOLDING, state=holding)
