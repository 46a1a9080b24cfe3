from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from sustainwatch.domain.alert_lifecycle import (
    AlertPolicy,
    OpenAlertState,
    Transition,
    can_transition,
    clears_band,
    next_transition,
)
from sustainwatch.domain.evaluator import Evaluation, Sample, evaluate
from sustainwatch.domain.models import (
    AlertAction,
    AlertSeverity,
    AlertStatus,
    Comparator,
    Indicator,
    Severity,
    ThresholdRule,
)

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)
WARN_RULE = ThresholdRule(indicator=Indicator.PUE, comparator=Comparator.LE, value=1.35, severity=AlertSeverity.WARN)
CRIT_RULE = ThresholdRule(indicator=Indicator.PUE, comparator=Comparator.LE, value=1.40, severity=AlertSeverity.CRIT)
RULES = [WARN_RULE, CRIT_RULE]
POLICY = AlertPolicy(clear_ok_samples=3, clear_band_pct=2.0)


def _eval(value: float) -> Evaluation:
    return evaluate(Sample(Indicator.PUE, value), RULES)


def _step(state: OpenAlertState | None, value: float, minutes: int) -> Transition:
    return next_transition(state, _eval(value), value, T0 + timedelta(minutes=minutes), POLICY)


def test_ok_without_open_alert_is_noop() -> None:
    transition = _step(None, 1.2, 0)

    assert transition.action == AlertAction.NOOP
    assert transition.state is None


def test_breach_opens_alert_with_rule_snapshot() -> None:
    transition = _step(None, 1.37, 0)

    assert transition.action == AlertAction.OPENED
    assert transition.state is not None
    assert transition.state.severity == AlertSeverity.WARN
    assert transition.state.threshold_value == 1.35
    assert transition.state.observed_value == 1.37
    assert transition.state.last_measured_at == T0


def test_escalate_then_deescalate_in_place() -> None:
    opened = _step(None, 1.37, 0).state
    escalated = _step(opened, 1.45, 1)
    assert escalated.action == AlertAction.ESCALATED
    assert escalated.state.severity == AlertSeverity.CRIT
    assert escalated.state.threshold_value == 1.40

    deescalated = _step(escalated.state, 1.36, 2)
    assert deescalated.action == AlertAction.DEESCALATED
    assert deescalated.state.severity == AlertSeverity.WARN

    same = _step(deescalated.state, 1.38, 3)
    assert same.action == AlertAction.UPDATED
    assert same.state.observed_value == 1.38


def test_single_ok_sample_does_not_clear() -> None:
    opened = _step(None, 1.37, 0).state

    transition = _step(opened, 1.2, 1)

    assert transition.action == AlertAction.HOLDING
    assert transition.state.ok_streak == 1
    assert transition.state.severity == AlertSeverity.WARN
    assert transition.state.observed_value == 1.37


def test_clears_after_consecutive_ok_samples_outside_band() -> None:
    state = _step(None, 1.37, 0).state
    actions = []
    for minute in range(1, 4):
        transition = _step(state, 1.2, minute)
        actions.append(transition.action)
        state = transition.state

    assert actions == [AlertAction.HOLDING, AlertAction.HOLDING, AlertAction.CLEARED]


def test_ok_inside_hysteresis_band_resets_streak() -> None:
    state = _step(None, 1.37, 0).state
    state = _step(state, 1.2, 1).state
    state = _step(state, 1.2, 2).state
    assert state.ok_streak == 2

    # 1.34 is compliant but within 2% of 1.35.
    inside = _step(state, 1.34, 3)
    assert inside.action == AlertAction.HOLDING
    assert inside.state.ok_streak == 0


def test_breach_resets_ok_streak() -> None:
    state = _step(None, 1.37, 0).state
    state = _step(state, 1.2, 1).state

    transition = _step(state, 1.36, 2)

    assert transition.action == AlertAction.UPDATED
    assert transition.state.ok_streak == 0


def test_out_of_order_sample_is_ignored() -> None:
    state = _step(None, 1.37, 10).state

    transition = _step(state, 1.2, 5)

    assert transition.action == AlertAction.IGNORED_STALE
    assert transition.state == state


def test_single_sample_policy_clears_immediately() -> None:
    policy = AlertPolicy(clear_ok_samples=1, clear_band_pct=0.0)
    opened = next_transition(None, _eval(1.37), 1.37, T0, policy).state

    transition = next_transition(opened, _eval(1.35), 1.35, T0 + timedelta(minutes=1), policy)

    assert transition.action == AlertAction.CLEARED


@pytest.mark.parametrize(
    ("value", "comparator", "threshold", "expected"),
    [
        (1.32, Comparator.LE, 1.35, True),
        (1.33, Comparator.LE, 1.35, False),
        (1.03, Comparator.GE, 1.0, True),
        (1.01, Comparator.GE, 1.0, False),
    ],
)
def test_clears_band(value: float, comparator: Comparator, threshold: float, expected: bool) -> None:
    assert clears_band(value, comparator, threshold, 2.0) is expected


def test_policy_rejects_invalid_values() -> None:
    with pytest.raises(ValueError):
        AlertPolicy(clear_ok_samples=0)
    with pytest.raises(ValueError):
        AlertPolicy(clear_band_pct=-1.0)


def test_policy_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALERT_CLEAR_OK_SAMPLES", "5")
    monkeypatch.setenv("ALERT_CLEAR_BAND_PCT", "1.5")

    assert AlertPolicy.from_env() == AlertPolicy(clear_ok_samples=5, clear_band_pct=1.5)


def test_cleared_alerts_are_terminal() -> None:
    assert can_transition(AlertStatus.OPEN, AlertStatus.CLEARED)
    assert not can_transition(AlertStatus.CLEARED, AlertStatus.OPEN)


def test_breach_evaluation_requires_matched_rule() -> None:
    with pytest.raises(ValueError):
        next_transition(None, Evaluation(severity=Severity.WARN), 1.5, T0, POLICY)


def test_samples_up_to_last_cleared_mark_are_ignored() -> None:
    cleared_at = T0 + timedelta(minutes=15)

    late = next_transition(None, _eval(1.45), 1.45, T0 + timedelta(minutes=2), POLICY, not_before=cleared_at)
    replay = next_transition(None, _eval(1.45), 1.45, cleared_at, POLICY, not_before=cleared_at)
    fresh = next_transition(None, _eval(1.45), 1.45, cleared_at + timedelta(minutes=1), POLICY, not_before=cleared_at)

    assert late == Transition(action=AlertAction.IGNORED_STALE, state=None)
    assert replay.action == AlertAction.IGNORED_STALE
    assert fresh.action == AlertAction.OPENED


def test_replayed_sample_does_not_extend_ok_streak() -> None:
    state = _step(None, 1.37, 0).state
    state = _step(state, 1.2, 1).state

    replay = _step(state, 1.2, 1)

    assert replay.action == AlertAction.IGNORED_STALE
    assert replay.state.ok_streak == 1


def test_crit_alert_band_is_measured_from_nearest_rule() -> None:
    state = _step(None, 1.45, 0).state
    assert state.threshold_value == 1.40

    # 1.34 is well under the CRIT line but within 2% of the WARN line.
    transition = _step(state, 1.34, 1)

    assert transition.action == AlertAction.HOLDING
    assert transition.state.ok_streak == 0
