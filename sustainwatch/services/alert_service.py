from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from sustainwatch.domain.alert_lifecycle import (
    AlertPolicy,
    OpenAlertState,
    can_transition,
    next_transition,
)
from sustainwatch.domain.evaluator import Evaluation
from sustainwatch.domain.models import (
    AlertAction,
    AlertRecord,
    AlertStatus,
    AlertTransitionRead,
    Indicator,
    as_utc,
)
from sustainwatch.infra.db import get_engine
from sustainwatch.infra.events import event_bus

logger = logging.getLogger(__name__)

PUBLISHED_ACTIONS: dict[AlertAction, str] = {
    AlertAction.OPENED: "alert.opened",
    AlertAction.ESCALATED: "alert.escalated",
    AlertAction.DEESCALATED: "alert.deescalated",
    AlertAction.CLEARED: "alert.cleared",
}


class AlertError(Exception):
    pass


class NotFoundError(AlertError):
    pass


class ConflictError(AlertError):
    """Another writer changed the alert key first; the caller may retry."""


@dataclass(frozen=True)
class AlertKey:
    tenant_id: str
    site_id: str
    framework_code: str
    indicator: Indicator


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[AlertKey, Lock] = {}

    def _lock_for(self, key: AlertKey) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: AlertKey) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield


alert_key_locks = KeyedLocks()


class AlertService:
    def __init__(
        self,
        *,
        policy: AlertPolicy | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._policy = policy or AlertPolicy.from_env()
        self._locks = locks or alert_key_locks

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    @staticmethod
    def _find_open(session: Session, key: AlertKey) -> AlertRecord | None:
        return session.exec(
            select(AlertRecord)
            .where(AlertRecord.tenant_id == key.tenant_id)
            .where(AlertRecord.site_id == key.site_id)
            .where(AlertRecord.framework_code == key.framework_code)
            .where(AlertRecord.indicator == key.indicator)
            .where(AlertRecord.status == AlertStatus.OPEN)
        ).first()

    @staticmethod
    def _applied_mark(session: Session, key: AlertKey) -> datetime | None:
        """Latest sample time already applied to a key whose alerts are all cleared."""
        latest = session.exec(
            select(AlertRecord)
            .where(AlertRecord.tenant_id == key.tenant_id)
            .where(AlertRecord.site_id == key.site_id)
            .where(AlertRecord.framework_code == key.framework_code)
            .where(AlertRecord.indicator == key.indicator)
            .where(AlertRecord.status == AlertStatus.CLEARED)
            .order_by(col(AlertRecord.last_measured_at).desc())
        ).first()
        if latest is None:
            return None
        marks = [as_utc(latest.last_measured_at)]
        if latest.cleared_at is not None:
            marks.append(as_utc(latest.cleared_at))
        return max(marks)

    @staticmethod
    def _state_of(record: AlertRecord) -> OpenAlertState:
        return OpenAlertState(
            severity=record.severity,
            comparator=record.comparator,
            threshold_value=record.threshold_value,
            observed_value=record.observed_value,
            load_band=record.load_band,
            ok_streak=record.ok_streak,
            last_measured_at=as_utc(record.last_measured_at),
        )

    def _insert_open(
        self,
        session: Session,
        key: AlertKey,
        state: OpenAlertState,
        measured_at: datetime,
    ) -> AlertRecord:
        record = AlertRecord(
            tenant_id=key.tenant_id,
            site_id=key.site_id,
            framework_code=key.framework_code,
            indicator=key.indicator,
            severity=state.severity,
            comparator=state.comparator,
            threshold_value=state.threshold_value,
            observed_value=state.observed_value,
            load_band=state.load_band,
            status=AlertStatus.OPEN,
            raised_at=measured_at,
            ok_streak=0,
            last_measured_at=measured_at,
        )
        session.add(record)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("an open alert already exists for this key") from exc
        session.refresh(record)
        return record

    def _swap_open(
        self,
        session: Session,
        record: AlertRecord,
        state: OpenAlertState,
        status: AlertStatus,
        cleared_at: datetime | None,
    ) -> AlertRecord:
        if not can_transition(record.status, status):
            raise ConflictError(f"alert cannot move from {record.status} to {status}")
        result = session.exec(
            update(AlertRecord)
            .where(AlertRecord.alert_id == record.alert_id)
            .where(AlertRecord.revision == record.revision)
            .where(AlertRecord.status == AlertStatus.OPEN)
            .values(
                severity=state.severity,
                comparator=state.comparator,
                threshold_value=state.threshold_value,
                observed_value=state.observed_value,
                load_band=state.load_band,
                ok_streak=state.ok_streak,
                last_measured_at=state.last_measured_at,
                status=status,
                cleared_at=cleared_at,
                revision=record.revision + 1,
            )
        )
        if result.rowcount != 1:
            session.rollback()
            raise ConflictError("alert was modified by another writer")
        session.commit()
        session.refresh(record)
        return record

    def apply_evaluation(
        self,
        key: AlertKey,
        evaluation: Evaluation,
        observed_value: float,
        measured_at: datetime,
    ) -> AlertTransitionRead:
        """Advance the alert state of one key with a fresh evaluation.

        Transitions for a key are serialized in-process; the open-alert
        unique index and the revision check catch writers in other
        processes and surface as ``ConflictError``.
        """
        measured_at = as_utc(measured_at)
        with self._locks.hold(key), self._session() as session:
            record = self._find_open(session, key)
            current = self._state_of(record) if record is not None else None
            not_before = self._applied_mark(session, key) if record is None else None
            transition = next_transition(
                current,
                evaluation,
                observed_value,
                measured_at,
                self._policy,
                not_before=not_before,
            )

            if transition.action == AlertAction.IGNORED_STALE:
                logger.warning(
                    "ignoring %s sample at %s, not newer than the alert state of site %s framework %s",
                    key.indicator,
                    measured_at.isoformat(),
                    key.site_id,
                    key.framework_code,
                )
            elif transition.state is not None:
                if record is None:
                    record = self._insert_open(session, key, transition.state, measured_at)
                elif transition.action == AlertAction.CLEARED:
                    record = self._swap_open(session, record, transition.state, AlertStatus.CLEARED, measured_at)
                else:
                    record = self._swap_open(session, record, transition.state, AlertStatus.OPEN, None)

        logger.debug(
            "%s %s for site %s framework %s: %s",
            key.indicator,
            evaluation.severity,
            key.site_id,
            key.framework_code,
            transition.action,
        )
        if transition.action in PUBLISHED_ACTIONS and record is not None:
            self._publish(transition.action, record)
        return AlertTransitionRead(
            framework_code=key.framework_code,
            indicator=key.indicator,
            severity=evaluation.severity,
            action=transition.action,
            alert_id=record.alert_id if record is not None else None,
        )

    @staticmethod
    def _publish(action: AlertAction, record: AlertRecord) -> None:
        logger.info(
            "alert %s %s: site %s framework %s %s %s (threshold %s, observed %s)",
            record.alert_id,
            action.lower(),
            record.site_id,
            record.framework_code,
            record.indicator,
            record.severity,
            record.threshold_value,
            record.observed_value,
        )
        payload: dict[str, Any] = {
            "alert_id": record.alert_id,
            "site_id": record.site_id,
            "framework_code": record.framework_code,
            "indicator": record.indicator,
            "severity": record.severity,
            "status": record.status,
            "threshold_value": record.threshold_value,
            "observed_value": record.observed_value,
        }
        event_bus.publish_dict(PUBLISHED_ACTIONS[action], record.tenant_id, payload)

    def list_alerts(
        self,
        tenant_id: str,
        *,
        site_id: str,
        framework_code: str,
        status: AlertStatus | None = None,
    ) -> list[AlertRecord]:
        with self._session() as session:
            statement = (
                select(AlertRecord)
                .where(AlertRecord.tenant_id == tenant_id)
                .where(AlertRecord.site_id == site_id)
                .where(AlertRecord.framework_code == framework_code)
            )
            if status is not None:
                statement = statement.where(AlertRecord.status == status)
            rows = list(session.exec(statement).all())
            return sorted(rows, key=lambda item: as_utc(item.raised_at), reverse=True)

    def get_alert(self, tenant_id: str, alert_id: str) -> AlertRecord:
        with self._session() as session:
            record = session.exec(
                select(AlertRecord)
                .where(AlertRecord.tenant_id == tenant_id)
                .where(AlertRecord.alert_id == alert_id)
            ).first()
            if record is None:
                raise NotFoundError("alert not found")
            return record
