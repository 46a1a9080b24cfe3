from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from sustainwatch.domain.evaluator import Evaluation, Sample, evaluate
from sustainwatch.domain.models import (
    AlertTransitionRead,
    IngestResult,
    Indicator,
    LatestReading,
    LatestReadingsRead,
    MeasurementIngest,
    MeasurementRecord,
    as_utc,
    now_utc,
)
from sustainwatch.domain.rulesets import INDICATOR_ORDER
from sustainwatch.infra import redis_state
from sustainwatch.infra.db import get_engine
from sustainwatch.infra.events import event_bus
from sustainwatch.services.alert_service import AlertKey, AlertService
from sustainwatch.services.alert_service import ConflictError as AlertConflictError
from sustainwatch.services.framework_service import FrameworkService
from sustainwatch.services.site_service import get_scoped_site
from sustainwatch.services.threshold_service import ThresholdService

logger = logging.getLogger(__name__)

ALERT_CONFLICT_RETRIES = 2


class IngestError(Exception):
    pass


class NotFoundError(IngestError):
    pass


class ConflictError(IngestError):
    pass


class IngestService:
    def __init__(
        self,
        *,
        alert_service: AlertService | None = None,
        framework_service: FrameworkService | None = None,
        threshold_service: ThresholdService | None = None,
    ) -> None:
        self._alert_service = alert_service or AlertService()
        self._framework_service = framework_service or FrameworkService()
        self._threshold_service = threshold_service or ThresholdService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _cache_latest(self, tenant_id: str, site_id: str, readings: list[LatestReading]) -> None:
        cached = self._read_latest(tenant_id, site_id)
        merged = {item.indicator: item for item in cached.readings}
        for reading in readings:
            previous = merged.get(reading.indicator)
            if previous is None or as_utc(previous.measured_at) <= reading.measured_at:
                merged[reading.indicator] = reading
        snapshot = LatestReadingsRead(
            site_id=site_id,
            readings=sorted(merged.values(), key=lambda item: INDICATOR_ORDER[item.indicator]),
        )
        redis_state.write_snapshot(redis_state.latest_readings_key(tenant_id, site_id), snapshot.model_dump_json())

    def _read_latest(self, tenant_id: str, site_id: str) -> LatestReadingsRead:
        raw = redis_state.read_snapshot(redis_state.latest_readings_key(tenant_id, site_id))
        if raw is None:
            return LatestReadingsRead(site_id=site_id, readings=[])
        return LatestReadingsRead.model_validate_json(raw)

    def _apply_with_retry(
        self,
        key: AlertKey,
        sample: Sample,
        evaluation: Evaluation,
        measured_at: datetime,
    ) -> AlertTransitionRead:
        attempt = 0
        while True:
            try:
                return self._alert_service.apply_evaluation(key, evaluation, sample.value, measured_at)
            except AlertConflictError as exc:
                attempt += 1
                if attempt > ALERT_CONFLICT_RETRIES:
                    raise ConflictError(str(exc)) from exc
                logger.warning(
                    "alert conflict for site %s framework %s %s, retry %d",
                    key.site_id,
                    key.framework_code,
                    key.indicator,
                    attempt,
                )

    def _store_readings(self, tenant_id: str, payload: MeasurementIngest, measured_at: datetime) -> list[Indicator]:
        """Persist the readings not stored yet and return their indicators.

        A replayed request (for example a client retry after a 409) finds its
        readings already stored and adds nothing.
        """
        with self._session() as session:
            if get_scoped_site(session, tenant_id, payload.site_id) is None:
                raise NotFoundError("site not found")
            stored = set(
                session.exec(
                    select(MeasurementRecord.indicator)
                    .where(MeasurementRecord.tenant_id == tenant_id)
                    .where(MeasurementRecord.site_id == payload.site_id)
                    .where(MeasurementRecord.measured_at == measured_at)
                ).all()
            )
            fresh = [reading for reading in payload.measurements if reading.indicator not in stored]
            for reading in fresh:
                session.add(
                    MeasurementRecord(
                        tenant_id=tenant_id,
                        site_id=payload.site_id,
                        indicator=reading.indicator,
                        value=reading.value,
                        it_load_pct=payload.it_load_pct,
                        measured_at=measured_at,
                    )
                )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("measurement is being ingested concurrently") from exc

        if len(fresh) < len(payload.measurements):
            logger.info(
                "site %s: %d of %d readings at %s were already stored",
                payload.site_id,
                len(payload.measurements) - len(fresh),
                len(payload.measurements),
                measured_at.isoformat(),
            )
        return [reading.indicator for reading in fresh]

    def ingest(self, tenant_id: str, payload: MeasurementIngest) -> IngestResult:
        measured_at = as_utc(payload.measured_at) if payload.measured_at is not None else now_utc()

        stored_indicators = self._store_readings(tenant_id, payload, measured_at)

        self._cache_latest(
            tenant_id,
            payload.site_id,
            [
                LatestReading(
                    indicator=reading.indicator,
                    value=reading.value,
                    it_load_pct=payload.it_load_pct,
                    measured_at=measured_at,
                )
                for reading in payload.measurements
            ],
        )
        if stored_indicators:
            event_bus.publish_dict(
                "measurement.ingested",
                tenant_id,
                {
                    "site_id": payload.site_id,
                    "measured_at": measured_at.isoformat(),
                    "it_load_pct": payload.it_load_pct,
                    "indicators": stored_indicators,
                },
            )

        transitions: list[AlertTransitionRead] = []
        for assignment in self._framework_service.resolve_active_frameworks(tenant_id, payload.site_id):
            rules = self._threshold_service.resolve_rules(tenant_id, payload.site_id, assignment.framework_code)
            for reading in payload.measurements:
                sample = Sample(
                    indicator=reading.indicator,
                    value=reading.value,
                    it_load_pct=payload.it_load_pct,
                )
                key = AlertKey(
                    tenant_id=tenant_id,
                    site_id=payload.site_id,
                    framework_code=assignment.framework_code,
                    indicator=reading.indicator,
                )
                transitions.append(self._apply_with_retry(key, sample, evaluate(sample, rules), measured_at))

        return IngestResult(
            site_id=payload.site_id,
            ingested=len(stored_indicators),
            measured_at=measured_at,
            transitions=transitions,
        )

    def get_latest(self, tenant_id: str, site_id: str) -> LatestReadingsRead:
        with self._session() as session:
            if get_scoped_site(session, tenant_id, site_id) is None:
                raise NotFoundError("site not found")
        return self._read_latest(tenant_id, site_id)
