from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from sustainwatch.domain.models import (
    Framework,
    PresetApplyRequest,
    PueMode,
    ThresholdRule,
    ThresholdSetRead,
    ThresholdSetRecord,
    ThresholdSetWrite,
    now_utc,
)
from sustainwatch.domain.rulesets import FRAMEWORK_PRESETS, build_preset_rules, effective_pue_mode, sort_rules
from sustainwatch.infra.db import get_engine
from sustainwatch.infra.events import event_bus
from sustainwatch.services.site_service import get_scoped_site

logger = logging.getLogger(__name__)


class ThresholdError(Exception):
    pass


class NotFoundError(ThresholdError):
    pass


class ConflictError(ThresholdError):
    pass


class ValidationError(ThresholdError):
    pass


class ThresholdService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    @staticmethod
    def _get_scoped_set(
        session: Session,
        tenant_id: str,
        site_id: str,
        framework_code: str,
    ) -> ThresholdSetRecord | None:
        return session.exec(
            select(ThresholdSetRecord)
            .where(ThresholdSetRecord.tenant_id == tenant_id)
            .where(ThresholdSetRecord.site_id == site_id)
            .where(ThresholdSetRecord.framework_code == framework_code)
        ).first()

    @staticmethod
    def _load_rules(record: ThresholdSetRecord) -> list[ThresholdRule]:
        return [ThresholdRule.model_validate(item) for item in record.rules]

    @staticmethod
    def _preset_read(site_id: str, framework_code: str) -> ThresholdSetRead:
        mode = effective_pue_mode(framework_code, None)
        return ThresholdSetRead(
            site_id=site_id,
            framework_code=framework_code,
            rules=build_preset_rules(framework_code, mode),
            pue_mode=mode if framework_code in FRAMEWORK_PRESETS else None,
            is_preset=True,
        )

    def _to_read(self, record: ThresholdSetRecord) -> ThresholdSetRead:
        return ThresholdSetRead(
            site_id=record.site_id,
            framework_code=record.framework_code,
            rules=self._load_rules(record),
            pue_mode=record.pue_mode,
            version=record.version,
            is_preset=False,
            updated_at=record.updated_at,
        )

    def get_thresholds(self, tenant_id: str, site_id: str, framework_code: str) -> ThresholdSetRead:
        """Return the saved rule set, or the framework's default preset when none is saved."""
        with self._session() as session:
            if get_scoped_site(session, tenant_id, site_id) is None:
                raise NotFoundError("site not found")
            record = self._get_scoped_set(session, tenant_id, site_id, framework_code)
        if record is None:
            return self._preset_read(site_id, framework_code)
        return self._to_read(record)

    def resolve_rules(self, tenant_id: str, site_id: str, framework_code: str) -> list[ThresholdRule]:
        with self._session() as session:
            record = self._get_scoped_set(session, tenant_id, site_id, framework_code)
        if record is None:
            return build_preset_rules(framework_code, effective_pue_mode(framework_code, None))
        return self._load_rules(record)

    def _store(
        self,
        tenant_id: str,
        actor_id: str | None,
        site_id: str,
        framework_code: str,
        rules: list[ThresholdRule],
        pue_mode: PueMode | None,
    ) -> ThresholdSetRead:
        with self._session() as session:
            if get_scoped_site(session, tenant_id, site_id) is None:
                raise NotFoundError("site not found")
            if session.get(Framework, framework_code) is None:
                raise NotFoundError("framework not found")

            serialized = [rule.model_dump(mode="json") for rule in sort_rules(rules)]
            record = self._get_scoped_set(session, tenant_id, site_id, framework_code)
            if record is None:
                record = ThresholdSetRecord(
                    tenant_id=tenant_id,
                    site_id=site_id,
                    framework_code=framework_code,
                    rules=serialized,
                    pue_mode=pue_mode,
                    updated_by=actor_id,
                )
            else:
                record.rules = serialized
                record.pue_mode = pue_mode
                record.version += 1
                record.updated_by = actor_id
                record.updated_at = now_utc()
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("threshold set was replaced concurrently") from exc
            session.refresh(record)

        logger.info(
            "thresholds for site %s framework %s replaced, version %d with %d rules",
            site_id,
            framework_code,
            record.version,
            len(serialized),
        )
        event_bus.publish_dict(
            "thresholds.replaced",
            tenant_id,
            {
                "site_id": site_id,
                "framework_code": framework_code,
                "version": record.version,
                "rule_count": len(serialized),
                "pue_mode": pue_mode,
            },
            actor_id=actor_id,
        )
        return self._to_read(record)

    def replace_thresholds(
        self,
        tenant_id: str,
        actor_id: str | None,
        payload: ThresholdSetWrite,
    ) -> ThresholdSetRead:
        if not payload.rules:
            raise ValidationError("rules must not be empty")
        return self._store(
            tenant_id,
            actor_id,
            payload.site_id,
            payload.framework_code,
            list(payload.rules),
            payload.pue_mode,
        )

    def apply_preset(
        self,
        tenant_id: str,
        actor_id: str | None,
        payload: PresetApplyRequest,
    ) -> ThresholdSetRead:
        if payload.framework_code not in FRAMEWORK_PRESETS:
            raise ValidationError("no preset available for this framework")
        mode = effective_pue_mode(payload.framework_code, payload.pue_mode)
        if payload.pue_mode is not None and mode != payload.pue_mode:
            logger.info(
                "framework %s has no load bands, applying %s instead of %s",
                payload.framework_code,
                mode,
                payload.pue_mode,
            )
        rules = build_preset_rules(payload.framework_code, mode)
        return self._store(
            tenant_id,
            actor_id,
            payload.site_id,
            payload.framework_code,
            rules,
            mode,
        )
