from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from sustainwatch.domain.models import (
    Framework,
    FrameworkPresetRead,
    PueMode,
    SiteFrameworkAssignment,
    SiteFrameworkAssignmentRead,
    SiteFrameworksRead,
    SiteFrameworksWrite,
    now_utc,
)
from sustainwatch.domain.rulesets import FRAMEWORK_PRESETS, build_preset_rules, effective_pue_mode
from sustainwatch.infra.db import get_engine
from sustainwatch.infra.events import event_bus
from sustainwatch.services.site_service import get_scoped_site

logger = logging.getLogger(__name__)

FRAMEWORK_CATALOG: tuple[dict[str, str], ...] = (
    {
        "framework_code": "GMDC_SG_2024",
        "name": "GMDC Singapore 2024",
        "version": "2024",
        "jurisdiction": "SG",
        "notes": "Green Mark DC preset for Singapore.",
    },
    {
        "framework_code": "GDCR_SG_2034",
        "name": "Singapore Green DC Roadmap 2034",
        "version": "2034",
        "jurisdiction": "SG",
        "notes": "Roadmap targets at 100% IT load.",
    },
    {
        "framework_code": "CORP_DEFAULT",
        "name": "Corporate Default Baseline",
        "version": "1.0",
        "jurisdiction": "GLOBAL",
        "notes": "Slightly tighter generic corporate baseline.",
    },
    {
        "framework_code": "SLA_STRICT",
        "name": "SLA Strict Premium",
        "version": "1.0",
        "jurisdiction": "GLOBAL",
        "notes": "Strict thresholds for premium or SLA sites.",
    },
)


class FrameworkError(Exception):
    pass


class NotFoundError(FrameworkError):
    pass


class ConflictError(FrameworkError):
    pass


class ValidationError(FrameworkError):
    pass


def assignment_order_key(row: SiteFrameworkAssignment) -> tuple[int, str]:
    # Lower precedence wins; framework_code breaks ties.
    return (row.precedence, row.framework_code)


class FrameworkService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def seed_catalog(self) -> int:
        inserted = 0
        with self._session() as session:
            for entry in FRAMEWORK_CATALOG:
                if session.get(Framework, entry["framework_code"]) is not None:
                    continue
                session.add(Framework(**entry))
                inserted += 1
            session.commit()
        return inserted

    def list_frameworks(self) -> list[Framework]:
        with self._session() as session:
            rows = list(session.exec(select(Framework)).all())
            return sorted(rows, key=lambda item: item.framework_code)

    def get_framework(self, framework_code: str) -> Framework:
        with self._session() as session:
            row = session.get(Framework, framework_code)
            if row is None:
                raise NotFoundError("framework not found")
            return row

    def preset(self, framework_code: str, pue_mode: PueMode | None = None) -> FrameworkPresetRead:
        self.get_framework(framework_code)
        meta = FRAMEWORK_PRESETS.get(framework_code)
        mode = effective_pue_mode(framework_code, pue_mode)
        return FrameworkPresetRead(
            framework_code=framework_code,
            display_name=meta.display_name if meta else None,
            description=meta.description if meta else None,
            default_pue_mode=meta.default_pue_mode if meta else PueMode.STATIC,
            supports_load_aware=meta.supports_load_aware if meta else False,
            pue_mode=mode,
            rules=build_preset_rules(framework_code, mode),
        )

    def _site_rows(self, session: Session, tenant_id: str, site_id: str) -> list[SiteFrameworkAssignment]:
        rows = session.exec(
            select(SiteFrameworkAssignment)
            .where(SiteFrameworkAssignment.tenant_id == tenant_id)
            .where(SiteFrameworkAssignment.site_id == site_id)
        ).all()
        return sorted(rows, key=assignment_order_key)

    def get_assignments(self, tenant_id: str, site_id: str) -> SiteFrameworksRead:
        with self._session() as session:
            if get_scoped_site(session, tenant_id, site_id) is None:
                raise NotFoundError("site not found")
            rows = self._site_rows(session, tenant_id, site_id)
            names = {
                item.framework_code: item.name
                for item in session.exec(
                    select(Framework).where(col(Framework.framework_code).in_([row.framework_code for row in rows]))
                ).all()
            }
        active = [row for row in rows if row.is_active]
        return SiteFrameworksRead(
            site_id=site_id,
            frameworks=[
                SiteFrameworkAssignmentRead(
                    framework_code=row.framework_code,
                    framework_name=names.get(row.framework_code, row.framework_code),
                    is_active=row.is_active,
                    precedence=row.precedence,
                )
                for row in rows
            ],
            primary_framework_code=active[0].framework_code if active else None,
        )

    def set_assignments(
        self,
        tenant_id: str,
        site_id: str,
        actor_id: str | None,
        payload: SiteFrameworksWrite,
    ) -> SiteFrameworksRead:
        codes = [item.framework_code for item in payload.assignments]
        if len(set(codes)) != len(codes):
            raise ValidationError("framework_code must be unique within assignments")
        active_precedences = [item.precedence for item in payload.assignments if item.is_active]
        if len(set(active_precedences)) != len(active_precedences):
            raise ConflictError("active assignments must have distinct precedence")

        with self._session() as session:
            if get_scoped_site(session, tenant_id, site_id) is None:
                raise NotFoundError("site not found")
            known = {
                item.framework_code
                for item in session.exec(select(Framework).where(col(Framework.framework_code).in_(codes))).all()
            }
            missing = sorted(set(codes) - known)
            if missing:
                raise NotFoundError(f"unknown framework: {', '.join(missing)}")

            previous = self._site_rows(session, tenant_id, site_id)
            previously_active = {row.framework_code for row in previous if row.is_active}
            for row in previous:
                session.delete(row)
            session.flush()

            now = now_utc()
            for item in payload.assignments:
                session.add(
                    SiteFrameworkAssignment(
                        tenant_id=tenant_id,
                        site_id=site_id,
                        framework_code=item.framework_code,
                        is_active=item.is_active,
                        precedence=item.precedence,
                        updated_by=actor_id,
                        updated_at=now,
                    )
                )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("site framework assignment conflict") from exc

        now_active = {item.framework_code for item in payload.assignments if item.is_active}
        deactivated = sorted(previously_active - now_active)
        if deactivated:
            logger.info(
                "site %s deactivated %s; open alerts are kept and no longer evaluated",
                site_id,
                ", ".join(deactivated),
            )
        event_bus.publish_dict(
            "site_frameworks.replaced",
            tenant_id,
            {
                "site_id": site_id,
                "active": sorted(now_active),
                "deactivated": deactivated,
            },
            actor_id=actor_id,
        )
        return self.get_assignments(tenant_id, site_id)

    def resolve_active_frameworks(self, tenant_id: str, site_id: str) -> list[SiteFrameworkAssignment]:
        with self._session() as session:
            rows = self._site_rows(session, tenant_id, site_id)
        return [row for row in rows if row.is_active]

    def primary_framework(self, tenant_id: str, site_id: str) -> SiteFrameworkAssignment | None:
        active = self.resolve_active_frameworks(tenant_id, site_id)
        return active[0] if active else None
