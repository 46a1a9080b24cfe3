from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from sustainwatch.domain.models import Site, SiteCreate
from sustainwatch.infra.db import get_engine

logger = logging.getLogger(__name__)


class SiteError(Exception):
    pass


class NotFoundError(SiteError):
    pass


class ConflictError(SiteError):
    pass


def get_scoped_site(session: Session, tenant_id: str, site_id: str) -> Site | None:
    return session.exec(
        select(Site)
        .where(Site.tenant_id == tenant_id)
        .where(Site.site_id == site_id)
    ).first()


class SiteService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_site(self, tenant_id: str, payload: SiteCreate) -> Site:
        with self._session() as session:
            row = Site(
                tenant_id=tenant_id,
                name=payload.name.strip(),
                country=payload.country.strip().upper(),
                timezone=payload.timezone,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("site name already exists") from exc
            session.refresh(row)
        logger.info("site %s created as %s", row.name, row.site_id)
        return row

    def list_sites(self, tenant_id: str, *, country: str | None = None) -> list[Site]:
        with self._session() as session:
            statement = select(Site).where(Site.tenant_id == tenant_id)
            if country is not None:
                statement = statement.where(Site.country == country.strip().upper())
            rows = list(session.exec(statement).all())
            return sorted(rows, key=lambda item: item.created_at, reverse=True)

    def get_site(self, tenant_id: str, site_id: str) -> Site:
        with self._session() as session:
            row = get_scoped_site(session, tenant_id, site_id)
            if row is None:
                raise NotFoundError("site not found")
            return row
