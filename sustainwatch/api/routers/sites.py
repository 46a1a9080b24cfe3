from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from sustainwatch.api.deps import get_current_claims, require_perm
from sustainwatch.domain.models import SiteCreate, SiteRead
from sustainwatch.domain.permissions import PERM_SITE_READ, PERM_SITE_WRITE
from sustainwatch.infra.audit import set_audit_context
from sustainwatch.services.site_service import ConflictError, NotFoundError, SiteService

router = APIRouter()


def get_site_service() -> SiteService:
    return SiteService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[SiteService, Depends(get_site_service)]


def _handle_site_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post(
    "",
    response_model=SiteRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_SITE_WRITE))],
)
def create_site(
    payload: SiteCreate,
    request: Request,
    claims: Claims,
    service: Service,
) -> SiteRead:
    set_audit_context(
        request,
        action="site.create",
        detail={"what": {"name": payload.name, "country": payload.country}},
    )
    try:
        row = service.create_site(claims["tenant_id"], payload)
        return SiteRead.model_validate(row)
    except (NotFoundError, ConflictError) as exc:
        _handle_site_error(exc)
        raise


@router.get(
    "",
    response_model=list[SiteRead],
    dependencies=[Depends(require_perm(PERM_SITE_READ))],
)
def list_sites(
    claims: Claims,
    service: Service,
    country: str | None = None,
) -> list[SiteRead]:
    rows = service.list_sites(claims["tenant_id"], country=country)
    return [SiteRead.model_validate(item) for item in rows]


@router.get(
    "/{site_id}",
    response_model=SiteRead,
    dependencies=[Depends(require_perm(PERM_SITE_READ))],
)
def get_site(site_id: str, claims: Claims, service: Service) -> SiteRead:
    try:
        row = service.get_site(claims["tenant_id"], site_id)
        return SiteRead.model_validate(row)
    except (NotFoundError, ConflictError) as exc:
        _handle_site_error(exc)
        raise
