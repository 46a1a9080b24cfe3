from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from sustainwatch.api.deps import get_current_claims, require_perm
from sustainwatch.domain.models import (
    FrameworkPresetRead,
    FrameworkRead,
    PueMode,
    SiteFrameworksRead,
    SiteFrameworksWrite,
)
from sustainwatch.domain.permissions import PERM_FRAMEWORK_READ, PERM_FRAMEWORK_WRITE
from sustainwatch.infra.audit import set_audit_context
from sustainwatch.services.framework_service import (
    ConflictError,
    FrameworkService,
    NotFoundError,
    ValidationError,
)

router = APIRouter()
assignment_router = APIRouter()


def get_framework_service() -> FrameworkService:
    return FrameworkService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[FrameworkService, Depends(get_framework_service)]


def _handle_framework_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    raise exc


@router.get(
    "",
    response_model=list[FrameworkRead],
    dependencies=[Depends(require_perm(PERM_FRAMEWORK_READ))],
)
def list_frameworks(service: Service) -> list[FrameworkRead]:
    return [FrameworkRead.model_validate(item) for item in service.list_frameworks()]


@router.get(
    "/{framework_code}/preset",
    response_model=FrameworkPresetRead,
    dependencies=[Depends(require_perm(PERM_FRAMEWORK_READ))],
)
def get_framework_preset(
    framework_code: str,
    service: Service,
    pue_mode: PueMode | None = None,
) -> FrameworkPresetRead:
    try:
        return service.preset(framework_code, pue_mode)
    except NotFoundError as exc:
        _handle_framework_error(exc)
        raise


@assignment_router.get(
    "/{site_id}",
    response_model=SiteFrameworksRead,
    dependencies=[Depends(require_perm(PERM_FRAMEWORK_READ))],
)
def get_site_frameworks(site_id: str, claims: Claims, service: Service) -> SiteFrameworksRead:
    try:
        return service.get_assignments(claims["tenant_id"], site_id)
    except NotFoundError as exc:
        _handle_framework_error(exc)
        raise


@assignment_router.put(
    "/{site_id}",
    response_model=SiteFrameworksRead,
    dependencies=[Depends(require_perm(PERM_FRAMEWORK_WRITE))],
)
def set_site_frameworks(
    site_id: str,
    payload: SiteFrameworksWrite,
    request: Request,
    claims: Claims,
    service: Service,
) -> SiteFrameworksRead:
    set_audit_context(
        request,
        action="site_frameworks.replace",
        resource=f"site:{site_id}",
        detail={"what": {"framework_codes": [item.framework_code for item in payload.assignments]}},
    )
    try:
        return service.set_assignments(claims["tenant_id"], site_id, claims["sub"], payload)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_framework_error(exc)
        raise
