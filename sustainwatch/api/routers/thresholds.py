from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from sustainwatch.api.deps import get_current_claims, require_perm
from sustainwatch.domain.models import PresetApplyRequest, ThresholdSetRead, ThresholdSetWrite
from sustainwatch.domain.permissions import PERM_THRESHOLD_READ, PERM_THRESHOLD_WRITE
from sustainwatch.infra.audit import set_audit_context
from sustainwatch.services.threshold_service import (
    ConflictError,
    NotFoundError,
    ThresholdService,
    ValidationError,
)

router = APIRouter()


def get_threshold_service() -> ThresholdService:
    return ThresholdService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[ThresholdService, Depends(get_threshold_service)]


def _handle_threshold_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    raise exc


@router.get(
    "",
    response_model=ThresholdSetRead,
    dependencies=[Depends(require_perm(PERM_THRESHOLD_READ))],
)
def get_thresholds(
    site_id: str,
    framework_code: str,
    claims: Claims,
    service: Service,
) -> ThresholdSetRead:
    try:
        return service.get_thresholds(claims["tenant_id"], site_id, framework_code)
    except NotFoundError as exc:
        _handle_threshold_error(exc)
        raise


@router.put(
    "",
    response_model=ThresholdSetRead,
    dependencies=[Depends(require_perm(PERM_THRESHOLD_WRITE))],
)
def replace_thresholds(
    payload: ThresholdSetWrite,
    request: Request,
    claims: Claims,
    service: Service,
) -> ThresholdSetRead:
    set_audit_context(
        request,
        action="thresholds.replace",
        resource=f"site:{payload.site_id}",
        detail={"what": {"framework_code": payload.framework_code, "rule_count": len(payload.rules)}},
    )
    try:
        return service.replace_thresholds(claims["tenant_id"], claims["sub"], payload)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_threshold_error(exc)
        raise


@router.post(
    "/preset",
    response_model=ThresholdSetRead,
    dependencies=[Depends(require_perm(PERM_THRESHOLD_WRITE))],
)
def apply_threshold_preset(
    payload: PresetApplyRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> ThresholdSetRead:
    set_audit_context(
        request,
        action="thresholds.apply_preset",
        resource=f"site:{payload.site_id}",
        detail={"what": {"framework_code": payload.framework_code, "pue_mode": payload.pue_mode}},
    )
    try:
        return service.apply_preset(claims["tenant_id"], claims["sub"], payload)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_threshold_error(exc)
        raise
