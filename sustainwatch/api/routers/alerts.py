from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from sustainwatch.api.deps import get_current_claims, require_perm
from sustainwatch.domain.models import AlertRead, AlertStatus
from sustainwatch.domain.permissions import PERM_ALERT_READ
from sustainwatch.services.alert_service import AlertService, NotFoundError

router = APIRouter()


def get_alert_service() -> AlertService:
    return AlertService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[AlertService, Depends(get_alert_service)]


def _handle_alert_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    raise exc


@router.get(
    "",
    response_model=list[AlertRead],
    dependencies=[Depends(require_perm(PERM_ALERT_READ))],
)
def list_alerts(
    site_id: str,
    framework_code: str,
    claims: Claims,
    service: Service,
    alert_status: Annotated[AlertStatus | None, Query(alias="status")] = None,
) -> list[AlertRead]:
    rows = service.list_alerts(
        claims["tenant_id"],
        site_id=site_id,
        framework_code=framework_code,
        status=alert_status,
    )
    return [AlertRead.model_validate(item) for item in rows]


@router.get(
    "/{alert_id}",
    response_model=AlertRead,
    dependencies=[Depends(require_perm(PERM_ALERT_READ))],
)
def get_alert(alert_id: str, claims: Claims, service: Service) -> AlertRead:
    try:
        row = service.get_alert(claims["tenant_id"], alert_id)
        return AlertRead.model_validate(row)
    except NotFoundError as exc:
        _handle_alert_error(exc)
        raise
