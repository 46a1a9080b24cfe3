from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from sustainwatch.api.deps import get_current_claims, require_perm
from sustainwatch.domain.models import IngestResult, LatestReadingsRead, MeasurementIngest
from sustainwatch.domain.permissions import PERM_METRICS_READ, PERM_METRICS_WRITE
from sustainwatch.infra.audit import set_audit_context
from sustainwatch.services.ingest_service import ConflictError, IngestService, NotFoundError

router = APIRouter()


def get_ingest_service() -> IngestService:
    return IngestService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IngestService, Depends(get_ingest_service)]


def _handle_ingest_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post(
    "",
    response_model=IngestResult,
    dependencies=[Depends(require_perm(PERM_METRICS_WRITE))],
)
def ingest_measurements(
    payload: MeasurementIngest,
    request: Request,
    claims: Claims,
    service: Service,
) -> IngestResult:
    set_audit_context(
        request,
        action="metrics.ingest",
        resource=f"site:{payload.site_id}",
        detail={"what": {"indicators": [item.indicator for item in payload.measurements]}},
    )
    try:
        return service.ingest(claims["tenant_id"], payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_ingest_error(exc)
        raise


@router.get(
    "/sites/{site_id}/latest",
    response_model=LatestReadingsRead,
    dependencies=[Depends(require_perm(PERM_METRICS_READ))],
)
def get_latest_readings(site_id: str, claims: Claims, service: Service) -> LatestReadingsRead:
    try:
        return service.get_latest(claims["tenant_id"], site_id)
    except NotFoundError as exc:
        _handle_ingest_error(exc)
        raise
