from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from sustainwatch.api.deps import get_current_claims, require_perm
from sustainwatch.domain.models import ReportSummaryRead, SiteStatusRead
from sustainwatch.domain.permissions import PERM_REPORTING_READ
from sustainwatch.services.reporting_service import NotFoundError, ReportingService, ValidationError

router = APIRouter()


def get_reporting_service() -> ReportingService:
    return ReportingService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[ReportingService, Depends(get_reporting_service)]
FromTs = Annotated[datetime | None, Query(alias="from")]
ToTs = Annotated[datetime | None, Query(alias="to")]


def _handle_reporting_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    raise exc


@router.get(
    "/summary",
    response_model=ReportSummaryRead,
    dependencies=[Depends(require_perm(PERM_REPORTING_READ))],
)
def report_summary(
    site_id: str,
    framework_code: str,
    claims: Claims,
    service: Service,
    from_ts: FromTs = None,
    to_ts: ToTs = None,
) -> ReportSummaryRead:
    try:
        return service.summarize(claims["tenant_id"], site_id, framework_code, from_ts, to_ts)
    except (NotFoundError, ValidationError) as exc:
        _handle_reporting_error(exc)
        raise


@router.get(
    "/site-status",
    response_model=SiteStatusRead,
    dependencies=[Depends(require_perm(PERM_REPORTING_READ))],
)
def report_site_status(
    site_id: str,
    claims: Claims,
    service: Service,
    from_ts: FromTs = None,
    to_ts: ToTs = None,
) -> SiteStatusRead:
    try:
        return service.site_status(claims["tenant_id"], site_id, from_ts, to_ts)
    except (NotFoundError, ValidationError) as exc:
        _handle_reporting_error(exc)
        raise
