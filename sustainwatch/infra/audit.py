from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from sustainwatch.domain.models import AuditLog, now_utc
from sustainwatch.infra.db import engine

REQUEST_ID_HEADER = "X-Request-ID"
AUDITED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
AUDIT_CONTEXT_STATE_KEY = "_audit_context"
SYSTEM_TENANT = "system"

logger = logging.getLogger(__name__)


def write_audit_log(
    *,
    tenant_id: str,
    actor_id: str | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> AuditLog:
    entry = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        resource=resource,
        method=method,
        status_code=status_code,
        detail=detail or {},
    )
    with Session(engine, expire_on_commit=False) as session:
        session.add(entry)
        session.commit()
    return entry


def _merge_detail(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        current = merged.get(key)
        merged[key] = _merge_detail(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
    return merged


def outcome_for(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in (401, 403):
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


def _audit_context(request: Request) -> dict[str, Any]:
    raw = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
    return dict(raw) if isinstance(raw, dict) else {}


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    """Attach the business meaning of a write to the request so the middleware can record it."""
    context = _audit_context(request)
    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource
    if detail:
        context["detail"] = _merge_detail(context.get("detail") or {}, detail)
    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


class AuditMiddleware(BaseHTTPMiddleware):
    """Tags every request with a request id and records configuration and ingest writes."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        if request.method not in AUDITED_METHODS:
            return response
        self._record(request, response.status_code, request_id)
        return response

    def _record(self, request: Request, status_code: int, request_id: str) -> None:
        context = _audit_context(request)
        claims = getattr(request.state, "claims", None) or {}
        tenant_id = claims.get("tenant_id") or SYSTEM_TENANT
        actor_id = claims.get("sub")
        path = request.url.path
        route = request.scope.get("route")

        detail: dict[str, Any] = {
            "request": {
                "request_id": request_id,
                "route": getattr(route, "path", path),
                "client_ip": request.client.host if request.client is not None else None,
                "received_at": now_utc().isoformat(),
            },
            "result": {
                "status_code": status_code,
                "outcome": outcome_for(status_code),
            },
        }
        extra = context.get("detail")
        if isinstance(extra, dict):
            detail = _merge_detail(detail, extra)

        try:
            write_audit_log(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action=context.get("action") or f"{request.method}:{path}",
                resource=context.get("resource") or path,
                method=request.method,
                status_code=status_code,
                detail=detail,
            )
        except SQLAlchemyError:
            logger.exception("audit write failed for request %s (%s %s)", request_id, request.method, path)
