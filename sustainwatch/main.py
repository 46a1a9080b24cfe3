from __future__ import annotations

from fastapi import FastAPI, HTTPException

from sustainwatch.api.routers import alerts, frameworks, metrics, reports, sites, thresholds
from sustainwatch.infra.audit import AuditMiddleware
from sustainwatch.infra.db import check_db_ready
from sustainwatch.infra.log import setup_logging
from sustainwatch.infra.redis_state import check_redis_ready

setup_logging()

app = FastAPI(
    title="sustainwatch",
    description="PUE/WUE/CUE threshold evaluation and alerting for data-center sites.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(sites.router, prefix="/api/sites", tags=["sites"])
app.include_router(frameworks.router, prefix="/api/frameworks", tags=["frameworks"])
app.include_router(frameworks.assignment_router, prefix="/api/site-frameworks", tags=["frameworks"])
app.include_router(thresholds.router, prefix="/api/thresholds", tags=["thresholds"])
app.include_router(metrics.router, prefix="/api/metrics", tags=["metrics"])
app.include_router(alerts.router, prefix="/api/alerts", tags=["alerts"])
app.include_router(reports.router, prefix="/api/reports", tags=["reports"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
