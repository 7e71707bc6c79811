from __future__ import annotations

from fastapi import FastAPI, HTTPException

from route_access.api.routers import access, settings
from route_access.domain.access import load_access_policy
from route_access.infra.db import check_db_ready
from route_access.infra.logging import setup_logging

setup_logging()

app = FastAPI(
    title="route-access",
    description="Page/permission catalog and route access decisions.",
    version="0.1.0",
)

app.state.access_policy = load_access_policy()

app.include_router(access.router, prefix="/api/access", tags=["access"])
app.include_router(settings.router, prefix="/api/settings", tags=["settings"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
