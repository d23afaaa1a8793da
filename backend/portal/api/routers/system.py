from __future__ import annotations

import sqlite3

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from portal.api.services.runtime import EmbeddingServiceGetter
from portal.config import settings
from portal.db import get_conn


def _database_backend_label(database_url: str) -> str:
    url = (database_url or "").strip().lower()
    if url.startswith("sqlite:///"):
        return "sqlite"
    return "unknown"


def build_system_router(*, get_embedding_service: EmbeddingServiceGetter) -> APIRouter:
    router = APIRouter()

    @router.get("/")
    def root() -> dict[str, str]:
        return {"service": "proposal-portal-backend", "status": "running"}

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "environment": settings.app_env}

    @router.get("/ready", response_model=None)
    def ready() -> JSONResponse:
        payload: dict[str, object] = {
            "status": "ready",
            "environment": settings.app_env,
            "checks": {},
        }
        checks: dict[str, object] = {}
        payload["checks"] = checks

        try:
            with get_conn() as conn:
                row = conn.execute("SELECT COUNT(*) AS total FROM past_projects").fetchone()
            checks["db"] = {
                "ok": True,
                "backend": _database_backend_label(settings.database_url),
                "past_projects": int(row["total"]) if row is not None else 0,
            }
        except sqlite3.Error as exc:
            payload["status"] = "not_ready"
            checks["db"] = {
                "ok": False,
                "backend": _database_backend_label(settings.database_url),
                "error": str(exc),
            }
            return JSONResponse(status_code=503, content=payload)

        checks["embedding"] = {"ok": True, **get_embedding_service().describe()}
        return JSONResponse(status_code=200, content=payload)

    return router
