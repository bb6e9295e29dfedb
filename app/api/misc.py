"""Operational endpoints (health)."""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response

from app.core.dependencies import get_export_scheduler
from app.core.settings import settings
from db import engine

router = APIRouter()


@router.get("/health")
def health_check(scheduler=Depends(get_export_scheduler)):
    # Check required settings presence (don't leak values)
    missing = []
    if not settings.GOOGLE_CLIENT_ID:
        missing.append("GOOGLE_CLIENT_ID")
    if not settings.GOOGLE_CLIENT_SECRET:
        missing.append("GOOGLE_CLIENT_SECRET")

    # Check DB connectivity best-effort
    db_ok = False
    db_error = None
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        db_ok = True
    except Exception as e:
        db_error = str(e)

    status = "ok" if db_ok and not missing else ("degraded" if db_ok else "error")
    payload = {
        "status": status,
        "time": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "config": {
            "google_oauth_configured": not missing,
            "meta_api_version": settings.META_API_VERSION,
            "scheduler_enabled": settings.EXPORT_SCHEDULER_ENABLED,
        },
        "scheduler": {
            "running": bool(scheduler is not None and scheduler.running),
            "cron": settings.EXPORT_SCHEDULER_CRON,
        },
        "missing": missing,
        "db": {"ok": db_ok, "error": db_error},
    }
    # Always 200; status is in the payload
    return JSONResponse(content=payload, status_code=200)


@router.get("/health.txt")
def health_text():
    # simple OK text for load balancer checks
    return Response(content="OK", media_type="text/plain")
