# app/routes/health.py
"""
Health check endpoints with database pool, channel and scheduler status.
"""

import time

from fastapi import APIRouter, Request

from app.config import settings
from app.db.pool import db_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "cleaning-notifier"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: database pool, notification channels and scheduler.

    A disconnected channel is reported but does not make the service unready;
    the dispatcher already refuses to send through it.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    db_health = await db_health_check()
    is_healthy = db_health.get("healthy", False)
    checks["database"] = {
        "ok": is_healthy,
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }
    if not is_healthy:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    overall_ok = overall_ok and is_healthy

    # 2) Notification channels
    job_context = getattr(request.app.state, "job_context", None)
    if job_context is not None:
        checks["channels"] = await job_context.channels.status_all()

    # 3) Scheduler
    scheduler = getattr(request.app.state, "scheduler", None)
    checks["scheduler"] = {
        "enabled": settings.SCHEDULER_ENABLED,
        "started": bool(scheduler and scheduler.started),
        "queue": scheduler.queue.name if scheduler else None,
    }

    # 4) Configuration
    checks["configuration"] = {
        "environment": settings.environment,
        "timezone": settings.TIMEZONE,
        "whatsapp_configured": settings.whatsapp_configured(),
        "sms_configured": settings.sms_configured(),
        "email_configured": settings.email_configured(),
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
