# bff/routes/health.py
"""
Health check endpoints.
"""

import time

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "onboarding-bff"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: configuration and in-process components.
    Always 200; callers read overall_ok.
    """
    settings = request.app.state.settings
    checks = {}

    # 1) Supabase configuration
    config_issues = []
    if not settings.SUPABASE_URL:
        config_issues.append("SUPABASE_URL not set")
    if not settings.SUPABASE_KEY:
        config_issues.append("SUPABASE_KEY not set")

    checks["supabase_config"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }

    # 2) Request signing (optional, reported only)
    checks["signing_secret"] = {
        "ok": True,
        "configured": bool(settings.INTERNAL_SIGNING_SECRET),
    }

    # 3) Request coalescer
    try:
        coalescer = request.app.state.coalescer
        checks["coalescer"] = {
            "ok": True,
            "pending": len(coalescer),
            "coalesced_total": coalescer.coalesced_count,
        }
    except AttributeError as e:
        checks["coalescer"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}

    overall_ok = all(check["ok"] for check in checks.values())
    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
