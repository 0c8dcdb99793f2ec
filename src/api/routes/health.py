"""
Health check endpoints.

Provides endpoints for monitoring application health and status.
"""

from typing import Any, Dict

from fastapi import APIRouter, Request

from config.settings import get_settings
from config.database import get_supabase_client_optional


router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.

    Returns:
        Health status with basic info
    """
    return {
        "status": "healthy",
        "service": "gift-deck-api",
    }


@router.get("/health/detailed")
async def detailed_health_check(request: Request) -> Dict[str, Any]:
    """
    Detailed health check with dependency status.

    Checks:
    - Service container initialized
    - Session store backend
    - Supabase connection (when configured)

    Returns:
        Detailed health status
    """
    settings = get_settings()
    service = request.app.state.service

    supabase_status = "not_configured"
    supabase_error = None
    if settings.supabase_configured:
        try:
            client = get_supabase_client_optional()
            if client:
                result = client.table(settings.products_table).select("id").limit(1).execute()
                supabase_status = "connected" if result.data else "empty"
            else:
                supabase_status = "error"
        except Exception as e:
            supabase_status = "error"
            supabase_error = str(e)

    sessions = service.sessions.get_stats() if service.started else None
    healthy = service.started and supabase_status in ("connected", "empty", "not_configured")

    return {
        "status": "healthy" if healthy else "degraded",
        "service": "gift-deck-api",
        "environment": settings.environment,
        "checks": {
            "config": "ok",
            "service": "started" if service.started else "stopped",
            "sessions": sessions,
            "supabase": {
                "status": supabase_status,
                "error": supabase_error,
            },
        },
    }


@router.get("/ready")
async def readiness_check(request: Request) -> Dict[str, str]:
    """
    Kubernetes-style readiness probe.

    Returns 200 if the service is ready to accept traffic.
    """
    if not request.app.state.service.started:
        return {"status": "not_ready", "reason": "service_not_started"}

    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes-style liveness probe.

    Returns 200 if the service is alive.
    """
    return {"status": "alive"}
