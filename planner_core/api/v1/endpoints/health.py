# planner_core/api/v1/endpoints/health.py
"""
Health check endpoints for monitoring system status.
"""
from fastapi import APIRouter, HTTPException, Request

from planner_core.core.config import settings

router = APIRouter(prefix="/health", tags=["Health"])


def _coordinator(request: Request):
    return getattr(request.app.state, "coordinator", None)


@router.get("")
def health_check():
    """Basic health check - API is responding."""
    return {"status": "healthy", "service": settings.APP_NAME}


@router.get("/ready")
def readiness(request: Request):
    """Ready once the broker is reachable and both queues are usable."""
    coordinator = _coordinator(request)
    if coordinator is None or not coordinator.ready:
        raise HTTPException(status_code=503, detail="Ticket generation queues not ready")
    return {"status": "ready", **coordinator.status()}


@router.get("/live")
def liveness(request: Request):
    coordinator = _coordinator(request)
    if coordinator is None or not coordinator.is_alive():
        raise HTTPException(status_code=503, detail="Ticket generation coordinator not running")
    return {"status": "alive"}
