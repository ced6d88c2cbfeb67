"""
Health check endpoint.

- GET /api/health  cheap: process alive, version, uptime, scheduler state
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from trafficledger import __version__
from trafficledger.core.structured_logging import SERVICE_NAME, get_uptime_s

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Cheap health check, no vendor or database calls."""
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "version": __version__,
        "service": SERVICE_NAME,
        "uptime_s": round(get_uptime_s(), 1),
        "scheduler": scheduler.state.value if scheduler is not None else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
