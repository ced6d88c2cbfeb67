"""
Operator endpoint guard.

Admin routes require the ``X-Admin-Key`` header to match
TRAFFICLEDGER_ADMIN_API_KEY. When no key is configured the guard is open,
which is only meant for local development.
"""

import hmac
import logging

from fastapi import HTTPException, Request, status

from trafficledger.config import settings

logger = logging.getLogger(__name__)

_warned_open = False


async def require_admin(request: Request) -> None:
    global _warned_open
    expected = settings.admin_api_key
    if not expected:
        if not _warned_open:
            logger.warning("TRAFFICLEDGER_ADMIN_API_KEY not set; admin endpoints are unauthenticated")
            _warned_open = True
        return

    supplied = request.headers.get("X-Admin-Key")
    if not supplied:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Admin-Key header is missing.",
        )
    if not hmac.compare_digest(supplied, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin key.",
        )
