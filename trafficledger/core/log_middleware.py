"""
Request context middleware.

Binds the request id, the campaign or account a route addresses, and a
job name for manually triggered passes into contextvars, so every log
line emitted while serving the request carries them. Scheduled passes
bind ``job`` themselves (services/scheduler.py); manual triggers get a
``manual-`` prefixed job id echoed back in ``x-trafficledger-job``.
"""
from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from trafficledger.core.structured_logging import (
    account_id_var,
    campaign_id_var,
    job_var,
    request_id_var,
)

logger = logging.getLogger(__name__)

JOB_HEADER = "x-trafficledger-job"

_RESOURCE_PATH = re.compile(r"^/api/(?P<kind>campaigns|accounts)/(?P<id>[^/]+)(?P<rest>/.*)?$")

# (method, path) -> job name for operator-triggered passes
_MANUAL_JOBS = {
    ("POST", "/api/admin/reconcile-all"): "reconcile",
    ("POST", "/api/admin/archive/sweep"): "archive_sweep",
    ("POST", "/api/admin/archive/purge"): "archive_purge",
}
_CAMPAIGN_JOBS = {"/reconcile": "reconcile", "/rebaseline": "rebaseline"}


def path_template(path: str) -> str:
    """Collapse ids out of a path so request logs group by route."""
    match = _RESOURCE_PATH.match(path)
    if not match:
        return path
    placeholder = "{campaign_id}" if match["kind"] == "campaigns" else "{account_id}"
    return f"/api/{match['kind']}/{placeholder}{match['rest'] or ''}"


def manual_job(method: str, path: str) -> Optional[str]:
    """Job name for a manual reconcile/sweep trigger, or None."""
    job = _MANUAL_JOBS.get((method, path))
    if job:
        return job
    match = _RESOURCE_PATH.match(path)
    if method == "POST" and match and match["kind"] == "campaigns":
        return _CAMPAIGN_JOBS.get(match["rest"] or "")
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request, ledger and job context for the duration of a request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        method, path = request.method, request.url.path
        req_id = request.headers.get("x-request-id") or uuid.uuid4().hex

        tokens = [(request_id_var, request_id_var.set(req_id))]
        match = _RESOURCE_PATH.match(path)
        if match:
            var = campaign_id_var if match["kind"] == "campaigns" else account_id_var
            tokens.append((var, var.set(match["id"])))

        job = manual_job(method, path)
        job_id = f"manual-{job}:{req_id[:8]}" if job else None
        if job_id:
            tokens.append((job_var, job_var.set(job_id)))

        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        finally:
            logger.info(
                "request_completed",
                extra={
                    "http.method": method,
                    "http.path_template": path_template(path),
                    "http.status_code": response.status_code if response else None,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
            for var, token in reversed(tokens):
                var.reset(token)

        response.headers["x-request-id"] = req_id
        if job_id:
            response.headers[JOB_HEADER] = job_id
        return response
