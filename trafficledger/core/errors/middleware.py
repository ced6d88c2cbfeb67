"""
FastAPI exception handler for TrafficLedgerError.

Maps the error's code through the registry to an HTTP status and a safe
message. The body echoes the request id and, when the error names them,
the campaign and account ids, so a 402 or 409 can be matched to the
ledger log lines that produced it. Internal ``detail`` never leaves the
service.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from trafficledger.core.errors import TrafficLedgerError
from trafficledger.core.errors.registry import ErrorEntry, error_registry
from trafficledger.core.structured_logging import request_id_var

logger = logging.getLogger(__name__)

# Context keys safe to return to callers
_ECHOED_IDS = ("campaign_id", "account_id", "vendor_project_id")

_LOG_FNS = {
    "DEBUG": logger.debug,
    "INFO": logger.info,
    "WARN": logger.warning,
    "ERROR": logger.error,
    "CRITICAL": logger.critical,
}

_UNREGISTERED = ErrorEntry(
    code="TL-SYS-001",
    domain="SYS",
    title="Internal error",
    severity="ERROR",
    retryable=False,
    user_action_required=False,
    http_status=500,
    safe_message="An unexpected error occurred.",
)


def error_body(entry: ErrorEntry, exc: TrafficLedgerError) -> dict:
    body = {
        "code": exc.code,
        "title": entry.title,
        "message": entry.safe_message,
        "retryable": entry.retryable,
        "user_action_required": entry.user_action_required,
        "remediation": entry.remediation,
    }
    for key in _ECHOED_IDS:
        if exc.context.get(key):
            body[key] = exc.context[key]
    request_id = request_id_var.get(None)
    if request_id:
        body["request_id"] = request_id
    return {"error": body}


async def trafficledger_error_handler(request: Request, exc: TrafficLedgerError) -> JSONResponse:
    """Convert TrafficLedgerError into a structured JSON response."""
    entry = error_registry.get(exc.code)
    if entry is None:
        logger.error("unregistered_error_code", extra={"error.code": exc.code, "error.message": exc.detail})
        entry = _UNREGISTERED

    _LOG_FNS.get(entry.severity, logger.error)(
        entry.title,
        extra={
            "error.code": exc.code,
            "error.kind": type(exc).__name__,
            "error.message": exc.detail,
            "error.retryable": entry.retryable,
            "http.method": request.method,
            **{f"error.ctx.{k}": v for k, v in exc.context.items()},
        },
    )
    return JSONResponse(status_code=entry.http_status, content=error_body(entry, exc))
