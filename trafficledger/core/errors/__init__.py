"""
Error code system.

TrafficLedgerError is the base exception for all structured errors.
Raise it (or one of the domain subclasses below) with an error code from
the registry, and the error middleware will produce a structured JSON
response.

Usage:
    from trafficledger.core.errors import VendorUnavailable
    raise VendorUnavailable(detail="timeout after 20s", context={"project_id": "abc"})
"""

from __future__ import annotations

import re

CODE_PATTERN = re.compile(r"^TL-[A-Z]{2,6}-\d{3}$")


class TrafficLedgerError(Exception):
    """Structured application error tied to the error registry.

    Args:
        code: Registry error code, e.g. "TL-VND-001". Subclasses supply a default.
        detail: Internal-only detail message (never exposed to users).
        context: Arbitrary key-value context for structured logging.
    """

    default_code: str | None = None

    def __init__(
        self,
        code: str | None = None,
        detail: str | None = None,
        context: dict | None = None,
    ) -> None:
        code = code or self.default_code
        if not code or not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = context or {}
        super().__init__(f"{code}: {detail}" if detail else code)


# ---------------------------------------------------------------------------
# Vendor
# ---------------------------------------------------------------------------

class VendorUnavailable(TrafficLedgerError):
    """Network error, timeout, 429 or 5xx from the vendor. Retried next pass."""

    default_code = "TL-VND-001"

    def __init__(self, detail: str | None = None, context: dict | None = None,
                 status_code: int = 0) -> None:
        self.status_code = status_code
        super().__init__(detail=detail, context=context)


class VendorDataInvalid(TrafficLedgerError):
    """Vendor answered, but the usage payload is empty or malformed."""

    default_code = "TL-VND-002"

    def __init__(self, detail: str | None = None, context: dict | None = None) -> None:
        super().__init__(detail=detail, context=context)


class VendorNotConfigured(TrafficLedgerError):
    default_code = "TL-CFG-001"

    def __init__(self, detail: str | None = None, context: dict | None = None) -> None:
        super().__init__(detail=detail, context=context)


# ---------------------------------------------------------------------------
# Lifecycle / balance
# ---------------------------------------------------------------------------

class InvalidTransition(TrafficLedgerError):
    """Lifecycle operation attempted from a state that forbids it."""

    default_code = "TL-LCY-001"

    def __init__(self, detail: str | None = None, context: dict | None = None,
                 code: str | None = None) -> None:
        super().__init__(code=code, detail=detail, context=context)


class InsufficientBalance(InvalidTransition):
    """Resume refused because the owning account has no credits left."""

    default_code = "TL-BAL-001"

    def __init__(self, detail: str | None = None, context: dict | None = None) -> None:
        super().__init__(detail=detail, context=context, code=self.default_code)


# ---------------------------------------------------------------------------
# Persistence / lookup
# ---------------------------------------------------------------------------

class PersistenceConflict(TrafficLedgerError):
    """Concurrent write detected on a ledger record; nothing was written."""

    default_code = "TL-DB-001"

    def __init__(self, detail: str | None = None, context: dict | None = None) -> None:
        super().__init__(detail=detail, context=context)


class CampaignNotFound(TrafficLedgerError):
    default_code = "TL-CMP-001"

    def __init__(self, campaign_id: str) -> None:
        self.campaign_id = campaign_id
        super().__init__(detail=f"campaign {campaign_id} not found",
                         context={"campaign_id": campaign_id})


class AccountNotFound(TrafficLedgerError):
    default_code = "TL-ACC-001"

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(detail=f"account {account_id} not found",
                         context={"account_id": account_id})


class AccountAlreadyExists(TrafficLedgerError):
    default_code = "TL-ACC-003"

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(detail=f"account {account_id} already exists",
                         context={"account_id": account_id})


class InvalidAmount(TrafficLedgerError):
    default_code = "TL-ACC-002"

    def __init__(self, detail: str | None = None, context: dict | None = None) -> None:
        super().__init__(detail=detail, context=context)


__all__ = [
    "CODE_PATTERN",
    "TrafficLedgerError",
    "VendorUnavailable",
    "VendorDataInvalid",
    "VendorNotConfigured",
    "InvalidTransition",
    "InsufficientBalance",
    "PersistenceConflict",
    "CampaignNotFound",
    "AccountNotFound",
    "AccountAlreadyExists",
    "InvalidAmount",
]
