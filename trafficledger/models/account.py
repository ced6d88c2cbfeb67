"""
Account Balance Model
=====================

Per-account balance debited by reconciliation:
- ``credits``: currency-like ledger balance, never negative after a debit
- ``available_hits``: usage-unit allowance, moved in lockstep with credits

Both counters change only through conditional UPDATEs (see
services/ledger.py); ``version`` is bumped on every write.
"""

from sqlmodel import Field

from trafficledger.models.common import TimestampMixin, new_id


class Account(TimestampMixin, table=True):
    __tablename__ = "accounts"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    email: str = Field(default="", max_length=255)
    credits: int = Field(default=0)
    available_hits: int = Field(default=0)
    version: int = Field(default=0)
