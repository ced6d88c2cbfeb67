"""
Campaign Model
==============

One row per traffic campaign. Holds the lifecycle state and the usage
ledger checkpoint used by reconciliation:

- ``total_hits_counted``: cumulative vendor hits already billed (never decreases)
- ``last_stats_check``: watermark of the last successful vendor read
- ``version``: bumped on every write; conditional updates compare it

Lifecycle is a single ``state`` plus a pause sub-reason instead of a set of
independent flags. The flag vocabulary used by operators and older clients
(``is_archived``, ``delete_eligible``, ``credit_deduction_enabled``) is
derived from it.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field

from trafficledger.models.common import TimestampMixin, new_id


class CampaignState(str, Enum):
    """Persisted lifecycle state. ``purged`` is not a state: the row is gone."""
    CREATED = "created"    # provisioned locally, vendor not confirmed yet
    ACTIVE = "active"      # running at the vendor
    PAUSED = "paused"
    ARCHIVED = "archived"  # soft-deleted


class PauseReason(str, Enum):
    USER_REQUESTED = "user_requested"
    INSOLVENT = "insolvent"  # auto-pause, balance could not cover usage


class PauseActor(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


class Campaign(TimestampMixin, table=True):
    __tablename__ = "campaigns"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    account_id: str = Field(index=True, max_length=64)
    title: str = Field(default="", max_length=255)
    target_url: Optional[str] = Field(default=None, nullable=True)

    vendor: str = Field(default="sparktraffic", max_length=32)
    vendor_project_id: Optional[str] = Field(default=None, nullable=True, index=True, max_length=128)

    # Lifecycle
    state: str = Field(default=CampaignState.CREATED.value, index=True, max_length=16)
    pause_reason: Optional[str] = Field(default=None, nullable=True, max_length=32)
    prior_state: Optional[str] = Field(default=None, nullable=True, max_length=16)
    archived_at: Optional[datetime] = Field(default=None, nullable=True, index=True)
    delete_eligible_at: Optional[datetime] = Field(default=None, nullable=True)

    # Usage ledger checkpoint
    total_hits_counted: int = Field(default=0)
    total_visits_counted: int = Field(default=0)
    last_stats_check: Optional[datetime] = Field(default=None, nullable=True)

    version: int = Field(default=0)

    # ------------------------------------------------------------------
    # Derived flags
    # ------------------------------------------------------------------

    @property
    def is_archived(self) -> bool:
        return self.state == CampaignState.ARCHIVED

    @property
    def delete_eligible(self) -> bool:
        return self.delete_eligible_at is not None

    @property
    def is_auto_paused(self) -> bool:
        return self.state == CampaignState.PAUSED and self.pause_reason == PauseReason.INSOLVENT

    @property
    def credit_deduction_enabled(self) -> bool:
        return not self.is_auto_paused

    @property
    def reconcilable(self) -> bool:
        """Vendor confirmed, not archived, and not auto-paused for insolvency."""
        return bool(self.vendor_project_id) and not self.is_archived and self.credit_deduction_enabled
