"""
Archive Sweep: two-stage retention for soft-deleted campaigns.

    archived --(archive_retention_days)--> delete-eligible
    delete-eligible --(purge_retention_days)--> purged (row removed)

Both stages are single bulk conditional statements that only match archived
rows, which reconciliation never selects. Balances are never touched.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select, update

from trafficledger.core.database import get_engine, run_in_transaction
from trafficledger.core.errors import InvalidAmount
from trafficledger.models import CampaignState
from trafficledger.models.common import utcnow
from trafficledger.services.ledger import campaigns_table

logger = logging.getLogger(__name__)

_c = campaigns_table.c


@dataclass
class SweepResult:
    modified_count: int


@dataclass
class PurgeResult:
    deleted_count: int


@dataclass
class ArchiveStats:
    total_archived: int
    eligible_for_deletion: int
    average_days_archived: float

    def to_dict(self) -> dict:
        return asdict(self)


def _check_days(retention_days: int) -> None:
    if retention_days < 0:
        raise InvalidAmount(
            detail="retention days cannot be negative",
            context={"retention_days": retention_days},
        )


def sweep_archive(retention_days: int) -> SweepResult:
    """Mark campaigns archived at least ``retention_days`` ago as delete-eligible."""
    _check_days(retention_days)
    now = utcnow()
    cutoff = now - timedelta(days=retention_days)
    stmt = (
        update(campaigns_table)
        .where(
            _c.state == CampaignState.ARCHIVED.value,
            _c.archived_at.is_not(None),
            _c.archived_at <= cutoff,
            _c.delete_eligible_at.is_(None),
        )
        .values(delete_eligible_at=now, updated_at=now, version=_c.version + 1)
    )
    modified = run_in_transaction(lambda conn: conn.execute(stmt).rowcount)
    logger.info("Archive sweep: %d campaign(s) now delete-eligible (retention=%dd)", modified, retention_days)
    return SweepResult(modified_count=modified)


def purge_delete_eligible(retention_days: int) -> PurgeResult:
    """Remove campaigns that have been delete-eligible for at least ``retention_days``."""
    _check_days(retention_days)
    cutoff = utcnow() - timedelta(days=retention_days)
    stmt = delete(campaigns_table).where(
        _c.state == CampaignState.ARCHIVED.value,
        _c.delete_eligible_at.is_not(None),
        _c.delete_eligible_at <= cutoff,
    )
    deleted = run_in_transaction(lambda conn: conn.execute(stmt).rowcount)
    if deleted:
        logger.warning("Archive purge: %d campaign(s) permanently deleted", deleted)
    return PurgeResult(deleted_count=deleted)


def archive_stats(now: Optional[datetime] = None) -> ArchiveStats:
    now = now or utcnow()
    stmt = select(_c.archived_at, _c.delete_eligible_at).where(
        _c.state == CampaignState.ARCHIVED.value,
    )
    with get_engine().connect() as conn:
        rows = conn.execute(stmt).all()

    ages = [(now - row.archived_at).total_seconds() / 86400 for row in rows if row.archived_at]
    return ArchiveStats(
        total_archived=len(rows),
        eligible_for_deletion=sum(1 for row in rows if row.delete_eligible_at is not None),
        average_days_archived=round(sum(ages) / len(ages), 2) if ages else 0.0,
    )
