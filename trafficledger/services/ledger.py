"""
Ledger persistence helpers.
===========================

Conditional writes for the campaign and account ledgers, shared by the
reconciliation engine, the lifecycle service, account top-ups and the
archive sweep.

Every write goes through SQLAlchemy Core on a connection handed out by
``run_in_transaction``, so a caller can combine a balance debit and a
campaign checkpoint advance in one transaction:

    def _charge(conn):
        if debit_account(conn, account_id, credits=40, hits=40):
            cas_update_campaign(conn, campaign, total_hits_counted=400)

    run_in_transaction(_charge)

A campaign update matches on ``(id, version)``. If another writer bumped the
version first, nothing matches and PersistenceConflict is raised, which
rolls back the surrounding transaction.
"""

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.engine import Connection

from trafficledger.core.database import get_session_context, run_in_transaction
from trafficledger.core.errors import AccountNotFound, CampaignNotFound, PersistenceConflict
from trafficledger.models import Account, Campaign
from trafficledger.models.common import utcnow

logger = logging.getLogger(__name__)

campaigns_table = Campaign.__table__
accounts_table = Account.__table__


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def find_campaign(campaign_id: str) -> Optional[Campaign]:
    with get_session_context() as session:
        return session.get(Campaign, campaign_id)


def load_campaign(campaign_id: str) -> Campaign:
    campaign = find_campaign(campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id)
    return campaign


def find_account(account_id: str) -> Optional[Account]:
    with get_session_context() as session:
        return session.get(Account, account_id)


def load_account(account_id: str) -> Account:
    account = find_account(account_id)
    if account is None:
        raise AccountNotFound(account_id)
    return account


# ---------------------------------------------------------------------------
# Conditional writes
# ---------------------------------------------------------------------------

def cas_update_campaign(conn: Connection, campaign: Campaign, **values) -> int:
    """Update ``campaign`` only if its version is unchanged. Returns the new version."""
    new_version = campaign.version + 1
    stmt = (
        update(campaigns_table)
        .where(
            campaigns_table.c.id == campaign.id,
            campaigns_table.c.version == campaign.version,
        )
        .values(version=new_version, updated_at=utcnow(), **values)
    )
    result = conn.execute(stmt)
    if result.rowcount != 1:
        logger.warning(
            "Campaign write conflict: campaign=%s expected_version=%d",
            campaign.id, campaign.version,
        )
        raise PersistenceConflict(
            detail=f"campaign {campaign.id} changed concurrently",
            context={"campaign_id": campaign.id, "expected_version": campaign.version},
        )
    return new_version


def write_campaign(campaign: Campaign, **values) -> Campaign:
    """CAS-update a campaign in its own transaction and return the fresh row."""
    run_in_transaction(lambda conn: cas_update_campaign(conn, campaign, **values))
    return load_campaign(campaign.id)


def debit_account(conn: Connection, account_id: str, credits: int, hits: int) -> bool:
    """Debit credits and hits if the balance covers ``credits``. False when it does not."""
    stmt = (
        update(accounts_table)
        .where(
            accounts_table.c.id == account_id,
            accounts_table.c.credits >= credits,
        )
        .values(
            credits=accounts_table.c.credits - credits,
            available_hits=accounts_table.c.available_hits - hits,
            version=accounts_table.c.version + 1,
            updated_at=utcnow(),
        )
    )
    return conn.execute(stmt).rowcount == 1


def credit_account(conn: Connection, account_id: str, credits: int, hits: int) -> bool:
    """Add credits and hits. False when the account does not exist."""
    stmt = (
        update(accounts_table)
        .where(accounts_table.c.id == account_id)
        .values(
            credits=accounts_table.c.credits + credits,
            available_hits=accounts_table.c.available_hits + hits,
            version=accounts_table.c.version + 1,
            updated_at=utcnow(),
        )
    )
    return conn.execute(stmt).rowcount == 1
