"""
Campaign Lifecycle
==================

States: created -> active <-> paused -> archived -> (purged: row removed)

- ``pause`` has two causes, recorded in ``pause_reason``: a user/admin
  request, or insolvency detected by reconciliation (auto-pause). Only the
  insolvent pause stops charging.
- ``resume`` requires a positive balance and clears any pause reason.
- ``archive`` is a soft delete. A second archive of a campaign the archive
  sweep has marked delete-eligible purges the row.
- ``confirm`` attaches the vendor project. It is legal from any live state
  while no project is attached; ``created`` moves to ``active``, other
  states are kept.
- ``restore`` brings an archived campaign back to the state it had before.

Vendor speed changes are best-effort: a failing vendor call is logged and
never blocks the local transition. Every operation holds the campaign lock
shared with the reconciliation engine.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional

from sqlalchemy import delete
from sqlalchemy.engine import Connection

from trafficledger.config import settings
from trafficledger.core.database import get_session_context, run_in_transaction
from trafficledger.core.errors import (
    InsufficientBalance,
    InvalidTransition,
    TrafficLedgerError,
)
from trafficledger.models import Campaign, CampaignState, PauseActor, PauseReason
from trafficledger.models.common import utcnow
from trafficledger.services.ledger import (
    campaigns_table,
    cas_update_campaign,
    find_account,
    load_account,
    load_campaign,
    write_campaign,
)
from trafficledger.services.locks import CampaignLocks, campaign_locks
from trafficledger.services.vendors import TrafficVendor, get_vendor

logger = logging.getLogger(__name__)

_LIVE = frozenset({CampaignState.CREATED.value, CampaignState.ACTIVE.value, CampaignState.PAUSED.value})

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "confirm": _LIVE,
    "pause": _LIVE,
    "auto_pause": _LIVE,
    "resume": _LIVE,
    "archive": _LIVE | {CampaignState.ARCHIVED.value},
    "restore": frozenset({CampaignState.ARCHIVED.value}),
}


def ensure_transition(state: str, operation: str) -> None:
    """Raise InvalidTransition unless ``operation`` is legal from ``state``."""
    allowed = ALLOWED_TRANSITIONS.get(operation)
    if allowed is None or state not in allowed:
        raise InvalidTransition(
            detail=f"cannot {operation} a campaign in state {state!r}",
            context={"state": state, "operation": operation},
        )


def ensure_unconfirmed(campaign: Campaign) -> None:
    """Raise InvalidTransition if the campaign already has a vendor project."""
    ensure_transition(campaign.state, "confirm")
    if campaign.vendor_project_id:
        raise InvalidTransition(
            detail=f"campaign already confirmed as vendor project {campaign.vendor_project_id}",
            context={"campaign_id": campaign.id, "vendor_project_id": campaign.vendor_project_id},
        )


class ArchiveOutcome(str, enum.Enum):
    ARCHIVED = "archived"
    ALREADY_ARCHIVED = "already_archived"
    PURGED = "purged"


@dataclass
class ArchiveResult:
    outcome: ArchiveOutcome
    campaign_id: str
    campaign: Optional[Campaign] = None


class CampaignLifecycle:
    """Lifecycle transitions for campaign records."""

    def __init__(
        self,
        vendor_resolver: Callable[[Optional[str]], TrafficVendor] = get_vendor,
        locks: Optional[CampaignLocks] = None,
    ):
        self._vendor_resolver = vendor_resolver
        self._locks = locks or campaign_locks

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        account_id: str,
        title: str,
        target_url: Optional[str] = None,
        vendor: Optional[str] = None,
    ) -> Campaign:
        load_account(account_id)
        campaign = Campaign(
            account_id=account_id,
            title=title,
            target_url=target_url,
            vendor=vendor or settings.default_vendor,
        )
        with get_session_context() as session:
            session.add(campaign)
            session.commit()
            session.refresh(campaign)
        logger.info("Campaign created: campaign=%s account=%s", campaign.id, account_id)
        return campaign

    async def provision(self, campaign_id: str, payload: Optional[dict] = None) -> Campaign:
        """Create the vendor project for a campaign that has none yet, then confirm it."""
        campaign = load_campaign(campaign_id)
        ensure_unconfirmed(campaign)
        body = dict(payload or {})
        body.setdefault("title", campaign.title)
        if campaign.target_url:
            body.setdefault("urls", [campaign.target_url])
        vendor = self._vendor_resolver(campaign.vendor)
        project_id = await vendor.create_project(body)
        logger.info("Vendor project created: campaign=%s project=%s", campaign_id, project_id)
        return await self.confirm(campaign_id, project_id)

    async def confirm(self, campaign_id: str, vendor_project_id: str) -> Campaign:
        async with self._locks.get(campaign_id):
            campaign = load_campaign(campaign_id)
            ensure_unconfirmed(campaign)
            if campaign.state == CampaignState.CREATED.value:
                updated = write_campaign(
                    campaign,
                    state=CampaignState.ACTIVE.value,
                    vendor_project_id=vendor_project_id,
                    pause_reason=None,
                )
            else:
                # Paused or resumed before confirmation: keep the current state.
                updated = write_campaign(campaign, vendor_project_id=vendor_project_id)
                if updated.state == CampaignState.PAUSED.value:
                    await self.sync_vendor_speed(updated, 0)
        logger.info("Campaign confirmed: campaign=%s project=%s", campaign_id, vendor_project_id)
        return updated

    # ------------------------------------------------------------------
    # Pause / resume
    # ------------------------------------------------------------------

    async def pause(self, campaign_id: str, actor: PauseActor = PauseActor.USER) -> Campaign:
        async with self._locks.get(campaign_id):
            campaign = load_campaign(campaign_id)
            ensure_transition(campaign.state, "pause")
            reason = (
                PauseReason.INSOLVENT.value
                if campaign.is_auto_paused
                else PauseReason.USER_REQUESTED.value
            )
            updated = write_campaign(campaign, state=CampaignState.PAUSED.value, pause_reason=reason)
            await self.sync_vendor_speed(updated, 0)
        logger.info(
            "Campaign paused: campaign=%s actor=%s reason=%s",
            campaign_id, PauseActor(actor).value, reason,
        )
        return updated

    async def resume(self, campaign_id: str) -> Campaign:
        async with self._locks.get(campaign_id):
            campaign = load_campaign(campaign_id)
            ensure_transition(campaign.state, "resume")
            account = find_account(campaign.account_id)
            if account is None or account.credits <= 0:
                raise InsufficientBalance(
                    detail="account has no credits",
                    context={
                        "campaign_id": campaign_id,
                        "account_id": campaign.account_id,
                        "credits": account.credits if account else None,
                    },
                )
            updated = write_campaign(campaign, state=CampaignState.ACTIVE.value, pause_reason=None)
            await self.sync_vendor_speed(updated, settings.resume_speed)
        logger.info("Campaign resumed: campaign=%s", campaign_id)
        return updated

    def auto_pause(self, campaign: Campaign, conn: Connection) -> int:
        """Insolvency pause, written on the caller's transaction. Returns the new version.

        The vendor is not contacted here; reconciliation stops delivery after
        the transaction commits.
        """
        ensure_transition(campaign.state, "auto_pause")
        return cas_update_campaign(
            conn,
            campaign,
            state=CampaignState.PAUSED.value,
            pause_reason=PauseReason.INSOLVENT.value,
        )

    # ------------------------------------------------------------------
    # Archive / restore
    # ------------------------------------------------------------------

    async def archive(self, campaign_id: str) -> ArchiveResult:
        async with self._locks.get(campaign_id):
            campaign = load_campaign(campaign_id)
            ensure_transition(campaign.state, "archive")

            if campaign.is_archived:
                if campaign.delete_eligible:
                    self._purge(campaign)
                    return ArchiveResult(ArchiveOutcome.PURGED, campaign_id)
                logger.info("Campaign already archived: campaign=%s", campaign_id)
                return ArchiveResult(ArchiveOutcome.ALREADY_ARCHIVED, campaign_id, campaign)

            updated = write_campaign(
                campaign,
                state=CampaignState.ARCHIVED.value,
                prior_state=campaign.state,
                archived_at=utcnow(),
                delete_eligible_at=None,
            )
            if campaign.state != CampaignState.PAUSED.value:
                await self.sync_vendor_speed(updated, 0)
        logger.info("Campaign archived: campaign=%s prior_state=%s", campaign_id, campaign.state)
        return ArchiveResult(ArchiveOutcome.ARCHIVED, campaign_id, updated)

    async def restore(self, campaign_id: str) -> Campaign:
        async with self._locks.get(campaign_id):
            campaign = load_campaign(campaign_id)
            ensure_transition(campaign.state, "restore")

            target = campaign.prior_state or CampaignState.PAUSED.value
            reason = campaign.pause_reason
            resume_vendor = False
            if target == CampaignState.PAUSED.value:
                reason = reason or PauseReason.USER_REQUESTED.value
            elif target == CampaignState.ACTIVE.value:
                account = find_account(campaign.account_id)
                if account is None or account.credits <= 0:
                    target = CampaignState.PAUSED.value
                    reason = PauseReason.INSOLVENT.value
                else:
                    reason = None
                    resume_vendor = True
            else:
                reason = None

            updated = write_campaign(
                campaign,
                state=target,
                pause_reason=reason,
                prior_state=None,
                archived_at=None,
                delete_eligible_at=None,
            )
            if resume_vendor:
                await self.sync_vendor_speed(updated, settings.resume_speed)
        logger.info("Campaign restored: campaign=%s state=%s reason=%s", campaign_id, target, reason)
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _purge(self, campaign: Campaign) -> None:
        stmt = delete(campaigns_table).where(
            campaigns_table.c.id == campaign.id,
            campaigns_table.c.state == CampaignState.ARCHIVED.value,
            campaigns_table.c.delete_eligible_at.is_not(None),
        )
        deleted = run_in_transaction(lambda conn: conn.execute(stmt).rowcount)
        if deleted != 1:
            raise InvalidTransition(
                detail=f"campaign {campaign.id} is no longer delete-eligible",
                context={"campaign_id": campaign.id},
            )
        logger.warning("Campaign purged: campaign=%s account=%s", campaign.id, campaign.account_id)

    async def sync_vendor_speed(self, campaign: Campaign, speed: int) -> bool:
        """Best-effort vendor speed change. Returns False when it did not happen."""
        if not campaign.vendor_project_id:
            return False
        try:
            vendor = self._vendor_resolver(campaign.vendor)
            await vendor.set_speed(campaign.vendor_project_id, speed)
            return True
        except TrafficLedgerError as e:
            logger.warning(
                "Vendor speed change failed: campaign=%s speed=%d code=%s detail=%s",
                campaign.id, speed, e.code, e.detail,
            )
            return False


campaign_lifecycle = CampaignLifecycle()
