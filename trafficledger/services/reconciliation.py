"""
Reconciliation Engine: Vendor Usage -> Credit Ledger
=====================================================

PURPOSE:
    Polls the vendor's cumulative usage counter for each eligible campaign,
    computes the delta against the campaign's checkpoint
    (``total_hits_counted``) and converts it into an account debit.

ALGORITHM (per campaign, under the campaign lock):
    1. Query the vendor for the full history: campaign creation date -> today.
    2. totalHitsEver = sum of the hit buckets.
    3. newUnits = max(0, totalHitsEver - total_hits_counted).
    4. First pass (last_stats_check is null): checkpoint := totalHitsEver,
       charge nothing.
    5. newUnits == 0: only advance last_stats_check.
    6. newUnits > 0: owed = newUnits * credits_per_hit. In one transaction,
       debit the account if credits >= owed and advance the checkpoint;
       otherwise auto-pause (insolvent) and leave checkpoint and balance as is.
    7. VendorDataInvalid: advance last_stats_check only, and only once a
       baseline exists (before that nothing is written).
       VendorUnavailable: touch nothing, propagate; the next pass retries.

Charging depends only on the sequence of cumulative readings, so passes may
run at any cadence, be skipped, or be repeated.

SCHEDULE:
    ``reconcile_all`` is run by the SchedulerController every
    ``reconcile_interval_s`` seconds, and on demand from /api/admin.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy import or_
from sqlmodel import select

from trafficledger.config import settings
from trafficledger.core.database import get_session_context, run_in_transaction
from trafficledger.core.errors import (
    InvalidTransition,
    TrafficLedgerError,
    VendorDataInvalid,
)
from trafficledger.core.structured_logging import campaign_id_var
from trafficledger.models import Campaign, CampaignState, PauseReason
from trafficledger.models.common import utcnow
from trafficledger.services.ledger import (
    cas_update_campaign,
    debit_account,
    find_account,
    load_campaign,
    write_campaign,
)
from trafficledger.services.lifecycle import CampaignLifecycle, campaign_lifecycle
from trafficledger.services.locks import CampaignLocks, campaign_locks
from trafficledger.services.vendors import TrafficVendor, VendorUsage, get_vendor

logger = logging.getLogger(__name__)


class ReconcileStatus(str, Enum):
    BASELINE = "baseline"
    CHARGED = "charged"
    NO_NEW_USAGE = "no_new_usage"
    NO_DATA = "no_data"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    SKIPPED = "skipped"


@dataclass
class ReconcileResult:
    campaign_id: str
    status: ReconcileStatus
    new_units: int = 0
    credits_deducted: int = 0
    total_hits_ever: int = 0
    total_hits_counted: int = 0
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ReconcileSummary:
    total_campaigns: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    auto_paused: int = 0
    total_credits_deducted: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)

    def record(self, result: ReconcileResult) -> None:
        if result.status == ReconcileStatus.SKIPPED:
            self.skipped += 1
            return
        self.processed += 1
        self.total_credits_deducted += result.credits_deducted
        if result.status == ReconcileStatus.INSUFFICIENT_BALANCE:
            self.auto_paused += 1

    def record_error(self, campaign_id: str, error: str) -> None:
        self.errors += 1
        self.failures.append({"campaign_id": campaign_id, "error": error})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CreditPreview:
    """What the next pass would do, computed without writing anything."""

    campaign_id: str
    total_hits_ever: int
    total_hits_counted: int
    pending_units: int
    credits_owed: int
    account_credits: Optional[int]
    baseline_pending: bool
    sufficient_balance: bool
    hits_by_bucket: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ReconciliationEngine:
    """Turns vendor cumulative usage into account debits, one campaign at a time."""

    def __init__(
        self,
        vendor_resolver: Callable[[Optional[str]], TrafficVendor] = get_vendor,
        locks: Optional[CampaignLocks] = None,
        lifecycle: Optional[CampaignLifecycle] = None,
        credits_per_hit: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        batch_limit: Optional[int] = None,
        campaign_timeout_s: Optional[float] = None,
    ):
        self._vendor_resolver = vendor_resolver
        self._locks = locks or campaign_locks
        self._lifecycle = lifecycle or campaign_lifecycle
        self._credits_per_hit = credits_per_hit if credits_per_hit is not None else settings.credits_per_hit
        self._max_concurrency = max(1, max_concurrency or settings.reconcile_max_concurrency)
        self._batch_limit = batch_limit or settings.reconcile_batch_limit
        self._campaign_timeout_s = campaign_timeout_s or settings.reconcile_campaign_timeout_s

    @property
    def credits_per_hit(self) -> int:
        return self._credits_per_hit

    # ------------------------------------------------------------------
    # Single campaign
    # ------------------------------------------------------------------

    async def reconcile(self, campaign_id: str) -> ReconcileResult:
        """Reconcile one campaign. Serialized with every other writer of that campaign."""
        token = campaign_id_var.set(campaign_id)
        try:
            async with self._locks.get(campaign_id):
                return await self._reconcile_locked(campaign_id)
        finally:
            campaign_id_var.reset(token)

    async def _reconcile_locked(self, campaign_id: str) -> ReconcileResult:
        campaign = load_campaign(campaign_id)
        if not campaign.reconcilable:
            return ReconcileResult(
                campaign_id=campaign_id,
                status=ReconcileStatus.SKIPPED,
                total_hits_counted=campaign.total_hits_counted,
                message=f"not eligible (state={campaign.state}, reason={campaign.pause_reason})",
            )

        now = utcnow()
        try:
            usage = await self._fetch_usage(campaign, now)
        except VendorDataInvalid as e:
            # Watermark stays null until a baseline has been recorded.
            if campaign.last_stats_check is not None:
                write_campaign(campaign, last_stats_check=now)
            logger.warning(
                "Vendor usage unreadable: campaign=%s baseline_pending=%s detail=%s",
                campaign_id, campaign.last_stats_check is None, e.detail,
            )
            return ReconcileResult(
                campaign_id=campaign_id,
                status=ReconcileStatus.NO_DATA,
                total_hits_counted=campaign.total_hits_counted,
                message="vendor returned no usable data",
            )

        total_ever = usage.total_hits
        counted = campaign.total_hits_counted
        visits = max(campaign.total_visits_counted, usage.total_visits)

        if campaign.last_stats_check is None:
            baseline = max(counted, total_ever)
            write_campaign(
                campaign,
                total_hits_counted=baseline,
                total_visits_counted=visits,
                last_stats_check=now,
            )
            logger.info("Baseline set: campaign=%s total_hits=%d", campaign_id, baseline)
            return ReconcileResult(
                campaign_id=campaign_id,
                status=ReconcileStatus.BASELINE,
                total_hits_ever=total_ever,
                total_hits_counted=baseline,
                message="baseline established, nothing charged",
            )

        new_units = max(0, total_ever - counted)
        if new_units == 0:
            write_campaign(campaign, last_stats_check=now)
            return ReconcileResult(
                campaign_id=campaign_id,
                status=ReconcileStatus.NO_NEW_USAGE,
                total_hits_ever=total_ever,
                total_hits_counted=counted,
            )

        owed = new_units * self._credits_per_hit
        def _charge(conn) -> bool:
            if debit_account(conn, campaign.account_id, credits=owed, hits=new_units):
                cas_update_campaign(
                    conn,
                    campaign,
                    total_hits_counted=counted + new_units,
                    total_visits_counted=visits,
                    last_stats_check=now,
                )
                return True
            self._lifecycle.auto_pause(campaign, conn)
            return False

        debited = run_in_transaction(_charge)

        if not debited:
            account = find_account(campaign.account_id)
            logger.warning(
                "Insufficient balance, campaign auto-paused: campaign=%s account=%s owed=%d credits=%s",
                campaign_id, campaign.account_id, owed, account.credits if account else None,
            )
            await self._lifecycle.sync_vendor_speed(campaign, 0)
            return ReconcileResult(
                campaign_id=campaign_id,
                status=ReconcileStatus.INSUFFICIENT_BALANCE,
                new_units=new_units,
                total_hits_ever=total_ever,
                total_hits_counted=counted,
                message=f"insufficient balance for {owed} credits, auto-paused",
            )

        logger.info(
            "Usage charged: campaign=%s new_units=%d credits=%d total_hits=%d",
            campaign_id, new_units, owed, counted + new_units,
        )
        return ReconcileResult(
            campaign_id=campaign_id,
            status=ReconcileStatus.CHARGED,
            new_units=new_units,
            credits_deducted=owed,
            total_hits_ever=total_ever,
            total_hits_counted=counted + new_units,
        )

    async def _fetch_usage(self, campaign: Campaign, now) -> VendorUsage:
        # Full history on every pass; see DESIGN.md for the bounded-window variant.
        vendor = self._vendor_resolver(campaign.vendor)
        return await vendor.get_usage(
            campaign.vendor_project_id,
            campaign.created_at.date(),
            now.date(),
        )

    # ------------------------------------------------------------------
    # Population sweep
    # ------------------------------------------------------------------

    def eligible_campaign_ids(self, limit: Optional[int] = None) -> list[str]:
        """Eligible campaigns, never-checked first, then oldest watermark first."""
        stmt = (
            select(Campaign.id)
            .where(
                Campaign.vendor_project_id.is_not(None),
                Campaign.state != CampaignState.ARCHIVED.value,
                or_(
                    Campaign.state != CampaignState.PAUSED.value,
                    Campaign.pause_reason.is_(None),
                    Campaign.pause_reason != PauseReason.INSOLVENT.value,
                ),
            )
            .order_by(
                Campaign.last_stats_check.is_not(None),
                Campaign.last_stats_check,
                Campaign.created_at,
            )
            .limit(limit or self._batch_limit)
        )
        with get_session_context() as session:
            return list(session.exec(stmt).all())

    async def reconcile_all(self) -> ReconcileSummary:
        """Reconcile every eligible campaign with bounded parallelism.

        One campaign failing or timing out never aborts the sweep.
        """
        campaign_ids = self.eligible_campaign_ids()
        summary = ReconcileSummary(total_campaigns=len(campaign_ids))
        if not campaign_ids:
            logger.info("Reconciliation: no eligible campaigns")
            return summary

        logger.info(
            "Reconciliation run started: campaigns=%d concurrency=%d",
            len(campaign_ids), self._max_concurrency,
        )
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _run(campaign_id: str) -> None:
            async with semaphore:
                try:
                    result = await asyncio.wait_for(
                        self.reconcile(campaign_id), timeout=self._campaign_timeout_s,
                    )
                except asyncio.TimeoutError:
                    logger.warning("Reconciliation timed out: campaign=%s", campaign_id)
                    summary.record_error(campaign_id, "timeout")
                except TrafficLedgerError as e:
                    logger.warning(
                        "Reconciliation failed: campaign=%s code=%s detail=%s",
                        campaign_id, e.code, e.detail,
                    )
                    summary.record_error(campaign_id, e.code)
                except Exception as e:
                    logger.exception("Reconciliation crashed: campaign=%s", campaign_id)
                    summary.record_error(campaign_id, type(e).__name__)
                else:
                    summary.record(result)

        await asyncio.gather(*(_run(cid) for cid in campaign_ids))

        logger.info(
            "Reconciliation run complete: processed=%d errors=%d auto_paused=%d credits=%d",
            summary.processed, summary.errors, summary.auto_paused, summary.total_credits_deducted,
        )
        return summary

    # ------------------------------------------------------------------
    # Operator tools
    # ------------------------------------------------------------------

    async def preview(self, campaign_id: str) -> CreditPreview:
        """Read the vendor and report what the next pass would charge. Writes nothing."""
        campaign = load_campaign(campaign_id)
        if not campaign.vendor_project_id:
            raise InvalidTransition(
                detail="campaign has no vendor project",
                context={"campaign_id": campaign_id},
            )
        usage = await self._fetch_usage(campaign, utcnow())
        total_ever = usage.total_hits
        baseline_pending = campaign.last_stats_check is None
        pending = 0 if baseline_pending else max(0, total_ever - campaign.total_hits_counted)
        owed = pending * self._credits_per_hit
        account = find_account(campaign.account_id)
        return CreditPreview(
            campaign_id=campaign_id,
            total_hits_ever=total_ever,
            total_hits_counted=campaign.total_hits_counted,
            pending_units=pending,
            credits_owed=owed,
            account_credits=account.credits if account else None,
            baseline_pending=baseline_pending,
            sufficient_balance=account is not None and account.credits >= owed,
            hits_by_bucket=dict(sorted(usage.hits_by_bucket.items())),
        )

    async def rebaseline(self, campaign_id: str) -> ReconcileResult:
        """Move the checkpoint up to the vendor's current cumulative without charging.

        Never lowers the checkpoint.
        """
        async with self._locks.get(campaign_id):
            campaign = load_campaign(campaign_id)
            if not campaign.vendor_project_id or campaign.is_archived:
                raise InvalidTransition(
                    detail="campaign cannot be rebaselined",
                    context={"campaign_id": campaign_id, "state": campaign.state},
                )
            now = utcnow()
            usage = await self._fetch_usage(campaign, now)
            baseline = max(campaign.total_hits_counted, usage.total_hits)
            write_campaign(
                campaign,
                total_hits_counted=baseline,
                total_visits_counted=max(campaign.total_visits_counted, usage.total_visits),
                last_stats_check=now,
            )
        logger.warning(
            "Checkpoint rebaselined: campaign=%s from=%d to=%d",
            campaign_id, campaign.total_hits_counted, baseline,
        )
        return ReconcileResult(
            campaign_id=campaign_id,
            status=ReconcileStatus.BASELINE,
            total_hits_ever=usage.total_hits,
            total_hits_counted=baseline,
            message=f"skipped {baseline - campaign.total_hits_counted} unbilled hits",
        )


reconciliation_engine = ReconciliationEngine()
