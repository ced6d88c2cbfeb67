"""
Campaign Router
===============

Thin HTTP surface over the lifecycle service and the reconciliation engine.

- POST   /api/campaigns                      create (state=created)
- GET    /api/campaigns/{id}                 fetch
- POST   /api/campaigns/{id}/provision       create vendor project, then confirm
- POST   /api/campaigns/{id}/confirm         created -> active with a known project id
- POST   /api/campaigns/{id}/pause
- POST   /api/campaigns/{id}/resume          requires a positive balance
- DELETE /api/campaigns/{id}                 archive; purge when delete-eligible
- POST   /api/campaigns/{id}/restore
- POST   /api/campaigns/{id}/reconcile       one reconciliation pass, now
- GET    /api/campaigns/{id}/credit-preview  what the next pass would charge
- POST   /api/campaigns/{id}/rebaseline      admin: move checkpoint to vendor total

Domain errors are raised as TrafficLedgerError and rendered by the error
middleware.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from trafficledger.core.admin_auth import require_admin
from trafficledger.models import Campaign, PauseActor
from trafficledger.services.ledger import load_campaign
from trafficledger.services.lifecycle import CampaignLifecycle, campaign_lifecycle
from trafficledger.services.reconciliation import ReconciliationEngine, reconciliation_engine

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class CreateCampaignRequest(BaseModel):
    account_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=255)
    target_url: Optional[str] = None
    vendor: Optional[str] = Field(default=None, description="Vendor adapter name")


class ProvisionRequest(BaseModel):
    payload: Dict[str, Any] = Field(default_factory=dict, description="Vendor project fields")


class ConfirmRequest(BaseModel):
    vendor_project_id: str = Field(..., min_length=1, max_length=128)


class PauseRequest(BaseModel):
    actor: PauseActor = PauseActor.USER


class CampaignResponse(BaseModel):
    id: str
    account_id: str
    title: str
    target_url: Optional[str] = None
    vendor: str
    vendor_project_id: Optional[str] = None
    state: str
    pause_reason: Optional[str] = None
    prior_state: Optional[str] = None
    is_archived: bool
    archived_at: Optional[datetime] = None
    delete_eligible: bool
    delete_eligible_at: Optional[datetime] = None
    credit_deduction_enabled: bool
    total_hits_counted: int
    total_visits_counted: int
    last_stats_check: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime


class ArchiveResponse(BaseModel):
    outcome: str
    campaign_id: str
    campaign: Optional[CampaignResponse] = None


def to_response(campaign: Campaign) -> CampaignResponse:
    return CampaignResponse(
        id=campaign.id,
        account_id=campaign.account_id,
        title=campaign.title,
        target_url=campaign.target_url,
        vendor=campaign.vendor,
        vendor_project_id=campaign.vendor_project_id,
        state=campaign.state,
        pause_reason=campaign.pause_reason,
        prior_state=campaign.prior_state,
        is_archived=campaign.is_archived,
        archived_at=campaign.archived_at,
        delete_eligible=campaign.delete_eligible,
        delete_eligible_at=campaign.delete_eligible_at,
        credit_deduction_enabled=campaign.credit_deduction_enabled,
        total_hits_counted=campaign.total_hits_counted,
        total_visits_counted=campaign.total_visits_counted,
        last_stats_check=campaign.last_stats_check,
        version=campaign.version,
        created_at=campaign.created_at,
        updated_at=campaign.updated_at,
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_lifecycle() -> CampaignLifecycle:
    return campaign_lifecycle


def get_reconciliation_engine() -> ReconciliationEngine:
    return reconciliation_engine


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------
router = APIRouter()


@router.post(
    "",
    response_model=CampaignResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a campaign",
)
async def create_campaign(
    body: CreateCampaignRequest,
    lifecycle: CampaignLifecycle = Depends(get_lifecycle),
):
    campaign = lifecycle.create(
        account_id=body.account_id,
        title=body.title,
        target_url=body.target_url,
        vendor=body.vendor,
    )
    return to_response(campaign)


@router.get("/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(campaign_id: str):
    return to_response(load_campaign(campaign_id))


@router.post("/{campaign_id}/provision", response_model=CampaignResponse)
async def provision_campaign(
    campaign_id: str,
    body: Optional[ProvisionRequest] = None,
    lifecycle: CampaignLifecycle = Depends(get_lifecycle),
):
    payload = body.payload if body else {}
    return to_response(await lifecycle.provision(campaign_id, payload))


@router.post("/{campaign_id}/confirm", response_model=CampaignResponse)
async def confirm_campaign(
    campaign_id: str,
    body: ConfirmRequest,
    lifecycle: CampaignLifecycle = Depends(get_lifecycle),
):
    return to_response(await lifecycle.confirm(campaign_id, body.vendor_project_id))


@router.post("/{campaign_id}/pause", response_model=CampaignResponse)
async def pause_campaign(
    campaign_id: str,
    body: Optional[PauseRequest] = None,
    lifecycle: CampaignLifecycle = Depends(get_lifecycle),
):
    actor = body.actor if body else PauseActor.USER
    return to_response(await lifecycle.pause(campaign_id, actor))


@router.post("/{campaign_id}/resume", response_model=CampaignResponse)
async def resume_campaign(
    campaign_id: str,
    lifecycle: CampaignLifecycle = Depends(get_lifecycle),
):
    return to_response(await lifecycle.resume(campaign_id))


@router.delete("/{campaign_id}", response_model=ArchiveResponse)
async def delete_campaign(
    campaign_id: str,
    lifecycle: CampaignLifecycle = Depends(get_lifecycle),
):
    """Soft delete. Calling it again after the archive sweep purges the campaign."""
    result = await lifecycle.archive(campaign_id)
    return ArchiveResponse(
        outcome=result.outcome.value,
        campaign_id=result.campaign_id,
        campaign=to_response(result.campaign) if result.campaign else None,
    )


@router.post("/{campaign_id}/restore", response_model=CampaignResponse)
async def restore_campaign(
    campaign_id: str,
    lifecycle: CampaignLifecycle = Depends(get_lifecycle),
):
    return to_response(await lifecycle.restore(campaign_id))


@router.post("/{campaign_id}/reconcile")
async def reconcile_campaign(
    campaign_id: str,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    """Run one reconciliation pass now, under the same lock as the scheduler."""
    result = await engine.reconcile(campaign_id)
    return result.to_dict()


@router.get("/{campaign_id}/credit-preview")
async def credit_preview(
    campaign_id: str,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    preview = await engine.preview(campaign_id)
    return preview.to_dict()


@router.post("/{campaign_id}/rebaseline", dependencies=[Depends(require_admin)])
async def rebaseline_campaign(
    campaign_id: str,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    """Forgive unbilled usage by moving the checkpoint up to the vendor total."""
    result = await engine.rebaseline(campaign_id)
    return result.to_dict()
