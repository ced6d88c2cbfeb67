"""
Tests for the campaign lifecycle state machine.

Coverage:
  - create / provision / confirm
  - pause (user and insolvent), resume with and without balance
  - archive, idempotent re-archive, purge of delete-eligible campaigns
  - restore to prior state, including the insolvent fallback
  - best-effort vendor speed sync
  - transition table
"""

import pytest

from trafficledger.core.errors import (
    AccountNotFound,
    CampaignNotFound,
    InsufficientBalance,
    InvalidTransition,
    VendorUnavailable,
)
from trafficledger.config import settings
from trafficledger.models import CampaignState, PauseActor, PauseReason
from trafficledger.services.archive_sweep import sweep_archive
from trafficledger.services.ledger import find_campaign, load_campaign
from trafficledger.services.lifecycle import ALLOWED_TRANSITIONS, ArchiveOutcome, ensure_transition


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

class TestCreation:
    def test_create_starts_in_created_without_vendor_project(self, lifecycle, make_account):
        account = make_account()
        campaign = lifecycle.create(account.id, "Spring launch", target_url="https://example.com")

        assert campaign.state == CampaignState.CREATED.value
        assert campaign.vendor_project_id is None
        assert campaign.vendor == settings.default_vendor
        assert campaign.total_hits_counted == 0
        assert campaign.last_stats_check is None

    def test_create_requires_account(self, lifecycle):
        with pytest.raises(AccountNotFound):
            lifecycle.create("missing", "Orphan")

    @pytest.mark.asyncio
    async def test_provision_creates_vendor_project_and_confirms(self, lifecycle, fake_vendor, make_account):
        account = make_account()
        campaign = lifecycle.create(account.id, "Launch", target_url="https://example.com")

        updated = await lifecycle.provision(campaign.id, {"speed": 100})

        assert updated.state == CampaignState.ACTIVE.value
        assert updated.vendor_project_id == "proj-new-1"
        assert fake_vendor.created == [
            {"speed": 100, "title": "Launch", "urls": ["https://example.com"]},
        ]

    @pytest.mark.asyncio
    async def test_confirm_rejects_campaign_with_project(self, lifecycle, make_account, make_campaign):
        account = make_account()
        campaign = make_campaign(account.id, state=CampaignState.ACTIVE.value)

        with pytest.raises(InvalidTransition):
            await lifecycle.confirm(campaign.id, "proj-2")

        assert load_campaign(campaign.id).vendor_project_id == "proj-1"

    @pytest.mark.asyncio
    async def test_provision_after_pause_and_resume(self, lifecycle, fake_vendor, make_account):
        account = make_account(credits=10)
        campaign = lifecycle.create(account.id, "Early", target_url="https://example.com")
        await lifecycle.pause(campaign.id)
        await lifecycle.resume(campaign.id)

        updated = await lifecycle.provision(campaign.id)

        assert updated.state == CampaignState.ACTIVE.value
        assert updated.vendor_project_id == "proj-new-1"
        assert updated.reconcilable

    @pytest.mark.asyncio
    async def test_confirm_paused_campaign_keeps_pause(self, lifecycle, fake_vendor, make_account):
        account = make_account()
        campaign = lifecycle.create(account.id, "Held")
        await lifecycle.pause(campaign.id)

        updated = await lifecycle.confirm(campaign.id, "proj-7")

        assert updated.state == CampaignState.PAUSED.value
        assert updated.pause_reason == PauseReason.USER_REQUESTED.value
        assert updated.vendor_project_id == "proj-7"
        assert fake_vendor.speed_calls == [("proj-7", 0)]

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, lifecycle):
        with pytest.raises(CampaignNotFound):
            await lifecycle.pause("nope")


# ---------------------------------------------------------------------------
# Pause / resume
# ---------------------------------------------------------------------------

class TestPauseResume:
    @pytest.mark.asyncio
    async def test_user_pause_keeps_charging_enabled(self, lifecycle, fake_vendor, make_account, make_campaign):
        account = make_account()
        campaign = make_campaign(account.id)

        updated = await lifecycle.pause(campaign.id, PauseActor.USER)

        assert updated.state == CampaignState.PAUSED.value
        assert updated.pause_reason == PauseReason.USER_REQUESTED.value
        assert updated.credit_deduction_enabled is True
        assert fake_vendor.speed_calls == [("proj-1", 0)]

    @pytest.mark.asyncio
    async def test_pause_of_insolvent_campaign_stays_insolvent(self, lifecycle, make_account, make_campaign):
        account = make_account()
        campaign = make_campaign(
            account.id, state=CampaignState.PAUSED.value, pause_reason=PauseReason.INSOLVENT.value,
        )

        updated = await lifecycle.pause(campaign.id, PauseActor.ADMIN)

        assert updated.pause_reason == PauseReason.INSOLVENT.value
        assert updated.credit_deduction_enabled is False

    @pytest.mark.asyncio
    async def test_pause_archived_is_rejected(self, lifecycle, make_account, make_campaign, days_ago):
        account = make_account()
        campaign = make_campaign(account.id, state=CampaignState.ARCHIVED.value, archived_at=days_ago(1))

        with pytest.raises(InvalidTransition):
            await lifecycle.pause(campaign.id)

    @pytest.mark.asyncio
    async def test_pause_survives_vendor_failure(self, lifecycle, fake_vendor, make_account, make_campaign):
        account = make_account()
        campaign = make_campaign(account.id)
        fake_vendor.speed_error = VendorUnavailable(detail="connection refused")

        updated = await lifecycle.pause(campaign.id)

        assert updated.state == CampaignState.PAUSED.value

    @pytest.mark.asyncio
    async def test_resume_requires_positive_balance(self, lifecycle, make_account, make_campaign):
        account = make_account(credits=0)
        campaign = make_campaign(
            account.id, state=CampaignState.PAUSED.value, pause_reason=PauseReason.INSOLVENT.value,
        )

        with pytest.raises(InsufficientBalance) as exc_info:
            await lifecycle.resume(campaign.id)

        assert isinstance(exc_info.value, InvalidTransition)
        unchanged = load_campaign(campaign.id)
        assert unchanged.state == CampaignState.PAUSED.value
        assert unchanged.pause_reason == PauseReason.INSOLVENT.value

    @pytest.mark.asyncio
    async def test_resume_reenables_charging(self, lifecycle, fake_vendor, make_account, make_campaign):
        account = make_account(credits=5)
        campaign = make_campaign(
            account.id, state=CampaignState.PAUSED.value, pause_reason=PauseReason.INSOLVENT.value,
        )

        updated = await lifecycle.resume(campaign.id)

        assert updated.state == CampaignState.ACTIVE.value
        assert updated.pause_reason is None
        assert updated.credit_deduction_enabled is True
        assert fake_vendor.speed_calls == [("proj-1", settings.resume_speed)]

    @pytest.mark.asyncio
    async def test_resume_without_vendor_project_skips_vendor(self, lifecycle, fake_vendor, make_account, make_campaign):
        account = make_account(credits=5)
        campaign = make_campaign(account.id, state=CampaignState.CREATED.value, vendor_project_id=None)

        updated = await lifecycle.resume(campaign.id)

        assert updated.state == CampaignState.ACTIVE.value
        assert fake_vendor.speed_calls == []


# ---------------------------------------------------------------------------
# Archive / restore
# ---------------------------------------------------------------------------

class TestArchiveRestore:
    @pytest.mark.asyncio
    async def test_archive_records_prior_state(self, lifecycle, fake_vendor, make_account, make_campaign):
        account = make_account()
        campaign = make_campaign(account.id)

        result = await lifecycle.archive(campaign.id)

        assert result.outcome == ArchiveOutcome.ARCHIVED
        archived = result.campaign
        assert archived.is_archived
        assert archived.archived_at is not None
        assert archived.prior_state == CampaignState.ACTIVE.value
        assert archived.delete_eligible is False
        assert fake_vendor.speed_calls == [("proj-1", 0)]

    @pytest.mark.asyncio
    async def test_second_archive_is_noop_until_eligible(self, lifecycle, make_account, make_campaign):
        account = make_account()
        campaign = make_campaign(account.id)
        first = await lifecycle.archive(campaign.id)

        second = await lifecycle.archive(campaign.id)

        assert second.outcome == ArchiveOutcome.ALREADY_ARCHIVED
        assert second.campaign.archived_at == first.campaign.archived_at

    @pytest.mark.asyncio
    async def test_archive_of_delete_eligible_purges(self, lifecycle, make_account, make_campaign, days_ago):
        account = make_account()
        campaign = make_campaign(
            account.id,
            state=CampaignState.ARCHIVED.value,
            prior_state=CampaignState.ACTIVE.value,
            archived_at=days_ago(8),
        )
        assert sweep_archive(7).modified_count == 1

        result = await lifecycle.archive(campaign.id)

        assert result.outcome == ArchiveOutcome.PURGED
        assert result.campaign is None
        assert find_campaign(campaign.id) is None

    @pytest.mark.asyncio
    async def test_restore_paused_keeps_reason(self, lifecycle, make_account, make_campaign):
        account = make_account(credits=0)
        campaign = make_campaign(
            account.id, state=CampaignState.PAUSED.value, pause_reason=PauseReason.INSOLVENT.value,
        )
        await lifecycle.archive(campaign.id)

        restored = await lifecycle.restore(campaign.id)

        assert restored.state == CampaignState.PAUSED.value
        assert restored.pause_reason == PauseReason.INSOLVENT.value
        assert restored.archived_at is None
        assert restored.prior_state is None

    @pytest.mark.asyncio
    async def test_restore_active_with_balance(self, lifecycle, fake_vendor, make_account, make_campaign):
        account = make_account(credits=10)
        campaign = make_campaign(account.id)
        await lifecycle.archive(campaign.id)
        fake_vendor.speed_calls.clear()

        restored = await lifecycle.restore(campaign.id)

        assert restored.state == CampaignState.ACTIVE.value
        assert restored.pause_reason is None
        assert fake_vendor.speed_calls == [("proj-1", settings.resume_speed)]

    @pytest.mark.asyncio
    async def test_restore_active_without_balance_comes_back_insolvent(self, lifecycle, make_account, make_campaign):
        account = make_account(credits=0)
        campaign = make_campaign(account.id)
        await lifecycle.archive(campaign.id)

        restored = await lifecycle.restore(campaign.id)

        assert restored.state == CampaignState.PAUSED.value
        assert restored.is_auto_paused

    @pytest.mark.asyncio
    async def test_restore_clears_delete_eligibility(self, lifecycle, make_account, make_campaign, days_ago):
        account = make_account()
        campaign = make_campaign(
            account.id,
            state=CampaignState.ARCHIVED.value,
            prior_state=CampaignState.PAUSED.value,
            pause_reason=PauseReason.USER_REQUESTED.value,
            archived_at=days_ago(10),
        )
        sweep_archive(7)
        assert load_campaign(campaign.id).delete_eligible

        restored = await lifecycle.restore(campaign.id)

        assert restored.state == CampaignState.PAUSED.value
        assert restored.delete_eligible is False
        assert restored.is_archived is False

    @pytest.mark.asyncio
    async def test_restore_requires_archived(self, lifecycle, make_account, make_campaign):
        account = make_account()
        campaign = make_campaign(account.id)

        with pytest.raises(InvalidTransition):
            await lifecycle.restore(campaign.id)


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

class TestTransitionTable:
    @pytest.mark.parametrize("state", ["created", "active", "paused"])
    def test_live_states_can_pause_resume_archive(self, state):
        for operation in ("pause", "resume", "archive"):
            ensure_transition(state, operation)

    @pytest.mark.parametrize("operation", ["pause", "resume", "confirm", "auto_pause"])
    def test_archived_rejects_live_operations(self, operation):
        with pytest.raises(InvalidTransition):
            ensure_transition("archived", operation)

    def test_unknown_operation_is_rejected(self):
        with pytest.raises(InvalidTransition):
            ensure_transition("active", "teleport")

    def test_restore_only_from_archived(self):
        assert ALLOWED_TRANSITIONS["restore"] == frozenset({"archived"})
