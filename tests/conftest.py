"""
Pytest configuration for trafficledger tests.
Points the database and logs at a temp directory and disables the scheduler.
"""

import os
import tempfile

# Must be set before any trafficledger imports
_test_data_dir = tempfile.mkdtemp(prefix="trafficledger_test_")
os.environ.setdefault("TRAFFICLEDGER_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("TRAFFICLEDGER_LOG_DIRECTORY", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("TRAFFICLEDGER_SCHEDULER_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")

from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from sqlalchemy import delete
from sqlmodel import SQLModel

from trafficledger.core.database import get_engine, get_session_context
from trafficledger.models import Account, Campaign, CampaignState
from trafficledger.models.common import utcnow
from trafficledger.services.lifecycle import CampaignLifecycle
from trafficledger.services.locks import CampaignLocks
from trafficledger.services.reconciliation import ReconciliationEngine
from trafficledger.services.vendors import TrafficVendor, VendorUsage, register_vendor, reset_vendors

SQLModel.metadata.create_all(get_engine())

# Load error registry so TrafficLedgerError returns correct HTTP status codes
from trafficledger.core.errors.registry import error_registry
error_registry.load()


# ---------------------------------------------------------------------------
# Fake vendor
# ---------------------------------------------------------------------------

class FakeVendor(TrafficVendor):
    """Scriptable vendor: per-project cumulative readings and failures."""

    name = "fake"

    def __init__(self):
        self.readings: Dict[str, int] = {}
        self.visits: Dict[str, int] = {}
        self.errors: Dict[str, Exception] = {}
        self.speed_error: Optional[Exception] = None
        self.usage_calls: List[Tuple[str, date, date]] = []
        self.speed_calls: List[Tuple[str, int]] = []
        self.created: List[dict] = []
        self.on_usage: Optional[Callable[[str], None]] = None

    def set_reading(self, project_id: str, hits: int, visits: int = 0) -> None:
        self.readings[project_id] = hits
        self.visits[project_id] = visits

    async def get_usage(self, project_id, from_date, to_date):
        self.usage_calls.append((project_id, from_date, to_date))
        if self.on_usage is not None:
            self.on_usage(project_id)
        if project_id in self.errors:
            raise self.errors[project_id]
        hits = self.readings.get(project_id, 0)
        visits = self.visits.get(project_id, 0)
        # Split across two day buckets so callers must sum them
        return VendorUsage(
            hits_by_bucket={"2026-01-01": hits // 2, "2026-01-02": hits - hits // 2},
            visits_by_bucket={"2026-01-01": visits},
        )

    async def set_speed(self, project_id, speed):
        self.speed_calls.append((project_id, speed))
        if self.speed_error is not None:
            raise self.speed_error

    async def create_project(self, payload):
        self.created.append(payload)
        return f"proj-new-{len(self.created)}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def clean_db():
    """Empty ledger tables before each test."""
    with get_engine().begin() as conn:
        conn.execute(delete(Campaign.__table__))
        conn.execute(delete(Account.__table__))
    yield


@pytest.fixture
def fake_vendor():
    return FakeVendor()


@pytest.fixture
def registered_vendor(fake_vendor):
    """Install the fake vendor under the default vendor name for module-level services."""
    register_vendor("sparktraffic", fake_vendor)
    yield fake_vendor
    reset_vendors()


@pytest.fixture
def locks():
    return CampaignLocks()


@pytest.fixture
def lifecycle(fake_vendor, locks):
    return CampaignLifecycle(vendor_resolver=lambda name: fake_vendor, locks=locks)


@pytest.fixture
def engine(fake_vendor, locks, lifecycle):
    return ReconciliationEngine(
        vendor_resolver=lambda name: fake_vendor,
        locks=locks,
        lifecycle=lifecycle,
        credits_per_hit=1,
        max_concurrency=4,
        batch_limit=100,
        campaign_timeout_s=5.0,
    )


@pytest.fixture
def make_account():
    def _make(credits: int = 1000, available_hits: Optional[int] = None, account_id: Optional[str] = None) -> Account:
        account = Account(credits=credits, available_hits=credits if available_hits is None else available_hits)
        if account_id:
            account.id = account_id
        with get_session_context() as session:
            session.add(account)
            session.commit()
            session.refresh(account)
        return account
    return _make


@pytest.fixture
def make_campaign():
    def _make(
        account_id: str,
        state: str = CampaignState.ACTIVE.value,
        vendor_project_id: Optional[str] = "proj-1",
        **fields,
    ) -> Campaign:
        campaign = Campaign(
            account_id=account_id,
            title=fields.pop("title", "Test campaign"),
            state=state,
            vendor_project_id=vendor_project_id,
            **fields,
        )
        with get_session_context() as session:
            session.add(campaign)
            session.commit()
            session.refresh(campaign)
        return campaign
    return _make


@pytest.fixture
def days_ago():
    def _ago(days: float):
        return utcnow() - timedelta(days=days)
    return _ago
