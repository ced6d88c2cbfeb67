"""
Admin Router: operator triggers for the background jobs.
=========================================================

All routes require X-Admin-Key (see core/admin_auth.py).

- POST /api/admin/reconcile-all        one full reconciliation sweep, now
- POST /api/admin/archive/sweep        archived -> delete-eligible
- POST /api/admin/archive/purge        delete-eligible -> purged
- GET  /api/admin/archive/stats
- GET  /api/admin/scheduler            scheduler status
- POST /api/admin/scheduler/start
- POST /api/admin/scheduler/stop
- POST /api/admin/scheduler/interval
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from trafficledger.config import settings
from trafficledger.core.admin_auth import require_admin
from trafficledger.routers.campaigns import get_reconciliation_engine
from trafficledger.services.archive_sweep import archive_stats, purge_delete_eligible, sweep_archive
from trafficledger.services.reconciliation import ReconciliationEngine
from trafficledger.services.scheduler import SchedulerController

logger = logging.getLogger(__name__)


class RetentionRequest(BaseModel):
    retention_days: Optional[int] = Field(default=None, ge=0)


class IntervalRequest(BaseModel):
    reconcile_interval_s: Optional[float] = Field(default=None, gt=0)
    archive_interval_s: Optional[float] = Field(default=None, gt=0)


router = APIRouter(dependencies=[Depends(require_admin)])


def get_scheduler(request: Request) -> SchedulerController:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler is not initialised.",
        )
    return scheduler


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@router.post("/reconcile-all")
async def reconcile_all(engine: ReconciliationEngine = Depends(get_reconciliation_engine)):
    summary = await engine.reconcile_all()
    return summary.to_dict()


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------

@router.post("/archive/sweep")
async def run_archive_sweep(body: Optional[RetentionRequest] = None):
    days = body.retention_days if body and body.retention_days is not None else settings.archive_retention_days
    result = await run_in_threadpool(sweep_archive, days)
    return {"modified_count": result.modified_count, "retention_days": days}


@router.post("/archive/purge")
async def run_archive_purge(body: Optional[RetentionRequest] = None):
    days = body.retention_days if body and body.retention_days is not None else settings.purge_retention_days
    result = await run_in_threadpool(purge_delete_eligible, days)
    return {"deleted_count": result.deleted_count, "retention_days": days}


@router.get("/archive/stats")
async def get_archive_stats():
    return archive_stats().to_dict()


# ---------------------------------------------------------------------------
# Scheduler control
# ---------------------------------------------------------------------------

@router.get("/scheduler")
async def scheduler_status(scheduler: SchedulerController = Depends(get_scheduler)):
    return scheduler.status()


@router.post("/scheduler/start")
async def scheduler_start(
    body: Optional[IntervalRequest] = None,
    scheduler: SchedulerController = Depends(get_scheduler),
):
    started = scheduler.start(
        reconcile_interval=body.reconcile_interval_s if body else None,
        archive_interval=body.archive_interval_s if body else None,
    )
    return {"started": started, **scheduler.status()}


@router.post("/scheduler/stop")
async def scheduler_stop(scheduler: SchedulerController = Depends(get_scheduler)):
    stopped = await scheduler.stop()
    return {"stopped": stopped, **scheduler.status()}


@router.post("/scheduler/interval")
async def scheduler_interval(
    body: IntervalRequest,
    scheduler: SchedulerController = Depends(get_scheduler),
):
    scheduler.update_interval(
        reconcile_interval=body.reconcile_interval_s,
        archive_interval=body.archive_interval_s,
    )
    return scheduler.status()
