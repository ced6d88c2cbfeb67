"""
Scheduler Controller
====================

Runs two independent background jobs:

- reconciliation (``ReconciliationEngine.reconcile_all``) every
  ``reconcile_interval_s`` seconds
- archive sweep + purge every ``archive_sweep_interval_s`` seconds

Each job waits one interval before its first run. A job raising is logged
and counted; neither job's failure affects its own or the other's later
runs. The controller is created in the FastAPI lifespan and kept on
``app.state.scheduler``; there is no module-level instance.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from trafficledger.config import settings
from trafficledger.core.structured_logging import job_var
from trafficledger.models.common import utcnow
from trafficledger.services.archive_sweep import purge_delete_eligible, sweep_archive
from trafficledger.services.reconciliation import ReconciliationEngine, reconciliation_engine

logger = logging.getLogger(__name__)

RECONCILE_JOB = "reconcile"
ARCHIVE_JOB = "archive_sweep"

Job = Callable[[], Awaitable[Any]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class JobStats:
    interval_s: float
    runs: int = 0
    failures: int = 0
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_result: Optional[dict] = None


class SchedulerController:
    """Start/stop/re-time the periodic reconciliation and archive jobs."""

    def __init__(
        self,
        engine: Optional[ReconciliationEngine] = None,
        reconcile_interval_s: Optional[float] = None,
        archive_interval_s: Optional[float] = None,
        reconcile_job: Optional[Job] = None,
        archive_job: Optional[Job] = None,
    ):
        self._engine = engine or reconciliation_engine
        self._jobs: dict[str, Job] = {
            RECONCILE_JOB: reconcile_job or self._reconcile,
            ARCHIVE_JOB: archive_job or self._archive,
        }
        self._stats: dict[str, JobStats] = {
            RECONCILE_JOB: JobStats(interval_s=reconcile_interval_s or settings.reconcile_interval_s),
            ARCHIVE_JOB: JobStats(interval_s=archive_interval_s or settings.archive_sweep_interval_s),
        }
        self._tasks: dict[str, asyncio.Task] = {}
        self._wake: dict[str, asyncio.Event] = {}
        self._state = SchedulerState.IDLE
        self._started_at: Optional[datetime] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(
        self,
        reconcile_interval: Optional[float] = None,
        archive_interval: Optional[float] = None,
    ) -> bool:
        """Start both loops. Returns False if already running. Needs a running event loop."""
        if self._state == SchedulerState.RUNNING:
            return False
        self._apply_intervals(reconcile_interval, archive_interval)
        for name in self._jobs:
            self._wake[name] = asyncio.Event()
            self._tasks[name] = asyncio.create_task(self._loop(name), name=f"scheduler:{name}")
        self._state = SchedulerState.RUNNING
        self._started_at = utcnow()
        logger.info(
            "Scheduler started: reconcile_every=%ss archive_every=%ss",
            self._stats[RECONCILE_JOB].interval_s, self._stats[ARCHIVE_JOB].interval_s,
        )
        return True

    async def stop(self) -> bool:
        """Cancel both loops and wait for them. Returns False if already idle."""
        if self._state == SchedulerState.IDLE:
            return False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self._wake.clear()
        self._state = SchedulerState.IDLE
        self._started_at = None
        logger.info("Scheduler stopped")
        return True

    def update_interval(
        self,
        reconcile_interval: Optional[float] = None,
        archive_interval: Optional[float] = None,
    ) -> None:
        """Change intervals. Running loops restart their wait with the new value."""
        changed = self._apply_intervals(reconcile_interval, archive_interval)
        for name in changed:
            event = self._wake.get(name)
            if event is not None:
                event.set()
        if changed:
            logger.info(
                "Scheduler intervals updated: reconcile_every=%ss archive_every=%ss",
                self._stats[RECONCILE_JOB].interval_s, self._stats[ARCHIVE_JOB].interval_s,
            )

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "jobs": {
                name: {
                    **asdict(stats),
                    "last_started_at": stats.last_started_at.isoformat() if stats.last_started_at else None,
                    "last_finished_at": stats.last_finished_at.isoformat() if stats.last_finished_at else None,
                }
                for name, stats in self._stats.items()
            },
        }

    async def run_job(self, name: str) -> Optional[dict]:
        """Run one job now, outside the loop. Errors are recorded, not raised."""
        return await self._run(name)

    # ------------------------------------------------------------------
    # Loop internals
    # ------------------------------------------------------------------

    def _apply_intervals(
        self,
        reconcile_interval: Optional[float],
        archive_interval: Optional[float],
    ) -> list[str]:
        changed = []
        for name, value in ((RECONCILE_JOB, reconcile_interval), (ARCHIVE_JOB, archive_interval)):
            if value is None:
                continue
            if value <= 0:
                raise ValueError(f"{name} interval must be positive, got {value}")
            if value != self._stats[name].interval_s:
                self._stats[name].interval_s = value
                changed.append(name)
        return changed

    async def _loop(self, name: str) -> None:
        try:
            while True:
                if await self._sleep(name):
                    continue
                await self._run(name)
        except asyncio.CancelledError:
            logger.info("Scheduler loop cancelled: job=%s", name)
            raise

    async def _sleep(self, name: str) -> bool:
        """Wait one interval. True when woken early by an interval change."""
        event = self._wake[name]
        event.clear()
        try:
            await asyncio.wait_for(event.wait(), timeout=self._stats[name].interval_s)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self, name: str) -> Optional[dict]:
        stats = self._stats[name]
        token = job_var.set(f"{name}:{uuid.uuid4().hex[:8]}")
        stats.last_started_at = utcnow()
        try:
            result = await self._jobs[name]()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            stats.failures += 1
            stats.last_error = f"{type(e).__name__}: {e}"
            logger.exception("Scheduled job failed: job=%s", name)
            return None
        else:
            stats.last_error = None
            stats.last_result = result if isinstance(result, dict) else None
            return stats.last_result
        finally:
            stats.runs += 1
            stats.last_finished_at = utcnow()
            job_var.reset(token)

    async def _reconcile(self) -> dict:
        summary = await self._engine.reconcile_all()
        return summary.to_dict()

    async def _archive(self) -> dict:
        swept = await asyncio.to_thread(sweep_archive, settings.archive_retention_days)
        purged = await asyncio.to_thread(purge_delete_eligible, settings.purge_retention_days)
        return {"modified_count": swept.modified_count, "deleted_count": purged.deleted_count}
