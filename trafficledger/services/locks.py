"""
Per-campaign locks.

One asyncio.Lock per campaign id, shared by the scheduler, manual
reconciliation triggers and lifecycle operations, so at most one of them
mutates a given campaign at a time. Locks nobody holds or waits on are
dropped automatically.
"""

import asyncio
import weakref


class CampaignLocks:
    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, campaign_id: str) -> asyncio.Lock:
        lock = self._locks.get(campaign_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[campaign_id] = lock
        return lock

    def locked(self, campaign_id: str) -> bool:
        lock = self._locks.get(campaign_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


campaign_locks = CampaignLocks()
