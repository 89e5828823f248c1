"""First-seen bookkeeping for VMs stuck at zero uptime without a boot time."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


class DebounceTracker:
    """Remember when each zero-uptime VM was first observed.

    Every operation takes the same lock, so evaluation and reconciliation
    may interleave freely across tasks.
    """

    def __init__(self) -> None:
        self._first_seen: Dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    async def first_seen(self, vm_id: str) -> Tuple[Optional[datetime], bool]:
        async with self._lock:
            seen = self._first_seen.get(vm_id)
            return seen, seen is not None

    async def record_first_seen(self, vm_id: str, timestamp: datetime) -> None:
        async with self._lock:
            self._first_seen[vm_id] = timestamp

    async def forget(self, vm_id: str) -> None:
        async with self._lock:
            self._first_seen.pop(vm_id, None)

    async def reconcile(self, current_ids: Iterable[str]) -> int:
        """Drop every tracked VM missing from ``current_ids``; return how many."""

        present = set(current_ids)
        async with self._lock:
            stale = [vm_id for vm_id in self._first_seen if vm_id not in present]
            for vm_id in stale:
                del self._first_seen[vm_id]

        if stale:
            logger.debug("Forgot %d VM(s) no longer listed: %s", len(stale), ", ".join(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._first_seen)

    def __contains__(self, vm_id: object) -> bool:
        return vm_id in self._first_seen


__all__ = ["DebounceTracker"]
