import asyncio
from datetime import timedelta

import pytest

from vsphere_janitor.services.debounce_tracker import DebounceTracker

from conftest import A_TIME


@pytest.mark.anyio
async def test_first_seen_round_trip():
    tracker = DebounceTracker()

    assert await tracker.first_seen("vm-1") == (None, False)

    await tracker.record_first_seen("vm-1", A_TIME)

    assert await tracker.first_seen("vm-1") == (A_TIME, True)
    assert "vm-1" in tracker
    assert len(tracker) == 1


@pytest.mark.anyio
async def test_forget_is_idempotent():
    tracker = DebounceTracker()
    await tracker.record_first_seen("vm-1", A_TIME)

    await tracker.forget("vm-1")
    await tracker.forget("vm-1")

    assert len(tracker) == 0


@pytest.mark.anyio
async def test_reconcile_drops_ids_missing_from_listing():
    tracker = DebounceTracker()
    for vm_id in ("keep", "drop-1", "drop-2"):
        await tracker.record_first_seen(vm_id, A_TIME)

    removed = await tracker.reconcile(["keep", "never-tracked"])

    assert removed == 2
    assert "keep" in tracker
    assert "drop-1" not in tracker
    assert "never-tracked" not in tracker
    assert await tracker.reconcile(["keep"]) == 0


@pytest.mark.anyio
async def test_concurrent_updates_and_reconcile():
    tracker = DebounceTracker()
    ids = [f"vm-{i}" for i in range(50)]

    await asyncio.gather(
        *(tracker.record_first_seen(vm_id, A_TIME + timedelta(seconds=i)) for i, vm_id in enumerate(ids)),
        tracker.reconcile(ids),
    )
    await tracker.reconcile(ids[:10])

    assert len(tracker) == 10
    assert await tracker.first_seen("vm-3") == (A_TIME + timedelta(seconds=3), True)
