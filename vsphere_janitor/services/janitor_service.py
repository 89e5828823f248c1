"""Cleanup decision engine and the loop that drives it across inventory paths."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ..core.config import settings
from ..core.models import JanitorOptions, RunStats, SkipReason, VMAction, VMDecision
from .debounce_tracker import DebounceTracker
from .execution_service import ExecutionCoordinator
from .metrics_service import (
    ERRORS_COUNTER,
    TOTAL_VMS_GAUGE,
    MetricsRegistry,
    metrics_registry,
)
from .provider import ProviderError, VirtualMachine, VMProvider

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Janitor:
    """Decide, per VM, whether to skip it or power it off and destroy it."""

    def __init__(
        self,
        provider: VMProvider,
        options: Optional[JanitorOptions] = None,
        registry: Optional[MetricsRegistry] = None,
        coordinator: Optional[ExecutionCoordinator] = None,
    ):
        self.provider = provider
        self.options = options or JanitorOptions()
        self.registry = registry or metrics_registry
        self.coordinator = coordinator or ExecutionCoordinator(self.options, self.registry)
        self.last_stats: Dict[str, RunStats] = {}
        self._trackers: Dict[str, DebounceTracker] = {}

    def tracker_for(self, path: str) -> DebounceTracker:
        """Return the zero-uptime tracker for ``path``, creating it on first use."""

        tracker = self._trackers.get(path)
        if tracker is None:
            tracker = self._trackers[path] = DebounceTracker()
        return tracker

    @property
    def tracked_count(self) -> int:
        return sum(len(tracker) for tracker in self._trackers.values())

    async def cleanup(self, path: str, now: datetime) -> RunStats:
        """Evaluate every VM under ``path`` and reclaim the ones that qualify.

        Raises ``ProviderError`` when the path cannot be listed. Per-VM
        failures are collected in the returned stats instead.
        """

        stats = RunStats(path=path, started_at=now)
        self.last_stats[path] = stats

        try:
            vms = await self.provider.list_vms(path)
        except Exception as exc:
            logger.error("Failed to list VMs path=%s: %s", path, exc)
            stats.listing_error = str(exc) or type(exc).__name__
            stats.finished_at = _utcnow()
            self.registry.get_or_register_counter(ERRORS_COUNTER).inc()
            if isinstance(exc, ProviderError):
                raise
            raise ProviderError("list", path, None, stats.listing_error) from exc

        tracker = self.tracker_for(path)
        batch = self.coordinator.start_batch(path, stats)
        listed_ids: List[str] = []

        try:
            for vm in vms:
                await self.coordinator.rate_limiter.wait()
                stats.total += 1

                try:
                    if vm.id:
                        listed_ids.append(vm.id)
                    decision = await self.evaluate(path, vm, now)
                except Exception as exc:
                    logger.exception("Error evaluating VM path=%s", path)
                    self.coordinator.record_error(
                        stats, vm, "evaluate", str(exc) or type(exc).__name__
                    )
                    continue

                if decision.qualifies:
                    stats.qualified += 1
                    batch.dispatch(vm)
                else:
                    stats.skipped += 1

            await tracker.reconcile(listed_ids)
            await batch.join()
        finally:
            batch.cancel()

        self.registry.get_or_register_gauge(TOTAL_VMS_GAUGE).update(stats.total)
        stats.finished_at = _utcnow()

        logger.info(
            "Cleanup finished path=%s total=%d qualified=%d powered_off=%d destroyed=%d errors=%d",
            path,
            stats.total,
            stats.qualified,
            stats.powered_off,
            stats.destroyed,
            len(stats.errors),
        )
        return stats

    async def evaluate(self, path: str, vm: VirtualMachine, now: datetime) -> VMDecision:
        """Apply the cleanup policy to a single VM."""

        tracker = self.tracker_for(path)
        uptime = vm.uptime
        boot_time = vm.boot_time

        if uptime <= timedelta(0) and boot_time is None:
            return await self._evaluate_zero_uptime(path, vm, now, tracker)

        if vm.id:
            await tracker.forget(vm.id)

        if boot_time is None and self.options.skip_no_boot_time:
            logger.info("Instance has no boot time, skipping path=%s vm=%s", path, vm.name)
            return VMDecision(VMAction.SKIP, SkipReason.NO_BOOT_TIME)

        if boot_time is not None:
            logger.info(
                "Instance booted path=%s vm=%s boot_time=%s",
                path,
                vm.name,
                boot_time,
            )

        if uptime < self.options.cutoff and vm.powered_on:
            logger.info(
                "Skipping instance path=%s vm=%s uptime=%s powered_on=%s",
                path,
                vm.name,
                uptime,
                vm.powered_on,
            )
            return VMDecision(VMAction.SKIP, SkipReason.UNDER_CUTOFF)

        return self._reclaim()

    async def _evaluate_zero_uptime(
        self, path: str, vm: VirtualMachine, now: datetime, tracker: DebounceTracker
    ) -> VMDecision:
        if not vm.id:
            logger.info(
                "Instance has 0 uptime and no identity yet, skipping path=%s vm=%s",
                path,
                vm.name,
            )
            return VMDecision(VMAction.SKIP, SkipReason.NO_IDENTITY)

        first_seen, found = await tracker.first_seen(vm.id)
        if not found:
            await tracker.record_first_seen(vm.id, now)
            logger.info(
                "Instance has 0 uptime, first seen now, skipping path=%s vm=%s",
                path,
                vm.name,
            )
            return VMDecision(VMAction.SKIP, SkipReason.DEBOUNCE_FIRST_SEEN)

        waited = now - first_seen
        if waited < self.options.zero_uptime_cutoff:
            logger.info(
                "Instance has 0 uptime, skipping path=%s vm=%s first_seen_ago=%s",
                path,
                vm.name,
                waited,
            )
            return VMDecision(VMAction.SKIP, SkipReason.DEBOUNCE_PENDING)

        await tracker.forget(vm.id)
        logger.info(
            "Instance has had 0 uptime past the grace period path=%s vm=%s first_seen_ago=%s",
            path,
            vm.name,
            waited,
        )
        return self._reclaim()

    def _reclaim(self) -> VMDecision:
        if self.options.skip_destroy:
            return VMDecision(VMAction.POWER_OFF)
        return VMDecision(VMAction.POWER_OFF_AND_DESTROY)


class JanitorService:
    """Run cleanup passes over the configured inventory paths."""

    def __init__(self, registry: Optional[MetricsRegistry] = None):
        self.registry = registry or metrics_registry
        self.provider: Optional[VMProvider] = None
        self.janitor: Optional[Janitor] = None
        self.passes_completed = 0
        self.last_pass_at: Optional[datetime] = None
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._pass_lock = asyncio.Lock()
        self._wake_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def paths(self) -> List[str]:
        return settings.get_vm_paths_list()

    def _build_provider(self) -> VMProvider:
        if settings.dummy_data:
            from .memory_provider import InMemoryVMProvider

            logger.info("DUMMY_DATA enabled - using in-memory VM provider")
            return InMemoryVMProvider.with_dummy_data(self.paths, _utcnow())

        from .vsphere_service import VSphereProvider

        return VSphereProvider(
            settings.vsphere_url or "",
            insecure=settings.vsphere_insecure,
            poll_interval=settings.vsphere_task_poll_interval,
        )

    def configure(self, provider: Optional[VMProvider] = None) -> Janitor:
        """Create the janitor, building the provider from settings if needed."""

        self.provider = provider or self._build_provider()
        self.janitor = Janitor(
            self.provider,
            JanitorOptions.from_settings(settings),
            registry=self.registry,
        )
        return self.janitor

    async def start(self) -> None:
        """Start the cleanup loop in the background."""

        if self.running:
            logger.debug("Janitor loop already running; skipping duplicate start")
            return
        if self.janitor is None:
            self.configure()

        self._pass_lock = asyncio.Lock()
        self._wake_event = asyncio.Event()
        logger.info("Starting janitor loop for %d path(s)", len(self.paths))
        self._loop_task = asyncio.create_task(self._cleanup_loop(), name="janitor-loop")

    async def stop(self) -> None:
        """Stop the loop and release the provider."""

        logger.info("Stopping janitor loop")
        task = self._loop_task
        self._loop_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self.provider is not None:
            await self.provider.close()

    def trigger(self) -> None:
        """Wake the loop so the next pass starts immediately."""

        self._wake_event.set()

    async def run_pass(self) -> List[RunStats]:
        """Clean up every configured path once."""

        if self.janitor is None:
            self.configure()
        assert self.janitor is not None

        results: List[RunStats] = []
        async with self._pass_lock:
            for path in self.paths:
                try:
                    stats = await self.janitor.cleanup(path, _utcnow())
                except ProviderError as exc:
                    logger.error("Cleanup of path=%s failed: %s", path, exc.message)
                    stats = self.janitor.last_stats[path]
                results.append(stats)

            self.passes_completed += 1
            self.last_pass_at = _utcnow()
        return results

    async def _cleanup_loop(self) -> None:
        while True:
            self._wake_event.clear()
            try:
                await self.run_pass()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - defensive logging
                logger.exception("Cleanup pass failed: %s", exc)

            if settings.run_once:
                logger.info("Finishing after one run")
                return

            sleep_seconds = max(0.0, settings.cleanup_loop_sleep_seconds)
            logger.info("Sleeping %.0fs before next cleanup pass", sleep_seconds)
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=sleep_seconds)
            except asyncio.TimeoutError:
                pass
            else:
                logger.info("Cleanup pass requested early")

    def last_runs(self) -> List[RunStats]:
        if self.janitor is None:
            return []
        return [
            self.janitor.last_stats[path]
            for path in self.paths
            if path in self.janitor.last_stats
        ]


# Global service instance
janitor_service = JanitorService()

__all__ = ["Janitor", "JanitorService", "janitor_service"]
