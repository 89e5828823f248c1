"""Bounded, rate-limited execution of power-off and destroy actions.

Two admission controls apply at different points:
- Rate limiter: one tick per VM evaluation, spacing evaluations at least
  ``1 / rate_per_second`` seconds apart
- Concurrency semaphore: one permit per in-flight power-off/destroy worker
"""

from __future__ import annotations

import asyncio
import logging
from time import monotonic
from typing import Awaitable, Callable, Dict, List, Optional

from ..core.models import JanitorOptions, RunStats, VMActionError
from .metrics_service import (
    DESTROY_METER,
    ERRORS_COUNTER,
    POWEROFF_METER,
    MetricsRegistry,
    metrics_registry,
)
from .provider import VirtualMachine

logger = logging.getLogger(__name__)


class RateLimiter:
    """Ticking admission gate shared by every evaluation."""

    def __init__(
        self,
        rate_per_second: float,
        clock: Callable[[], float] = monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be greater than zero")
        self.interval = 1.0 / rate_per_second
        self._clock = clock
        self._sleep = sleep
        self._next_at: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            now = self._clock()
            if self._next_at is not None and now < self._next_at:
                await self._sleep(self._next_at - now)
                now = max(self._clock(), self._next_at)
            self._next_at = now + self.interval


class ExecutionCoordinator:
    """Owns the concurrency permits and rate limiter for one janitor."""

    def __init__(
        self,
        options: JanitorOptions,
        registry: Optional[MetricsRegistry] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.options = options
        self.registry = registry or metrics_registry
        self.rate_limiter = rate_limiter or RateLimiter(options.rate_per_second)
        self._semaphore = asyncio.Semaphore(max(1, options.concurrency))
        self.in_flight = 0
        self.max_in_flight = 0

    def start_batch(self, path: str, stats: RunStats) -> "ExecutionBatch":
        return ExecutionBatch(self, path, stats)

    async def run(self, path: str, vm: VirtualMachine, stats: RunStats) -> None:
        """Power off and destroy ``vm``; every failure ends up in ``stats``."""

        try:
            async with self._semaphore:
                self.in_flight += 1
                self.max_in_flight = max(self.max_in_flight, self.in_flight)
                try:
                    await self._power_off_and_destroy(path, vm, stats)
                finally:
                    self.in_flight -= 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(
                "Unexpected failure handling VM path=%s vm=%s", path, vm.name
            )
            self.record_error(stats, vm, "cleanup", str(exc) or type(exc).__name__)

    async def _power_off_and_destroy(
        self, path: str, vm: VirtualMachine, stats: RunStats
    ) -> None:
        logger.info(
            "Handling power off and destroy path=%s vm=%s uptime=%s",
            path,
            vm.name,
            vm.uptime,
        )

        if vm.powered_on:
            logger.info("Powering off instance path=%s vm=%s", path, vm.name)
            try:
                await vm.power_off()
            except Exception as exc:
                logger.error(
                    "Couldn't power off instance path=%s vm=%s: %s", path, vm.name, exc
                )
                self.record_error(stats, vm, "power-off", str(exc))
                return
            stats.powered_off += 1
            self.registry.get_or_register_meter(POWEROFF_METER).mark(1)

        if self.options.skip_destroy:
            logger.info("Skipping destroy step path=%s vm=%s", path, vm.name)
            return

        logger.info("Destroying instance path=%s vm=%s", path, vm.name)
        try:
            await vm.destroy()
        except Exception as exc:
            logger.error(
                "Couldn't destroy instance path=%s vm=%s: %s", path, vm.name, exc
            )
            self.record_error(stats, vm, "destroy", str(exc))
            return

        stats.destroyed += 1
        self.registry.get_or_register_meter(DESTROY_METER).mark(1)
        logger.info("Destroyed instance path=%s vm=%s", path, vm.name)

    def record_error(
        self, stats: RunStats, vm: VirtualMachine, action: str, message: str
    ) -> None:
        stats.errors.append(
            VMActionError(vm_id=vm.id, vm_name=vm.name, action=action, message=message)
        )
        self.registry.get_or_register_counter(ERRORS_COUNTER).inc()


class ExecutionBatch:
    """Workers fanned out by one cleanup call, joined before it returns."""

    def __init__(self, coordinator: ExecutionCoordinator, path: str, stats: RunStats):
        self._coordinator = coordinator
        self._path = path
        self._stats = stats
        self._tasks: Dict[object, asyncio.Task[None]] = {}

    def dispatch(self, vm: VirtualMachine) -> bool:
        """Start a worker for ``vm`` unless one already exists in this batch."""

        key: object = vm.id or id(vm)
        if key in self._tasks:
            logger.warning(
                "VM already dispatched in this run path=%s vm=%s", self._path, vm.name
            )
            return False

        self._tasks[key] = asyncio.create_task(
            self._coordinator.run(self._path, vm, self._stats),
            name=f"janitor-vm-{vm.name}",
        )
        return True

    def __len__(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        tasks: List[asyncio.Task[None]] = list(self._tasks.values())
        if not tasks:
            return
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            self.cancel()
            raise

    def cancel(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()


__all__ = ["ExecutionBatch", "ExecutionCoordinator", "RateLimiter"]
