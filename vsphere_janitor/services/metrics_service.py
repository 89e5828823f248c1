"""In-process metrics registry with a periodic log reporter."""
from __future__ import annotations

import asyncio
import logging
import threading
from time import monotonic
from typing import Any, Callable, Dict, Optional

from ..core.config import settings

logger = logging.getLogger(__name__)

TOTAL_VMS_GAUGE = "vsphere.janitor.cleanup.vms.total"
POWEROFF_METER = "vsphere.janitor.cleanup.vms.poweroff"
DESTROY_METER = "vsphere.janitor.cleanup.vms.destroy"
ERRORS_COUNTER = "vsphere.janitor.cleanup.errors"


class Gauge:
    """Last reported value."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def update(self, value: int) -> None:
        with self._lock:
            self._value = value

    @property
    def value(self) -> int:
        return self._value


class Counter:
    """Monotonic count."""

    def __init__(self) -> None:
        self._count = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._count += amount

    @property
    def count(self) -> int:
        return self._count


class Meter:
    """Count of marked events and their mean rate since registration."""

    def __init__(self, clock: Callable[[], float] = monotonic) -> None:
        self._clock = clock
        self._started = clock()
        self._count = 0
        self._lock = threading.Lock()

    def mark(self, amount: int = 1) -> None:
        with self._lock:
            self._count += amount

    @property
    def count(self) -> int:
        return self._count

    @property
    def mean_rate(self) -> float:
        elapsed = self._clock() - self._started
        if elapsed <= 0:
            return 0.0
        return self._count / elapsed


class MetricsRegistry:
    """Named gauges, counters and meters shared across cleanup tasks."""

    def __init__(self) -> None:
        self._gauges: Dict[str, Gauge] = {}
        self._counters: Dict[str, Counter] = {}
        self._meters: Dict[str, Meter] = {}
        self._lock = threading.Lock()
        self._reporter_task: Optional[asyncio.Task[None]] = None

    def get_or_register_gauge(self, name: str) -> Gauge:
        with self._lock:
            return self._gauges.setdefault(name, Gauge())

    def get_or_register_counter(self, name: str) -> Counter:
        with self._lock:
            return self._counters.setdefault(name, Counter())

    def get_or_register_meter(self, name: str) -> Meter:
        with self._lock:
            return self._meters.setdefault(name, Meter())

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            gauges = dict(self._gauges)
            counters = dict(self._counters)
            meters = dict(self._meters)

        return {
            "gauges": {name: gauge.value for name, gauge in gauges.items()},
            "counters": {name: counter.count for name, counter in counters.items()},
            "meters": {
                name: {"count": float(meter.count), "mean_rate": meter.mean_rate}
                for name, meter in meters.items()
            },
        }

    def reset(self) -> None:
        with self._lock:
            self._gauges.clear()
            self._counters.clear()
            self._meters.clear()

    async def start(self) -> None:
        """Begin logging a snapshot every metrics interval."""

        if settings.silence_metrics:
            logger.info("Metrics log reporter silenced")
            return
        if self._reporter_task and not self._reporter_task.done():
            return

        interval = max(1.0, settings.metrics_log_interval_seconds)
        self._reporter_task = asyncio.create_task(
            self._report_loop(interval), name="metrics-log-reporter"
        )
        logger.info("Metrics log reporter started (interval=%.0fs)", interval)

    async def stop(self) -> None:
        task = self._reporter_task
        self._reporter_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _report_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.log_snapshot()

    def log_snapshot(self) -> None:
        snapshot = self.snapshot()
        for name, value in sorted(snapshot["gauges"].items()):
            logger.info("metrics: gauge %s value=%d", name, value)
        for name, count in sorted(snapshot["counters"].items()):
            logger.info("metrics: counter %s count=%d", name, count)
        for name, meter in sorted(snapshot["meters"].items()):
            logger.info(
                "metrics: meter %s count=%d mean_rate=%.4f/s",
                name,
                int(meter["count"]),
                meter["mean_rate"],
            )


# Global registry instance
metrics_registry = MetricsRegistry()

__all__ = [
    "Counter",
    "Gauge",
    "Meter",
    "MetricsRegistry",
    "metrics_registry",
    "TOTAL_VMS_GAUGE",
    "POWEROFF_METER",
    "DESTROY_METER",
    "ERRORS_COUNTER",
]
