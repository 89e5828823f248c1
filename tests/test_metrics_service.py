import logging
import threading

import pytest

from vsphere_janitor.core.config import settings
from vsphere_janitor.services.metrics_service import Meter, MetricsRegistry


def test_get_or_register_returns_same_instrument():
    registry = MetricsRegistry()

    assert registry.get_or_register_meter("a") is registry.get_or_register_meter("a")
    assert registry.get_or_register_counter("b") is registry.get_or_register_counter("b")
    assert registry.get_or_register_gauge("c") is registry.get_or_register_gauge("c")


def test_counter_is_thread_safe():
    registry = MetricsRegistry()
    counter = registry.get_or_register_counter("errors")

    def bump():
        for _ in range(1000):
            counter.inc()

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert counter.count == 8000


def test_meter_mean_rate_uses_clock():
    ticks = iter([10.0, 14.0])
    meter = Meter(clock=lambda: next(ticks))
    meter.mark(2)

    assert meter.count == 2
    assert meter.mean_rate == pytest.approx(0.5)


def test_snapshot_and_log(caplog):
    registry = MetricsRegistry()
    registry.get_or_register_gauge("vms.total").update(7)
    registry.get_or_register_counter("errors").inc(2)
    registry.get_or_register_meter("destroy").mark()

    snapshot = registry.snapshot()

    assert snapshot["gauges"] == {"vms.total": 7}
    assert snapshot["counters"] == {"errors": 2}
    assert snapshot["meters"]["destroy"]["count"] == 1

    with caplog.at_level(logging.INFO):
        registry.log_snapshot()
    assert "gauge vms.total value=7" in caplog.text

    registry.reset()
    assert registry.snapshot()["gauges"] == {}


@pytest.mark.anyio
async def test_reporter_not_started_when_silenced(monkeypatch):
    monkeypatch.setattr(settings, "silence_metrics", True)
    registry = MetricsRegistry()

    await registry.start()

    assert registry._reporter_task is None
    await registry.stop()


@pytest.mark.anyio
async def test_reporter_start_and_stop(monkeypatch):
    monkeypatch.setattr(settings, "silence_metrics", False)
    registry = MetricsRegistry()

    await registry.start()
    assert registry._reporter_task is not None

    await registry.stop()
    assert registry._reporter_task is None
