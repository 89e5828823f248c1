"""Test configuration for the janitor test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from vsphere_janitor.core import config as config_module
from vsphere_janitor.core.models import JanitorOptions
from vsphere_janitor.services.metrics_service import MetricsRegistry


A_TIME = datetime(2016, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def registry():
    """Isolated metrics registry so counts do not leak between tests."""
    return MetricsRegistry()


@pytest.fixture
def options():
    return JanitorOptions(
        cutoff=timedelta(hours=1),
        zero_uptime_cutoff=timedelta(minutes=1),
        skip_destroy=False,
        concurrency=1,
        rate_per_second=1000,
        skip_no_boot_time=True,
    )


@pytest.fixture(autouse=True)
def reset_config_validation_cache(monkeypatch):
    monkeypatch.setattr(config_module, "_config_validation_result", None)


class FakeClock:
    """Monotonic clock whose sleeps only advance the reading."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
