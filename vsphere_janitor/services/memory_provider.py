"""In-memory VM provider used by the test suite and DUMMY_DATA mode."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from .provider import ProviderError, VirtualMachine, VMProvider

logger = logging.getLogger(__name__)


@dataclass
class VMData:
    """Mutable state of one fake VM."""

    name: str
    uptime: timedelta = timedelta(0)
    boot_time: Optional[datetime] = None
    powered_on: bool = False
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.id is None:
            self.id = self.name


@dataclass
class _ActionLog:
    powered_off: List[str] = field(default_factory=list)
    destroyed: List[str] = field(default_factory=list)


class InMemoryVirtualMachine(VirtualMachine):
    """Fake VM whose actions are recorded on the owning provider."""

    def __init__(self, provider: "InMemoryVMProvider", path: str, data: VMData):
        self._provider = provider
        self._path = path
        self._data = data

    @property
    def id(self) -> str:
        return self._data.id or ""

    @property
    def name(self) -> str:
        return self._data.name

    @property
    def uptime(self) -> timedelta:
        return self._data.uptime

    @property
    def boot_time(self) -> Optional[datetime]:
        return self._data.boot_time

    @property
    def powered_on(self) -> bool:
        return self._data.powered_on

    async def power_off(self) -> None:
        await self._provider._perform("power-off", self._path, self._data)

    async def destroy(self) -> None:
        await self._provider._perform("destroy", self._path, self._data)

    def __repr__(self) -> str:
        return f"InMemoryVirtualMachine(path={self._path!r}, name={self.name!r})"


class InMemoryVMProvider(VMProvider):
    """Serve VMs from a dictionary keyed by inventory path."""

    def __init__(
        self,
        data: Dict[str, List[VMData]],
        action_delay: float = 0.0,
        fail_power_off: Iterable[str] = (),
        fail_destroy: Iterable[str] = (),
    ):
        self.vm_data = data
        self.action_delay = action_delay
        self.fail_power_off: Set[str] = set(fail_power_off)
        self.fail_destroy: Set[str] = set(fail_destroy)
        self.list_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._log: Dict[str, _ActionLog] = {path: _ActionLog() for path in data}

    @classmethod
    def with_dummy_data(cls, paths: Iterable[str], now: datetime) -> "InMemoryVMProvider":
        """Seed each path with a small mix of young, stale and unbooted VMs."""

        data: Dict[str, List[VMData]] = {}
        for index, path in enumerate(paths):
            prefix = f"dev-{index:02d}"
            data[path] = [
                VMData(
                    name=f"{prefix}-stale",
                    uptime=timedelta(hours=6),
                    boot_time=now - timedelta(hours=6),
                    powered_on=True,
                ),
                VMData(
                    name=f"{prefix}-fresh",
                    uptime=timedelta(minutes=5),
                    boot_time=now - timedelta(minutes=5),
                    powered_on=True,
                ),
                VMData(name=f"{prefix}-unbooted"),
                VMData(name=f"{prefix}-provisioning", id=""),
            ]
        logger.info("Initialized dummy VMs for %d path(s)", len(data))
        return cls(data)

    async def list_vms(self, path: str) -> List[VirtualMachine]:
        self.list_calls += 1
        vm_data = self.vm_data.get(path)
        if vm_data is None:
            raise ProviderError("list", path, None, "no such path")
        return [InMemoryVirtualMachine(self, path, data) for data in list(vm_data)]

    def powered_off(self, path: str, name: str) -> bool:
        log = self._log.get(path)
        return log is not None and name in log.powered_off

    def destroyed(self, path: str, name: str) -> bool:
        log = self._log.get(path)
        return log is not None and name in log.destroyed

    def destroy_count(self, path: str) -> int:
        log = self._log.get(path)
        return len(log.destroyed) if log else 0

    def remove(self, path: str, name: str) -> None:
        """Drop a VM from the listing as if it was removed out of band."""

        self.vm_data[path] = [vm for vm in self.vm_data.get(path, []) if vm.name != name]

    async def _perform(self, action: str, path: str, data: VMData) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.action_delay:
                await asyncio.sleep(self.action_delay)

            if action == "power-off":
                if data.name in self.fail_power_off:
                    raise ProviderError(action, path, data.name, "couldn't power off instance")
                data.powered_on = False
                data.uptime = timedelta(0)
                self._log.setdefault(path, _ActionLog()).powered_off.append(data.name)
            else:
                if data.name in self.fail_destroy:
                    raise ProviderError(action, path, data.name, "couldn't destroy instance")
                self._log.setdefault(path, _ActionLog()).destroyed.append(data.name)
                self.remove(path, data.name)
        finally:
            self.in_flight -= 1


__all__ = ["InMemoryVMProvider", "InMemoryVirtualMachine", "VMData"]
