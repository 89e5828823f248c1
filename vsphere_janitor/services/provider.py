"""Capabilities the janitor needs from a virtualization platform."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional


class ProviderError(RuntimeError):
    """Raised when listing or acting on VMs fails at the platform."""

    def __init__(self, action: str, path: str, vm_name: Optional[str], message: str):
        super().__init__(message)
        self.action = action
        self.path = path
        self.vm_name = vm_name
        self.message = message


class VirtualMachine(ABC):
    """Read-only view of a VM plus the destructive actions it supports."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Stable identity; empty until the platform assigns one."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def uptime(self) -> timedelta:
        ...

    @property
    @abstractmethod
    def boot_time(self) -> Optional[datetime]:
        """Last boot timestamp, or ``None`` when the VM has not booted."""

    @property
    @abstractmethod
    def powered_on(self) -> bool:
        ...

    @abstractmethod
    async def power_off(self) -> None:
        ...

    @abstractmethod
    async def destroy(self) -> None:
        ...


class VMProvider(ABC):
    """Lists the VMs living under an inventory path."""

    @abstractmethod
    async def list_vms(self, path: str) -> List[VirtualMachine]:
        ...

    async def close(self) -> None:
        """Release any platform session held by the provider."""


__all__ = ["ProviderError", "VirtualMachine", "VMProvider"]
