"""VM provider backed by a vSphere server through pyVmomi."""
from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlsplit

from pyVim import connect
from pyVmomi import vim, vmodl

from .provider import ProviderError, VirtualMachine, VMProvider

logger = logging.getLogger(__name__)

UNNAMED_VM = "<unnamed>"
VM_PROPERTIES = ("config", "summary")


@dataclass(frozen=True)
class VSphereEndpoint:
    """Connection parameters parsed from a vSphere SDK URL."""

    host: str
    port: int
    user: str
    password: str
    path: str = "/sdk"

    @classmethod
    def from_url(cls, url: str) -> "VSphereEndpoint":
        parts = urlsplit(url)
        if not parts.hostname:
            raise ValueError("vSphere URL must include a host name")
        return cls(
            host=parts.hostname,
            port=parts.port or (80 if parts.scheme == "http" else 443),
            user=unquote(parts.username or ""),
            password=unquote(parts.password or ""),
            path=parts.path or "/sdk",
        )


@dataclass(frozen=True)
class _VMSnapshot:
    """Properties read from ``config`` and ``summary`` when the VM was listed."""

    id: str
    name: str
    uptime_seconds: int
    boot_time: Optional[datetime]
    power_state: str


def _snapshot(config: Any, summary: Any) -> _VMSnapshot:
    quick_stats = getattr(summary, "quickStats", None)
    runtime = getattr(summary, "runtime", None)

    return _VMSnapshot(
        id=(getattr(config, "instanceUuid", None) or "") if config else "",
        name=config.name if config is not None and config.name else UNNAMED_VM,
        uptime_seconds=int(getattr(quick_stats, "uptimeSeconds", 0) or 0),
        boot_time=getattr(runtime, "bootTime", None),
        power_state=str(getattr(runtime, "powerState", "") or ""),
    )


def _retrieve_properties(content: Any, vm_refs: List[Any]) -> Dict[Any, Dict[str, Any]]:
    """Fetch ``config`` and ``summary`` for every VM in one collector call."""

    if not vm_refs:
        return {}

    collector = vmodl.query.PropertyCollector
    filter_spec = collector.FilterSpec(
        objectSet=[collector.ObjectSpec(obj=vm_ref) for vm_ref in vm_refs],
        propSet=[
            collector.PropertySpec(
                type=vim.VirtualMachine, pathSet=list(VM_PROPERTIES), all=False
            )
        ],
    )

    properties: Dict[Any, Dict[str, Any]] = {}
    for object_content in content.propertyCollector.RetrieveContents([filter_spec]):
        properties[object_content.obj] = {
            prop.name: prop.val for prop in (object_content.propSet or [])
        }
    return properties


class VSphereVirtualMachine(VirtualMachine):
    """A VM listed from a vSphere folder."""

    def __init__(self, provider: "VSphereProvider", path: str, vm_ref: Any, snapshot: _VMSnapshot):
        self._provider = provider
        self._path = path
        self._vm_ref = vm_ref
        self._snapshot = snapshot

    @property
    def id(self) -> str:
        return self._snapshot.id

    @property
    def name(self) -> str:
        return self._snapshot.name

    @property
    def uptime(self) -> timedelta:
        return timedelta(seconds=self._snapshot.uptime_seconds)

    @property
    def boot_time(self) -> Optional[datetime]:
        return self._snapshot.boot_time

    @property
    def powered_on(self) -> bool:
        return self._snapshot.power_state == vim.VirtualMachinePowerState.poweredOn

    async def power_off(self) -> None:
        await self._provider.run_task(
            "power-off", self._path, self.name, self._vm_ref.PowerOffVM_Task
        )

    async def destroy(self) -> None:
        await self._provider.run_task(
            "destroy", self._path, self.name, self._vm_ref.Destroy_Task
        )


class VSphereProvider(VMProvider):
    """List and act on VMs in vSphere inventory folders."""

    def __init__(self, url: str, insecure: bool = False, poll_interval: float = 1.0):
        self.endpoint = VSphereEndpoint.from_url(url)
        self.insecure = insecure
        self.poll_interval = poll_interval
        self._service_instance: Optional[Any] = None
        self._connect_lock = asyncio.Lock()

    def _connect(self) -> Any:
        ssl_context = ssl.create_default_context()
        if self.insecure:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        logger.info(
            "Connecting to vSphere host=%s port=%d path=%s",
            self.endpoint.host,
            self.endpoint.port,
            self.endpoint.path,
        )
        return connect.SmartConnect(
            host=self.endpoint.host,
            port=self.endpoint.port,
            user=self.endpoint.user,
            pwd=self.endpoint.password,
            path=self.endpoint.path,
            sslContext=ssl_context,
        )

    async def service_instance(self) -> Any:
        async with self._connect_lock:
            if self._service_instance is None:
                try:
                    self._service_instance = await asyncio.to_thread(self._connect)
                except Exception as exc:
                    raise ProviderError(
                        "connect", "", None, f"couldn't connect to vSphere: {exc}"
                    ) from exc
            return self._service_instance

    async def close(self) -> None:
        service_instance = self._service_instance
        self._service_instance = None
        if service_instance is not None:
            await asyncio.to_thread(connect.Disconnect, service_instance)
            logger.info("Disconnected from vSphere host=%s", self.endpoint.host)

    async def list_vms(self, path: str) -> List[VirtualMachine]:
        service_instance = await self.service_instance()
        try:
            entries = await asyncio.to_thread(self._list_folder, service_instance, path)
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(
                "list", path, None, f"error listing contents of VM folder: {exc}"
            ) from exc

        return [VSphereVirtualMachine(self, path, ref, snap) for ref, snap in entries]

    @staticmethod
    def _list_folder(service_instance: Any, path: str) -> list:
        content = service_instance.RetrieveContent()
        folder = content.searchIndex.FindByInventoryPath(path)
        if folder is None:
            raise ProviderError("list", path, None, "couldn't find VM folder")
        if not isinstance(folder, vim.Folder):
            raise ProviderError(
                "list",
                path,
                None,
                f"VM folder is not a folder but a {type(folder).__name__}",
            )

        vm_refs = []
        for child in folder.childEntity:
            if not isinstance(child, vim.VirtualMachine):
                logger.info("Skipping non-vm type %s path=%s", type(child).__name__, path)
                continue
            vm_refs.append(child)

        properties = _retrieve_properties(content, vm_refs)
        entries = []
        for vm_ref in vm_refs:
            props = properties.get(vm_ref, {})
            entries.append((vm_ref, _snapshot(props.get("config"), props.get("summary"))))
        return entries

    async def run_task(self, action: str, path: str, vm_name: str, start: Any) -> None:
        """Start a vSphere task and poll until it succeeds or fails."""

        try:
            task = await asyncio.to_thread(start)
        except Exception as exc:
            raise ProviderError(
                action, path, vm_name, f"couldn't create {action} task: {exc}"
            ) from exc

        while True:
            info = await asyncio.to_thread(lambda: task.info)
            if info.state == vim.TaskInfo.State.success:
                return
            if info.state == vim.TaskInfo.State.error:
                fault = getattr(info, "error", None)
                detail = getattr(fault, "msg", None) or str(fault or "unknown error")
                raise ProviderError(action, path, vm_name, f"{action} task failed: {detail}")
            await asyncio.sleep(self.poll_interval)


__all__ = ["VSphereEndpoint", "VSphereProvider", "VSphereVirtualMachine"]
