"""Data models for the application."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class VMAction(str, Enum):
    """Outcome of evaluating a single VM against the cleanup policy."""
    SKIP = "skip"
    POWER_OFF = "power-off"
    POWER_OFF_AND_DESTROY = "power-off-and-destroy"


class SkipReason(str, Enum):
    """Why a VM was left alone during a cleanup run."""
    NO_IDENTITY = "no-identity"
    DEBOUNCE_FIRST_SEEN = "debounce-first-seen"
    DEBOUNCE_PENDING = "debounce-pending"
    NO_BOOT_TIME = "no-boot-time"
    UNDER_CUTOFF = "under-cutoff"


@dataclass(frozen=True)
class JanitorOptions:
    """Resolved cleanup policy, immutable for the lifetime of a run."""

    cutoff: timedelta = timedelta(hours=2)
    zero_uptime_cutoff: timedelta = timedelta(minutes=10)
    skip_destroy: bool = False
    concurrency: int = 1
    rate_per_second: float = 5.0
    skip_no_boot_time: bool = True

    @classmethod
    def from_settings(cls, settings: Any) -> "JanitorOptions":
        return cls(
            cutoff=timedelta(seconds=settings.cutoff_seconds),
            zero_uptime_cutoff=timedelta(seconds=settings.zero_uptime_cutoff_seconds),
            skip_destroy=settings.skip_destroy,
            concurrency=max(1, settings.concurrency),
            rate_per_second=settings.rate_per_second,
            skip_no_boot_time=settings.skip_no_boot_time,
        )


@dataclass(frozen=True)
class VMDecision:
    """Policy verdict for one VM."""

    action: VMAction
    reason: Optional[SkipReason] = None

    @property
    def qualifies(self) -> bool:
        return self.action is not VMAction.SKIP


@dataclass(slots=True)
class VMActionError:
    """Recorded failure for a single VM; never raised past the task boundary."""

    vm_id: str
    vm_name: str
    action: str
    message: str


@dataclass
class RunStats:
    """Counters collected while cleaning up one inventory path."""

    path: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    total: int = 0
    qualified: int = 0
    skipped: int = 0
    powered_off: int = 0
    destroyed: int = 0
    listing_error: Optional[str] = None
    errors: List[VMActionError] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "total": self.total,
            "qualified": self.qualified,
            "skipped": self.skipped,
            "powered_off": self.powered_off,
            "destroyed": self.destroyed,
            "listing_error": self.listing_error,
            "errors": [
                {
                    "vm_id": error.vm_id,
                    "vm_name": error.vm_name,
                    "action": error.action,
                    "message": error.message,
                }
                for error in self.errors
            ],
        }


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: datetime


class VMErrorInfo(BaseModel):
    """Failure recorded for a VM during the last run."""

    vm_id: str
    vm_name: str
    action: str
    message: str


class PathRunStatus(BaseModel):
    """Outcome of the most recent cleanup of one inventory path."""

    path: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    total: int = 0
    qualified: int = 0
    skipped: int = 0
    powered_off: int = 0
    destroyed: int = 0
    listing_error: Optional[str] = None
    errors: List[VMErrorInfo] = Field(default_factory=list)


class JanitorStatusResponse(BaseModel):
    """Snapshot of the janitor loop."""

    running: bool
    dummy_data: bool
    paths: List[str] = Field(default_factory=list)
    passes_completed: int = 0
    last_pass_at: Optional[datetime] = None
    tracked_zero_uptime_vms: int = 0
    last_runs: List[PathRunStatus] = Field(default_factory=list)


class MetricsResponse(BaseModel):
    """Metrics registry snapshot."""

    gauges: Dict[str, int] = Field(default_factory=dict)
    counters: Dict[str, int] = Field(default_factory=dict)
    meters: Dict[str, Dict[str, float]] = Field(default_factory=dict)


class CleanupTriggerResponse(BaseModel):
    """Acknowledgement for a manually requested cleanup pass."""

    status: str
    message: str
