# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: plain value types shared by the collectors, the analyzer and the event store. every record is a frozen
dataclass built fresh per collection cycle, and every one knows how to turn itself into the camelCase dict the
dashboard API hands out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class RiskCategory(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    SUSPICIOUS = "suspicious"
    UNKNOWN = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_rfc3339(dt: datetime) -> str:
    # fixed precision so stored timestamps compare correctly as strings
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_rfc3339(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class TrustMetadata:
    signed: bool = False
    publisher: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"signed": self.signed, "publisher": self.publisher}


@dataclass(frozen=True)
class ProcessRecord:
    pid: int
    name: str
    cpu: float = 0.0  # percent, clamped to [0, 100]
    memory_mb: float = 0.0
    path: str | None = None
    command_line: str | None = None
    parent_pid: int | None = None
    signed: bool = False
    publisher: str | None = None
    risk: RiskCategory = RiskCategory.UNKNOWN
    # placeholders until real per-process collectors exist
    disk_kbps: float = 0.0
    network_kbps: float = 0.0
    gpu_percent: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "cpu", min(max(float(self.cpu), 0.0), 100.0))
        object.__setattr__(self, "memory_mb", max(float(self.memory_mb), 0.0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "cpu": self.cpu,
            "memoryMB": self.memory_mb,
            "path": self.path,
            "signed": self.signed,
            "publisher": self.publisher,
            "risk": self.risk.value,
            "commandLine": self.command_line,
            "parentPid": self.parent_pid,
            "networkKbps": self.network_kbps,
            "gpuPercent": self.gpu_percent,
            "diskKbps": self.disk_kbps,
        }


@dataclass(frozen=True)
class ServiceRecord:
    name: str
    display_name: str
    status: str
    start_type: str
    binary_path: str | None = None
    description: str | None = None
    signed: bool = False
    publisher: str | None = None
    risk: RiskCategory = RiskCategory.UNKNOWN
    requires_admin: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "status": self.status,
            "startType": self.start_type,
            "description": self.description,
            "binaryPath": self.binary_path,
            "signed": self.signed,
            "publisher": self.publisher,
            "risk": self.risk.value,
            "requiresAdmin": self.requires_admin,
        }


@dataclass(frozen=True)
class StartupRecord:
    id: str
    name: str
    command: str
    location: str
    is_enabled: bool
    path: str | None = None
    signed: bool = False
    publisher: str | None = None
    risk: RiskCategory = RiskCategory.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "command": self.command,
            "location": self.location,
            "isEnabled": self.is_enabled,
            "path": self.path,
            "signed": self.signed,
            "publisher": self.publisher,
            "risk": self.risk.value,
        }


@dataclass(frozen=True)
class SpikeEvent:
    start_utc: datetime
    end_utc: datetime
    metric: str
    peak_value: float
    duration_seconds: float
    pid: int | None = None
    process_name: str | None = None
    context: str | None = None
    possible_leak: bool = False  # reserved for trend detection
    id: int | None = None  # assigned by the store

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "startUtc": to_rfc3339(self.start_utc),
            "endUtc": to_rfc3339(self.end_utc),
            "pid": self.pid,
            "processName": self.process_name,
            "metric": self.metric,
            "peakValue": self.peak_value,
            "durationSeconds": self.duration_seconds,
            "context": self.context,
            "possibleLeak": self.possible_leak,
        }


@dataclass(frozen=True)
class ChangeEvent:
    detected_utc: datetime
    category: str  # Process | Service | Startup | Scan
    change_type: str  # Added | Removed | Modified | Completed
    name: str | None = None
    path: str | None = None
    details: str | None = None
    is_approved: bool = False
    is_ignored: bool = False
    id: int | None = None  # assigned by the store

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "detectedUtc": to_rfc3339(self.detected_utc),
            "category": self.category,
            "changeType": self.change_type,
            "name": self.name,
            "path": self.path,
            "details": self.details,
            "isApproved": self.is_approved,
            "isIgnored": self.is_ignored,
        }


# results of user-triggered actions, never raised, always returned


@dataclass(frozen=True)
class KillResult:
    success: bool
    pid: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "pid": self.pid, "message": self.message}


@dataclass(frozen=True)
class ToggleResult:
    success: bool
    id: str
    enabled: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "id": self.id, "enabled": self.enabled, "message": self.message}


@dataclass(frozen=True)
class ServiceActionResult:
    success: bool
    name: str
    action: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "name": self.name, "action": self.action, "message": self.message}


@dataclass(frozen=True)
class HistoryResult:
    spike_events: list[SpikeEvent] = field(default_factory=list)
    change_events: list[ChangeEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "spikeEvents": [e.to_dict() for e in self.spike_events],
            "changeEvents": [e.to_dict() for e in self.change_events],
        }


@dataclass(frozen=True)
class SystemSnapshot:
    machine_name: str
    os_version: str
    total_physical_memory_mb: float
    available_memory_mb: float
    processor_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "machineName": self.machine_name,
            "osVersion": self.os_version,
            "totalPhysicalMemoryMb": self.total_physical_memory_mb,
            "availableMemoryMb": self.available_memory_mb,
            "processorCount": self.processor_count,
        }
