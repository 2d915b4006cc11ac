# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: service listing and service control behind a ServiceController capability. the Windows implementation asks
the service manager through PowerShell/CIM and attaches a quick trust verdict to every service binary. other
platforms get an implementation that lists nothing and refuses every action with a clear "not supported" error.
"""

from __future__ import annotations

import json
import logging
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Any

from agent.errors import ErrorKind, SentinelError
from agent.models import ServiceRecord
from agent.trust import assess_risk, extract_executable_path, quick_trust_from_path

log = logging.getLogger("sentinel.services")

SERVICE_ACTIONS: tuple[str, ...] = ("start", "stop", "restart", "automatic", "manual", "disabled")

_LIST_SCRIPT = (
    "Get-CimInstance Win32_Service | Select-Object Name,DisplayName,State,StartMode,PathName,Description "
    "| ConvertTo-Json -Depth 4"
)


def _run_powershell(script: str, timeout: float = 60) -> subprocess.CompletedProcess[str]:
    cmd = ["powershell", "-NoProfile", "-NonInteractive", "-Command", script]
    return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)


def _action_script(name: str, action: str) -> str:
    escaped = name.replace("'", "''")
    scripts = {
        "start": f"Start-Service -Name '{escaped}'",
        "stop": f"Stop-Service -Name '{escaped}' -Force",
        "restart": f"Restart-Service -Name '{escaped}' -Force",
        "automatic": f"Set-Service -Name '{escaped}' -StartupType Automatic",
        "manual": f"Set-Service -Name '{escaped}' -StartupType Manual",
        "disabled": f"Set-Service -Name '{escaped}' -StartupType Disabled",
    }
    script = scripts.get(action.lower())
    if script is None:
        raise SentinelError(f"unsupported service action: {action}", ErrorKind.INVALID_REQUEST)
    return script


def parse_services(raw: str) -> list[ServiceRecord]:
    """turn the ConvertTo-Json output (one object or an array) into sorted ServiceRecords."""
    try:
        value: Any = json.loads(raw) if raw.strip() else []
    except ValueError as exc:
        raise SentinelError(f"invalid services json: {exc}", ErrorKind.COLLECTION) from exc
    items = [value] if isinstance(value, dict) else value if isinstance(value, list) else []

    services: list[ServiceRecord] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = str(item.get("Name") or "")
        if not name:
            continue
        display_name = str(item.get("DisplayName") or name)
        binary_path = extract_executable_path(item.get("PathName"))
        trust = quick_trust_from_path(binary_path)
        services.append(
            ServiceRecord(
                name=name,
                display_name=display_name,
                status=str(item.get("State") or "Unknown"),
                start_type=str(item.get("StartMode") or "Unknown"),
                binary_path=binary_path,
                description=item.get("Description") or None,
                signed=trust.signed,
                publisher=trust.publisher,
                risk=assess_risk(binary_path, trust.publisher, trust.signed, display_name),
            )
        )
    services.sort(key=lambda s: s.display_name)
    return services


class ServiceController(ABC):
    @abstractmethod
    def list_services(self) -> list[ServiceRecord]: ...

    @abstractmethod
    def run_action(self, name: str, action: str) -> str:
        """perform action on the named service; returns a message or raises SentinelError."""


class WindowsServiceController(ServiceController):
    def list_services(self) -> list[ServiceRecord]:
        try:
            proc = _run_powershell(_LIST_SCRIPT)
        except (OSError, subprocess.SubprocessError) as exc:
            raise SentinelError(f"failed to query services: {exc}", ErrorKind.COLLECTION) from exc
        if proc.returncode != 0:
            raise SentinelError((proc.stderr or "").strip() or "failed to query services", ErrorKind.COLLECTION)
        return parse_services(proc.stdout or "")

    def run_action(self, name: str, action: str) -> str:
        script = _action_script(name, action)
        try:
            proc = _run_powershell(script)
        except (OSError, subprocess.SubprocessError) as exc:
            raise SentinelError(f"failed to execute service action: {exc}") from exc
        if proc.returncode == 0:
            return "Service action completed."
        err = (proc.stderr or "").strip()
        raise SentinelError(err or "Service action failed. Administrator rights may be required.")


class UnsupportedServiceController(ServiceController):
    def list_services(self) -> list[ServiceRecord]:
        return []

    def run_action(self, name: str, action: str) -> str:
        raise SentinelError("Service actions are only supported on Windows.", ErrorKind.UNSUPPORTED_PLATFORM)


def get_service_controller() -> ServiceController:
    if sys.platform == "win32":
        return WindowsServiceController()
    return UnsupportedServiceController()
