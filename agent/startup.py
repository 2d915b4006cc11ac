# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: autorun entries behind a StartupController capability. on Windows that means the HKCU and HKLM Run keys
plus the per-user Startup folder shortcuts. disabling never deletes user data outright:
- HKCU Run values are parked under a "_Sentinel_Disabled_<name>" backup value and restored on enable
- Startup folder shortcuts move into a "Disabled" subfolder and back
- HKLM Run values can only be removed (admin required), there is no backup slot there
other platforms list nothing and refuse toggles with a "not supported" error.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from agent.errors import ErrorKind, SentinelError
from agent.models import StartupRecord
from agent.trust import assess_risk, extract_executable_path, quick_trust_from_path

log = logging.getLogger("sentinel.startup")

RUN_KEY = "SOFTWARE\\Microsoft\\Windows\\CurrentVersion\\Run"
STARTUP_APPROVED_KEY = "SOFTWARE\\Microsoft\\Windows\\CurrentVersion\\Explorer\\StartupApproved\\Run"
DISABLED_PREFIX = "_Sentinel_Disabled_"
DISABLED_DIR = "Disabled"

HKCU_PREFIX = "HKCU Run:"
HKLM_PREFIX = "HKLM Run:"
FOLDER_PREFIX = "folder:"


def with_trust(
    id: str, name: str, command: str, location: str, is_enabled: bool, path: str | None
) -> StartupRecord:
    trust = quick_trust_from_path(path)
    return StartupRecord(
        id=id,
        name=name,
        command=command,
        location=location,
        is_enabled=is_enabled,
        path=path,
        signed=trust.signed,
        publisher=trust.publisher,
        risk=assess_risk(path, trust.publisher, trust.signed, name),
    )


def default_startup_dir() -> Path | None:
    appdata = os.environ.get("APPDATA")
    if not appdata:
        return None
    return Path(appdata) / "Microsoft" / "Windows" / "Start Menu" / "Programs" / "Startup"


def list_folder_items(startup_dir: Path) -> list[StartupRecord]:
    """.lnk shortcuts in the Startup folder (enabled) and its Disabled subfolder (disabled)."""
    items: list[StartupRecord] = []
    for folder, enabled in ((startup_dir, True), (startup_dir / DISABLED_DIR, False)):
        if not folder.is_dir():
            continue
        for entry in sorted(folder.iterdir()):
            if not entry.is_file() or entry.suffix.lower() != ".lnk":
                continue
            full_path = str(entry)
            items.append(
                with_trust(
                    id=f"{FOLDER_PREFIX}{full_path}",
                    name=entry.stem or "startup-item",
                    command=full_path,
                    location="Startup folder",
                    is_enabled=enabled,
                    path=full_path,
                )
            )
    return items


def toggle_folder_item(item_path: Path, enabled: bool) -> str:
    if enabled:
        # only shortcuts parked in Disabled/ need to move, anything else is already live
        if item_path.exists() and item_path.parent.name.lower() == DISABLED_DIR.lower():
            dest = item_path.parent.parent / item_path.name
            try:
                shutil.move(str(item_path), str(dest))
            except OSError as exc:
                raise SentinelError(f"failed to enable startup folder item: {exc}") from exc
        return "Startup folder item enabled."

    if not item_path.exists():
        raise SentinelError("Startup folder item not found.", ErrorKind.INVALID_REQUEST)
    disabled_dir = item_path.parent / DISABLED_DIR
    try:
        disabled_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(str(item_path), str(disabled_dir / item_path.name))
    except OSError as exc:
        raise SentinelError(f"failed to disable startup folder item: {exc}") from exc
    return "Startup folder item disabled."


class StartupController(ABC):
    @abstractmethod
    def list_items(self) -> list[StartupRecord]: ...

    @abstractmethod
    def toggle(self, id: str, enabled: bool) -> str:
        """enable or disable the entry; returns a message or raises SentinelError."""


class WindowsStartupController(StartupController):
    def __init__(self, startup_dir: Path | None = None) -> None:
        self.startup_dir = startup_dir if startup_dir is not None else default_startup_dir()

    # registry side

    def _enum_values(self, key: Any) -> list[tuple[str, Any]]:
        import winreg

        values = []
        i = 0
        while True:
            try:
                name, data, _kind = winreg.EnumValue(key, i)
            except OSError:  # ERROR_NO_MORE_ITEMS
                return values
            values.append((name, data))
            i += 1

    def _approved(self, hive: Any, name: str) -> bool:
        import winreg

        # StartupApproved stores a binary blob per entry, first byte 0x03 means the user disabled it
        try:
            with winreg.OpenKey(hive, STARTUP_APPROVED_KEY) as key:
                data, _kind = winreg.QueryValueEx(key, name)
        except OSError:
            return True
        return not (isinstance(data, bytes) and data[:1] == b"\x03")

    def _list_registry(self) -> list[StartupRecord]:
        import winreg

        items: list[StartupRecord] = []
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, RUN_KEY) as key:
                for name, command in self._enum_values(key):
                    if not isinstance(command, str):
                        continue
                    if name.startswith(DISABLED_PREFIX):
                        original = name[len(DISABLED_PREFIX) :]
                        enabled = False
                    else:
                        original = name
                        enabled = self._approved(winreg.HKEY_CURRENT_USER, name)
                    items.append(
                        with_trust(
                            id=f"{HKCU_PREFIX}{original}",
                            name=original,
                            command=command,
                            location="HKCU Run",
                            is_enabled=enabled,
                            path=extract_executable_path(command),
                        )
                    )
        except OSError as exc:
            log.debug("HKCU Run not readable: %s", exc)

        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, RUN_KEY) as key:
                for name, command in self._enum_values(key):
                    if not isinstance(command, str):
                        continue
                    items.append(
                        with_trust(
                            id=f"{HKLM_PREFIX}{name}",
                            name=name,
                            command=command,
                            location="HKLM Run",
                            is_enabled=True,
                            path=extract_executable_path(command),
                        )
                    )
        except OSError as exc:
            log.debug("HKLM Run not readable: %s", exc)
        return items

    def _toggle_hkcu(self, name: str, enabled: bool) -> str:
        import winreg

        backup_name = f"{DISABLED_PREFIX}{name}"
        try:
            key = winreg.OpenKey(winreg.HKEY_CURRENT_USER, RUN_KEY, 0, winreg.KEY_READ | winreg.KEY_WRITE)
        except OSError as exc:
            raise SentinelError(f"failed to open HKCU Run key: {exc}") from exc
        with key:
            source, target = (backup_name, name) if enabled else (name, backup_name)
            try:
                command, kind = winreg.QueryValueEx(key, source)
            except OSError as exc:
                what = "backup value" if enabled else "startup item"
                raise SentinelError(f"failed to read {what}: {exc}") from exc
            try:
                winreg.SetValueEx(key, target, 0, kind, command)
            except OSError as exc:
                what = "restore startup item" if enabled else "store backup startup item"
                raise SentinelError(f"failed to {what}: {exc}") from exc
            try:
                winreg.DeleteValue(key, source)
            except OSError as exc:
                log.warning("left %s behind in HKCU Run: %s", source, exc)
        return "Startup item enabled." if enabled else "Startup item disabled."

    def _toggle_hklm(self, name: str, enabled: bool) -> str:
        import winreg

        if enabled:
            return f"HKLM startup item '{name}' is already enabled."
        try:
            with winreg.OpenKey(
                winreg.HKEY_LOCAL_MACHINE, RUN_KEY, 0, winreg.KEY_READ | winreg.KEY_WRITE
            ) as key:
                winreg.DeleteValue(key, name)
        except OSError as exc:
            raise SentinelError(f"failed to open HKLM Run key (admin required): {exc}") from exc
        return "HKLM startup item disabled."

    # capability

    def list_items(self) -> list[StartupRecord]:
        items = self._list_registry()
        if self.startup_dir is not None:
            try:
                items.extend(list_folder_items(self.startup_dir))
            except OSError as exc:
                raise SentinelError(f"failed to read startup folder: {exc}", ErrorKind.COLLECTION) from exc
        return items

    def toggle(self, id: str, enabled: bool) -> str:
        if id.startswith(HKCU_PREFIX):
            return self._toggle_hkcu(id[len(HKCU_PREFIX) :], enabled)
        if id.startswith(HKLM_PREFIX):
            return self._toggle_hklm(id[len(HKLM_PREFIX) :], enabled)
        if id.startswith(FOLDER_PREFIX):
            return toggle_folder_item(Path(id[len(FOLDER_PREFIX) :]), enabled)
        raise SentinelError("Unsupported startup item id format.", ErrorKind.INVALID_REQUEST)


class UnsupportedStartupController(StartupController):
    def list_items(self) -> list[StartupRecord]:
        return []

    def toggle(self, id: str, enabled: bool) -> str:
        raise SentinelError(
            "Startup item toggling is only supported on Windows.", ErrorKind.UNSUPPORTED_PLATFORM
        )


def get_startup_controller() -> StartupController:
    if sys.platform == "win32":
        return WindowsStartupController()
    return UnsupportedStartupController()
