# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: snapshot collector for running processes. reads the process table twice with a short settle interval in
between (the first cpu_percent() call on a process always reports 0.0), builds one immutable ProcessRecord per
live process with a quick trust verdict and risk category, and returns the list sorted by CPU, highest first.
also owns the two other process-table operations: single-process details (with the slow authoritative signature
check) and graceful-then-forced termination.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging
import platform  # for the OS name/version in the system snapshot
import time  # for the settle interval between the two reads
from collections.abc import Callable
from dataclasses import replace
from typing import Any, TypeVar

import psutil  # library for getting process and system information

from agent.errors import ErrorKind, SentinelError
from agent.models import ProcessRecord, SystemSnapshot
from agent.trust import assess_risk
from agent.win_sign import TrustResolver, get_trust_resolver

log = logging.getLogger("sentinel.collector")

_MB = 1024.0 * 1024.0
_GONE = (psutil.NoSuchProcess, psutil.ZombieProcess)

T = TypeVar("T")


def _field(getter: Callable[[], T], default: T) -> T:
    # a single unreadable attribute (AccessDenied on exe/cmdline for system processes) must not drop the process
    try:
        return getter()
    except psutil.AccessDenied:
        return default


class ProcessCollector:
    """reads the process table and turns it into ProcessRecords"""

    def __init__(
        self,
        resolver: TrustResolver | None = None,
        settle_sec: float = 0.15,
        kill_grace_sec: float = 3.0,
    ) -> None:
        self.resolver = resolver or get_trust_resolver()  # platform trust capability
        self.settle = settle_sec  # wait between the priming read and the real read
        self.kill_grace = kill_grace_sec  # how long terminate() gets before kill()

    def _proc_record(self, p: psutil.Process) -> ProcessRecord | None:
        # gather fields with resilience to disappearing processes
        try:
            with p.oneshot():
                name = _field(p.name, "") or f"pid {p.pid}"
                exe = _field(p.exe, "") or None  # psutil returns "" when it can not resolve the path
                cmd = _field(p.cmdline, [])
                ppid = _field(p.ppid, None)
                mem = _field(p.memory_info, None)
                cpu = _field(lambda: p.cpu_percent(interval=None), 0.0)
        except _GONE:
            return None  # exited between the two reads

        trust = self.resolver.quick(exe)  # never the slow path for bulk listings
        return ProcessRecord(
            pid=p.pid,
            name=name,
            cpu=cpu or 0.0,
            memory_mb=(getattr(mem, "rss", 0) or 0) / _MB,
            path=exe,
            command_line=" ".join(cmd) if cmd else None,
            parent_pid=ppid,
            signed=trust.signed,
            publisher=trust.publisher,
            risk=assess_risk(exe, trust.publisher, trust.signed, name),
        )

    def collect_processes(self) -> list[ProcessRecord]:
        try:
            procs: list[psutil.Process] = []
            for p in psutil.process_iter():
                try:
                    p.cpu_percent(interval=None)  # prime the CPU counter, result is meaningless
                    procs.append(p)
                except _GONE:
                    continue
                except psutil.AccessDenied:
                    procs.append(p)  # still listable, CPU will read as 0
            time.sleep(self.settle)
            records = [r for r in (self._proc_record(p) for p in procs) if r is not None]
        except (psutil.Error, OSError) as exc:
            raise SentinelError(f"failed to collect processes: {exc}", ErrorKind.COLLECTION) from exc

        records.sort(key=lambda r: r.cpu, reverse=True)  # stable, ties keep table order
        log.debug("collected %d processes", len(records))
        return records

    def find_process(self, pid: int) -> ProcessRecord | None:
        target = next((p for p in self.collect_processes() if p.pid == pid), None)
        if target is None or not target.path:
            return target
        trust = self.resolver.details(target.path)  # authoritative, may take a second
        return replace(
            target,
            signed=trust.signed,
            publisher=trust.publisher,
            risk=assess_risk(target.path, trust.publisher, trust.signed, target.name),
        )

    def kill_process(self, pid: int) -> bool:
        """terminate, wait up to kill_grace seconds, then kill. True when the process is gone."""
        if pid < 0:
            return False
        try:
            p = psutil.Process(pid)
        except _GONE:
            return False
        except psutil.Error as exc:
            log.warning("could not open pid %s: %s", pid, exc)
            return False
        try:
            p.terminate()
            try:
                p.wait(timeout=self.kill_grace)
                return True
            except psutil.TimeoutExpired:
                p.kill()
                p.wait(timeout=self.kill_grace)
                return True
        except _GONE:
            return True  # exited on its own between the calls
        except (psutil.AccessDenied, psutil.TimeoutExpired) as exc:
            log.warning("could not terminate pid %s: %s", pid, exc)
            return False


def system_snapshot() -> SystemSnapshot:
    try:
        vm: Any = psutil.virtual_memory()
    except (psutil.Error, OSError) as exc:
        raise SentinelError(f"failed to read memory info: {exc}", ErrorKind.COLLECTION) from exc
    pretty_os = f"{platform.system() or 'Unknown OS'} {platform.release()}".strip()
    return SystemSnapshot(
        machine_name=platform.node() or "Unknown",
        os_version=pretty_os,
        total_physical_memory_mb=vm.total / _MB,
        available_memory_mb=vm.available / _MB,
        processor_count=psutil.cpu_count(logical=True) or 0,
    )
