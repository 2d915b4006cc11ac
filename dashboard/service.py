# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: the operations the dashboard (or any other front end) can invoke. every blocking OS or disk call is
submitted to a bounded worker pool and the caller waits on the returned future, so request threads only ever
block on a result, never on the OS directly. user actions (kill, toggle, service action) always come back as
structured {success, message} results and write an audit ChangeEvent only when they succeed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import TypeVar

from agent.errors import SentinelError
from agent.models import (
    ChangeEvent,
    HistoryResult,
    KillResult,
    ProcessRecord,
    ServiceActionResult,
    ServiceRecord,
    StartupRecord,
    ToggleResult,
    utcnow,
)
from agent.monitor import ProcessCollector
from agent.services import ServiceController, get_service_controller
from agent.startup import StartupController, get_startup_controller
from algorithm.analyzer import AnalyzeSystemResponse, Analyzer
from dashboard.config import Config
from dashboard.exporter import ReportExporter
from dashboard.state import AppState

log = logging.getLogger("sentinel.service")

T = TypeVar("T")


class SentinelService:
    def __init__(
        self,
        state: AppState,
        collector: ProcessCollector | None = None,
        services: ServiceController | None = None,
        startup: StartupController | None = None,
        analyzer: Analyzer | None = None,
        workers: int = 4,
        history_days: int = 7,
    ) -> None:
        self.state = state
        self.collector = collector or ProcessCollector()
        self.services = services or get_service_controller()
        self.startup = startup or get_startup_controller()
        self.analyzer = analyzer or Analyzer(state)
        self.exporter = ReportExporter(state)
        self.history_days = history_days
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sentinel-worker")

    @classmethod
    def from_config(cls, cfg: Config) -> SentinelService:
        state = AppState.initialize(cfg)
        return cls(
            state,
            collector=ProcessCollector(settle_sec=cfg.settle_sec),
            workers=cfg.workers,
            history_days=cfg.history_days,
        )

    # worker pool plumbing

    def submit(self, fn: Callable[..., T], *args) -> Future[T]:
        return self._executor.submit(fn, *args)

    def _run(self, fn: Callable[..., T], *args) -> T:
        return self.submit(fn, *args).result()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _audit(self, category: str, change_type: str, name: str, details: str, log_line: str) -> None:
        # the action already happened; a failed audit write is logged, not turned into a failed action
        def _write() -> None:
            self.state.write_log_line(log_line)
            self.state.store.record_change(
                ChangeEvent(
                    detected_utc=utcnow(),
                    category=category,
                    change_type=change_type,
                    name=name,
                    details=details,
                )
            )

        try:
            self._run(_write)
        except SentinelError as exc:
            log.error("audit for %s/%s %s not recorded: %s", category, change_type, name, exc)

    # processes

    def list_processes(self) -> list[ProcessRecord]:
        return self._run(self.collector.collect_processes)

    def get_process_details(self, pid: int) -> ProcessRecord | None:
        return self._run(self.collector.find_process, pid)

    def kill_process(self, pid: int) -> KillResult:
        killed = self._run(self.collector.kill_process, pid)
        if not killed:
            log.warning("kill pid=%s failed", pid)
            return KillResult(False, pid, "Process not found or could not be terminated.")
        self._audit(
            "Process",
            "Removed",
            f"PID {pid}",
            "Process terminated by user action",
            f"Killed process pid={pid}",
        )
        return KillResult(True, pid, "Process terminated.")

    # startup entries

    def list_startup_items(self) -> list[StartupRecord]:
        return self._run(self.startup.list_items)

    def toggle_startup_item(self, id: str, enabled: bool) -> ToggleResult:
        try:
            message = self._run(self.startup.toggle, id, enabled)
        except SentinelError as exc:
            log.warning("toggle %s enabled=%s failed: %s", id, enabled, exc)
            return ToggleResult(False, id, enabled, str(exc))
        self._audit(
            "Startup",
            "Modified",
            id,
            message,
            f"Startup item toggled id={id} enabled={enabled} message={message}",
        )
        return ToggleResult(True, id, enabled, message)

    # services

    def list_services(self) -> list[ServiceRecord]:
        return self._run(self.services.list_services)

    def service_action(self, name: str, action: str) -> ServiceActionResult:
        try:
            message = self._run(self.services.run_action, name, action)
        except SentinelError as exc:
            log.warning("service action %s on %s failed: %s", action, name, exc)
            return ServiceActionResult(False, name, action, str(exc))
        self._audit(
            "Service",
            "Modified",
            name,
            f"Action '{action}' completed: {message}",
            f"Service action name={name} action={action} result={message}",
        )
        return ServiceActionResult(True, name, action, message)

    # analysis and history

    def analyze_system(self) -> AnalyzeSystemResponse:
        processes = self._run(self.collector.collect_processes)
        return self._run(self.analyzer.analyze, processes)

    def get_spike_events(self, days_back: int | None = None) -> HistoryResult:
        days = self.history_days if days_back is None else days_back
        store = self.state.store
        return HistoryResult(
            spike_events=self._run(store.query_spikes, days),
            change_events=self._run(store.query_changes, days),
        )

    def export_report(self) -> Path:
        return self._run(self.exporter.export)
