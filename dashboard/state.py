# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: the one process-wide context object. created once at launch from a Config, it makes sure the app-data
directories exist, creates the event store schema, and owns the two plain-file outputs: the daily append-only log
(logs/<YYYY-MM-DD>.log, one "[<rfc3339>] <message>" line per event) and the reports/latest.json location.
everything that needs a directory or the store gets this object passed in; nothing reads globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from agent.errors import SentinelError
from agent.models import to_rfc3339, utcnow
from dashboard.config import Config
from dashboard.store import EventStore

log = logging.getLogger("sentinel.state")


def _ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise SentinelError(f"failed to create {path}: {exc}") from exc


@dataclass
class AppState:
    logs_dir: Path
    reports_dir: Path
    exports_dir: Path
    store: EventStore

    @classmethod
    def initialize(cls, cfg: Config) -> AppState:
        for d in (cfg.base_dir, cfg.logs_dir, cfg.reports_dir, cfg.exports_dir, cfg.db_path.parent):
            _ensure_dir(d)
        state = cls(
            logs_dir=cfg.logs_dir,
            reports_dir=cfg.reports_dir,
            exports_dir=cfg.exports_dir,
            store=EventStore(cfg.db_path),
        )
        state.store.initialize()
        state.write_log_line("Sentinel backend initialized")
        return state

    @property
    def latest_report_path(self) -> Path:
        return self.reports_dir / "latest.json"

    def write_log_line(self, message: str) -> None:
        now = utcnow()
        log_path = self.logs_dir / f"{now:%Y-%m-%d}.log"
        try:
            with open(log_path, "a", encoding="utf-8") as f:
                f.write(f"[{to_rfc3339(now)}] {message}\n")
        except OSError as exc:
            raise SentinelError(f"failed to append log line to {log_path}: {exc}") from exc
        log.info(message)
