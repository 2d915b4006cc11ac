from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from agent.models import ProcessRecord, SystemSnapshot
from dashboard.config import Config
from dashboard.state import AppState
from dashboard.store import EventStore

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def make_proc(pid: int, name: str | None = None, cpu: float = 0.0, memory_mb: float = 0.0, **kw: Any):
    """ProcessRecord with sensible defaults for analyzer/store tests."""
    return ProcessRecord(pid=pid, name=name or f"proc{pid}", cpu=cpu, memory_mb=memory_mb, **kw)


def fake_snapshot() -> SystemSnapshot:
    return SystemSnapshot(
        machine_name="testhost",
        os_version="TestOS 1.0",
        total_physical_memory_mb=16384.0,
        available_memory_mb=8192.0,
        processor_count=8,
    )


@pytest.fixture
def cfg(tmp_path: Path) -> Config:
    base = tmp_path / "Sentinel"
    return Config(
        base_dir=base,
        logs_dir=base / "logs",
        reports_dir=base / "reports",
        exports_dir=base / "exports",
        db_path=base / "Data" / "sentinel.db",
        host="127.0.0.1",
        port=8766,
        workers=2,
        settle_sec=0.0,
        history_days=7,
        log_level="INFO",
    )


@pytest.fixture
def state(cfg: Config) -> AppState:
    return AppState.initialize(cfg)


@pytest.fixture
def store(tmp_path: Path) -> EventStore:
    s = EventStore(tmp_path / "events.db", clock=lambda: FIXED_NOW)
    s.initialize()
    return s


def assert_has_keys(obj: dict[str, Any], required: tuple[str, ...]) -> None:
    missing = [k for k in required if k not in obj]
    assert not missing, f"Missing keys: {missing} in {obj}"
