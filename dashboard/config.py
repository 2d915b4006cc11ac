"""
goal: configuration loader for Sentinel. loads settings from a JSON file in the app-data directory and from
      environment variables, with sensible defaults. the base directory is the per-user local app-data folder
      (%LOCALAPPDATA%\\Sentinel on Windows, $XDG_DATA_HOME/Sentinel elsewhere) unless SENTINEL_BASE_DIR says
      otherwise. returns a frozen Config dataclass with all paths and settings the backend needs.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


# figure out where per-user application data lives
def _resolve_base_dir() -> Path:
    import sys

    # Windows keeps app data under LOCALAPPDATA
    if sys.platform == "win32" and os.getenv("LOCALAPPDATA"):
        return Path(os.environ["LOCALAPPDATA"]) / "Sentinel"
    # everyone else follows the XDG data dir, falling back to ~/.local/share
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "Sentinel"
    return Path.home() / ".local" / "share" / "Sentinel"


# frozen dataclass to hold all config values (immutable once created)
@dataclass(frozen=True)
class Config:
    base_dir: Path  # root of the app-data tree
    logs_dir: Path  # daily <YYYY-MM-DD>.log files
    reports_dir: Path  # reports/latest.json
    exports_dir: Path  # Sentinel_Report_<timestamp>.zip archives
    db_path: Path  # single SQLite file with the event history
    host: str  # web server host address
    port: int  # web server port number
    workers: int  # size of the worker pool for blocking OS calls
    settle_sec: float  # pause between the two process-table reads
    history_days: int  # default window for the history view
    log_level: str  # level for the console log handler


# coerce a raw env or JSON value to the type of its default, falling back to the default when it does not fit
def _coerce(value, default):
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            return default
    if isinstance(default, float):
        try:
            return float(value)
        except (TypeError, ValueError):
            return default
    # strings and paths are used as-is, anything else in their place is ignored
    return value if isinstance(value, str) else default


# get a config value with priority: environment variable > JSON file > default
def _get(obj: dict, key: str, default):
    # check for environment variable first (SENTINEL_* prefix)
    env = os.getenv(f"SENTINEL_{key.upper()}")
    if env is not None:
        return _coerce(env, default)
    # fall back to JSON file value, or default if not found
    if key in obj:
        return _coerce(obj[key], default)
    return default


# load configuration from JSON file and environment variables
def load_config() -> Config:
    # base directory can be overridden by env var, otherwise auto-detect
    base = Path(os.getenv("SENTINEL_BASE_DIR") or _resolve_base_dir())
    # config file lives next to the data it configures
    cfg_file = base / "config.json"
    obj = {}
    # try to load the JSON config file if it exists
    if cfg_file.exists():
        try:
            obj = json.loads(cfg_file.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError):
            # if JSON is broken, just use empty dict (all defaults)
            obj = {}
        if not isinstance(obj, dict):
            obj = {}

    # build the Config object with all paths and settings
    # each value checks: env var > JSON file > default
    return Config(
        base_dir=base,
        logs_dir=base / _get(obj, "logs_dir", "logs"),
        reports_dir=base / _get(obj, "reports_dir", "reports"),
        exports_dir=base / _get(obj, "exports_dir", "exports"),
        db_path=base / _get(obj, "db_path", "Data/sentinel.db"),
        host=_get(obj, "host", "127.0.0.1"),
        port=_get(obj, "port", 8766),
        workers=max(1, _get(obj, "workers", 4)),
        settle_sec=_get(obj, "settle_sec", 0.15),
        history_days=_get(obj, "history_days", 7),
        log_level=str(_get(obj, "log_level", "INFO")).upper(),
    )
