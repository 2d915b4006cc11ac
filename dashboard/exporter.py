# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: bundle the latest analysis report and every *.log file into exports/Sentinel_Report_<timestamp>.zip
(suffixed _2, _3, ... when an archive for the same minute already exists).
a missing latest.json is fine (nothing analyzed yet), it is simply left out. a log file that exists but can not
be read aborts the export: the half-written archive is removed and the error names the file.
"""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path

from agent.errors import SentinelError
from agent.models import utcnow
from dashboard.state import AppState

log = logging.getLogger("sentinel.export")


class ReportExporter:
    def __init__(self, state: AppState) -> None:
        self.state = state

    def _open_archive(self) -> tuple[Path, zipfile.ZipFile]:
        # exclusive create, a second export in the same minute gets a _2, _3, ... suffix instead of overwriting
        stem = f"Sentinel_Report_{utcnow():%Y-%m-%d_%H-%M}"
        n = 1
        while True:
            path = self.state.exports_dir / (f"{stem}.zip" if n == 1 else f"{stem}_{n}.zip")
            try:
                return path, zipfile.ZipFile(path, "x", compression=zipfile.ZIP_DEFLATED)
            except FileExistsError:
                n += 1

    def _log_files(self) -> list[Path]:
        logs_dir = self.state.logs_dir
        if not logs_dir.is_dir():
            return []
        try:
            return sorted(p for p in logs_dir.iterdir() if p.is_file() and p.suffix.lower() == ".log")
        except OSError as exc:
            raise SentinelError(f"failed to read logs dir: {exc}") from exc

    def export(self) -> Path:
        try:
            export_path, archive = self._open_archive()
        except OSError as exc:
            raise SentinelError(f"failed to create export zip: {exc}") from exc
        try:
            with archive as zf:
                latest = self.state.latest_report_path
                if latest.exists():
                    try:
                        zf.writestr("latest.json", latest.read_bytes())
                    except OSError as exc:
                        raise SentinelError(f"failed to read latest report: {exc}") from exc
                for path in self._log_files():
                    try:
                        content = path.read_bytes()
                    except OSError as exc:
                        raise SentinelError(f"failed to read log file {path}: {exc}") from exc
                    zf.writestr(f"logs/{path.name}", content)
        except SentinelError:
            export_path.unlink(missing_ok=True)
            raise
        except (OSError, zipfile.BadZipFile) as exc:
            export_path.unlink(missing_ok=True)
            raise SentinelError(f"failed to create export zip: {exc}") from exc

        self.state.write_log_line(f"Report exported to {export_path}")
        log.info("export written to %s", export_path)
        return export_path
