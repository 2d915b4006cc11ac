# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: append-only history of spike and change events in a single SQLite file. every call opens its own
short-lived connection, so there is no shared handle to lock and nothing cached to go stale. rows are only ever
inserted: there is no update and no delete path. the schema is created-if-absent on every start so an existing
database keeps its data.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import closing, contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from agent.errors import ErrorKind, SentinelError
from agent.models import ChangeEvent, SpikeEvent, parse_rfc3339, to_rfc3339, utcnow

log = logging.getLogger("sentinel.store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS ProcessSamples (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    TimestampUtc TEXT NOT NULL,
    Pid INTEGER NOT NULL,
    CpuPercent REAL NOT NULL,
    MemoryMb REAL NOT NULL,
    DiskKbps REAL NOT NULL,
    NetworkKbps REAL NOT NULL,
    GpuPercent REAL
);

CREATE TABLE IF NOT EXISTS SpikeEvents (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    StartUtc TEXT NOT NULL,
    EndUtc TEXT NOT NULL,
    Pid INTEGER,
    ProcessName TEXT,
    Metric TEXT NOT NULL,
    PeakValue REAL NOT NULL,
    DurationSeconds REAL NOT NULL,
    Context TEXT,
    PossibleLeak INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS ChangeEvents (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    DetectedUtc TEXT NOT NULL,
    Category TEXT NOT NULL,
    ChangeType TEXT NOT NULL,
    Name TEXT,
    Path TEXT,
    Details TEXT,
    IsApproved INTEGER NOT NULL,
    IsIgnored INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS IX_SpikeEvents_StartUtc ON SpikeEvents (StartUtc);
CREATE INDEX IF NOT EXISTS IX_ChangeEvents_DetectedUtc ON ChangeEvents (DetectedUtc);
"""

Clock = Callable[[], datetime]

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


class EventStore:
    def __init__(self, db_path: str | Path, clock: Clock = utcnow) -> None:
        self.db_path = Path(db_path)
        self._clock = clock  # injectable so window boundaries can be tested exactly

    @contextmanager
    def _connect(self, what: str) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self.db_path)) as conn:
                with conn:  # commits on success, rolls back on error
                    yield conn
        except sqlite3.Error as exc:
            log.error("%s failed on %s: %s", what, self.db_path, exc)
            raise SentinelError(f"failed to {what}: {exc}", ErrorKind.PERSISTENCE) from exc

    def initialize(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SentinelError(f"failed to create {self.db_path.parent}: {exc}") from exc
        with self._connect("initialize database") as conn:
            conn.executescript(SCHEMA)

    def record_spike(self, event: SpikeEvent) -> int:
        with self._connect("persist spike event") as conn:
            cur = conn.execute(
                """INSERT INTO SpikeEvents (StartUtc, EndUtc, Pid, ProcessName, Metric, PeakValue,
                                            DurationSeconds, Context, PossibleLeak)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    to_rfc3339(event.start_utc),
                    to_rfc3339(event.end_utc),
                    event.pid,
                    event.process_name,
                    event.metric,
                    event.peak_value,
                    event.duration_seconds,
                    event.context,
                    1 if event.possible_leak else 0,
                ),
            )
            return int(cur.lastrowid or 0)

    def record_change(self, event: ChangeEvent) -> int:
        with self._connect("persist change event") as conn:
            cur = conn.execute(
                """INSERT INTO ChangeEvents (DetectedUtc, Category, ChangeType, Name, Path, Details,
                                             IsApproved, IsIgnored)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    to_rfc3339(event.detected_utc),
                    event.category,
                    event.change_type,
                    event.name,
                    event.path,
                    event.details,
                    1 if event.is_approved else 0,
                    1 if event.is_ignored else 0,
                ),
            )
            return int(cur.lastrowid or 0)

    def _since(self, days_back: int) -> str:
        now = self._clock()
        # never an empty or inverted window, and never earlier than the calendar allows
        widest = (now - _EARLIEST).days
        return to_rfc3339(now - timedelta(days=min(max(int(days_back), 1), widest)))

    def query_spikes(self, days_back: int) -> list[SpikeEvent]:
        with self._connect("read spike events") as conn:
            rows = conn.execute(
                """SELECT Id, StartUtc, EndUtc, Pid, ProcessName, Metric, PeakValue, DurationSeconds,
                          Context, PossibleLeak
                   FROM SpikeEvents
                   WHERE StartUtc >= ?
                   ORDER BY StartUtc DESC, Id DESC""",
                (self._since(days_back),),
            ).fetchall()
        return [
            SpikeEvent(
                id=row[0],
                start_utc=parse_rfc3339(row[1]),
                end_utc=parse_rfc3339(row[2]),
                pid=row[3],
                process_name=row[4],
                metric=row[5],
                peak_value=row[6],
                duration_seconds=row[7],
                context=row[8],
                possible_leak=bool(row[9]),
            )
            for row in rows
        ]

    def query_changes(self, days_back: int) -> list[ChangeEvent]:
        with self._connect("read change events") as conn:
            rows = conn.execute(
                """SELECT Id, DetectedUtc, Category, ChangeType, Name, Path, Details, IsApproved, IsIgnored
                   FROM ChangeEvents
                   WHERE DetectedUtc >= ?
                   ORDER BY DetectedUtc DESC, Id DESC""",
                (self._since(days_back),),
            ).fetchall()
        return [
            ChangeEvent(
                id=row[0],
                detected_utc=parse_rfc3339(row[1]),
                category=row[2],
                change_type=row[3],
                name=row[4],
                path=row[5],
                details=row[6],
                is_approved=bool(row[7]),
                is_ignored=bool(row[8]),
            )
            for row in rows
        ]
