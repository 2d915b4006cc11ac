# ruff: noqa: E501
"""
goal: turn one process snapshot into an analysis report: aggregate totals, top offenders per resource, human
readable findings and spike events, then persist the spikes plus a scan-completed change event and write the
report as the new reports/latest.json.

how it decides
1. totals are summed over the whole snapshot, not just the ranked top lists.
2. for each of cpu, memory, disk and network the ten biggest consumers are ranked, highest first. the sort is
   stable, so ties keep snapshot order.
3. findings: total CPU above 80% gives a "High CPU usage" warning, total process memory above 12000 MB gives a
   "High memory usage" warning. evidence lists the top 5 contributors. when neither fires there is exactly one
   "No major issues detected" finding with severity ok.
4. spikes: every top-CPU process at or above 80% becomes a one-second Cpu spike, at most 3 of them. a total CPU
   above 85% (a higher bar than the finding) adds one more spike attributed to "System".
5. persistence: spikes, then one Scan/Completed change event, then a log line, then latest.json. each write is
   its own statement; if any of them fails the whole call fails, but the computed report travels with the error.

the disk/network/gpu figures are zero until real per-process collectors exist. the ranking still runs over them
so the report shape never changes when they arrive.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from agent.errors import SentinelError
from agent.models import ChangeEvent, ProcessRecord, SpikeEvent, SystemSnapshot, to_rfc3339, utcnow
from agent.monitor import system_snapshot
from dashboard.state import AppState

log = logging.getLogger("sentinel.analyzer")

APP_VERSION = "0.1.0"

TOP_N = 10  # entries per top-offender list
EVIDENCE_N = 5  # contributors named in a finding's evidence
CPU_FINDING_THRESHOLD = 80.0  # total cpu percent
MEMORY_FINDING_THRESHOLD_MB = 12_000.0  # total process memory
PROCESS_SPIKE_CPU = 80.0  # per-process cpu percent
MAX_PROCESS_SPIKES = 3
SYSTEM_SPIKE_CPU = 85.0  # total cpu percent, above the finding threshold

# tiny value types


@dataclass(frozen=True)
class Finding:
    title: str
    category: str  # Cpu | Memory | System
    severity: str  # warn | ok
    explanation: str
    evidence: str
    recommended_actions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "category": self.category,
            "severity": self.severity,
            "explanation": self.explanation,
            "evidence": self.evidence,
            "recommendedActions": list(self.recommended_actions),
        }


@dataclass(frozen=True)
class TopOffenders:
    cpu: list[ProcessRecord] = field(default_factory=list)
    memory: list[ProcessRecord] = field(default_factory=list)
    disk: list[ProcessRecord] = field(default_factory=list)
    network: list[ProcessRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpu": [p.to_dict() for p in self.cpu],
            "memory": [p.to_dict() for p in self.memory],
            "disk": [p.to_dict() for p in self.disk],
            "network": [p.to_dict() for p in self.network],
        }


@dataclass(frozen=True)
class AnalyzeSystemResponse:
    generated_utc: datetime
    system_snapshot: SystemSnapshot
    top_offenders: TopOffenders
    findings: list[Finding]
    recent_spikes: list[SpikeEvent]
    report_path: str
    total_cpu: float = 0.0
    total_memory_mb: float = 0.0
    app_version: str = APP_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "generatedUtc": to_rfc3339(self.generated_utc),
            "appVersion": self.app_version,
            "systemSnapshot": self.system_snapshot.to_dict(),
            "topOffenders": self.top_offenders.to_dict(),
            "findings": [f.to_dict() for f in self.findings],
            "recentSpikes": [s.to_dict() for s in self.recent_spikes],
            "reportPath": self.report_path,
        }


class AnalysisPersistenceError(SentinelError):
    """persisting a finished analysis failed; the computed report is still available on .report"""

    def __init__(self, message: str, report: AnalyzeSystemResponse) -> None:
        super().__init__(message)
        self.report = report


# pure helpers


def top_by(
    processes: Sequence[ProcessRecord], key: Callable[[ProcessRecord], float], n: int = TOP_N
) -> list[ProcessRecord]:
    # sorted() is stable, so equal values keep their snapshot order
    return sorted(processes, key=key, reverse=True)[:n]


def build_findings(
    total_cpu: float,
    total_mem: float,
    top_cpu: Sequence[ProcessRecord],
    top_mem: Sequence[ProcessRecord],
) -> list[Finding]:
    findings: list[Finding] = []

    if total_cpu > CPU_FINDING_THRESHOLD:
        top = ", ".join(f"{p.name} ({p.cpu:.2f}%)" for p in top_cpu[:EVIDENCE_N])
        findings.append(
            Finding(
                title="High CPU usage",
                category="Cpu",
                severity="warn",
                explanation="Total CPU usage from top processes is high and may degrade responsiveness.",
                evidence=f"Total CPU {total_cpu:.2f}%. Top: {top}",
                recommended_actions=(
                    "Close or limit heavy applications.",
                    "Investigate repeated CPU spikes in History.",
                ),
            )
        )

    if total_mem > MEMORY_FINDING_THRESHOLD_MB:
        top = ", ".join(f"{p.name} ({p.memory_mb:.2f} MB)" for p in top_mem[:EVIDENCE_N])
        findings.append(
            Finding(
                title="High memory usage",
                category="Memory",
                severity="warn",
                explanation="Total process memory is high and could trigger paging.",
                evidence=f"Total memory {total_mem:.2f} MB. Top: {top}",
                recommended_actions=(
                    "Close unused applications.",
                    "Check for memory leaks in processes with rising usage.",
                ),
            )
        )

    if not findings:
        findings.append(
            Finding(
                title="No major issues detected",
                category="System",
                severity="ok",
                explanation="Current CPU and memory conditions appear healthy.",
                evidence="System usage within expected range.",
                recommended_actions=("Continue monitoring with History and Reports.",),
            )
        )
    return findings


def detect_spikes(
    top_cpu: Sequence[ProcessRecord], total_cpu: float, now: datetime | None = None
) -> list[SpikeEvent]:
    now = now or utcnow()
    spikes = [
        SpikeEvent(
            start_utc=now,
            end_utc=now,
            pid=p.pid,
            process_name=p.name,
            metric="Cpu",
            peak_value=p.cpu,
            duration_seconds=1.0,
            context="High process CPU detected during scan",
        )
        for p in [p for p in top_cpu if p.cpu >= PROCESS_SPIKE_CPU][:MAX_PROCESS_SPIKES]
    ]
    if total_cpu > SYSTEM_SPIKE_CPU:
        spikes.append(
            SpikeEvent(
                start_utc=now,
                end_utc=now,
                pid=None,
                process_name="System",
                metric="Cpu",
                peak_value=total_cpu,
                duration_seconds=1.0,
                context="High total CPU usage during analysis",
            )
        )
    return spikes


class Analyzer:
    """runs the analysis pipeline over a snapshot and persists its results through an AppState"""

    def __init__(
        self,
        state: AppState,
        snapshot_provider: Callable[[], SystemSnapshot] = system_snapshot,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.state = state
        self._snapshot = snapshot_provider
        self._clock = clock

    def build_report(self, processes: Sequence[ProcessRecord]) -> AnalyzeSystemResponse:
        """in-memory half of the pipeline, no writes"""
        total_cpu = sum(p.cpu for p in processes)
        total_mem = sum(p.memory_mb for p in processes)
        offenders = TopOffenders(
            cpu=top_by(processes, lambda p: p.cpu),
            memory=top_by(processes, lambda p: p.memory_mb),
            disk=top_by(processes, lambda p: p.disk_kbps),
            network=top_by(processes, lambda p: p.network_kbps),
        )
        now = self._clock()
        return AnalyzeSystemResponse(
            generated_utc=now,
            system_snapshot=self._snapshot(),
            top_offenders=offenders,
            findings=build_findings(total_cpu, total_mem, offenders.cpu, offenders.memory),
            recent_spikes=detect_spikes(offenders.cpu, total_cpu, now),
            report_path=str(self.state.latest_report_path),
            total_cpu=total_cpu,
            total_memory_mb=total_mem,
        )

    def _persist(self, report: AnalyzeSystemResponse) -> None:
        store = self.state.store
        for spike in report.recent_spikes:
            store.record_spike(spike)
        store.record_change(
            ChangeEvent(
                detected_utc=self._clock(),
                category="Scan",
                change_type="Completed",
                name="Analysis",
                details=(
                    f"{len(report.findings)} finding(s), total CPU {report.total_cpu:.2f}%, "
                    f"total memory {report.total_memory_mb:.2f} MB"
                ),
            )
        )
        self.state.write_log_line("System analysis completed")
        self._write_latest(report)

    def _write_latest(self, report: AnalyzeSystemResponse) -> None:
        # write next to the target then swap, readers never see a half-written file
        path = self.state.latest_report_path
        tmp = path.with_name(path.name + ".tmp")
        try:
            tmp.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            raise SentinelError(f"failed to write latest report: {exc}") from exc

    def analyze(self, processes: Sequence[ProcessRecord]) -> AnalyzeSystemResponse:
        report = self.build_report(processes)
        try:
            self._persist(report)
        except SentinelError as exc:
            log.error("analysis persistence failed: %s", exc)
            raise AnalysisPersistenceError(str(exc), report) from exc
        log.info(
            "analysis done: %d finding(s), %d spike(s)", len(report.findings), len(report.recent_spikes)
        )
        return report
