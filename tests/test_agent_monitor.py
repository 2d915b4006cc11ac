"""
Tests for agent.monitor - ProcessCollector functionality
Tests the two-read snapshot, record fields, trust attachment, sorting, details lookup and termination.
"""

from __future__ import annotations

import contextlib
import os
from unittest.mock import MagicMock, Mock, patch

import psutil
import pytest

from agent.errors import ErrorKind, SentinelError
from agent.models import ProcessRecord, RiskCategory, SystemSnapshot, TrustMetadata
from agent.monitor import ProcessCollector, system_snapshot
from agent.win_sign import HeuristicTrustResolver


class FakeProc:
    """Just enough of psutil.Process for the collector"""

    def __init__(
        self,
        pid,
        name="app",
        exe="",
        cmdline=(),
        ppid=1,
        rss=0,
        cpu=(0.0, 0.0),
        deny=(),
        gone_after_prime=False,
    ):
        self.pid = pid
        self._name = name
        self._exe = exe
        self._cmdline = list(cmdline)
        self._ppid = ppid
        self._rss = rss
        self._cpu = list(cpu)
        self._deny = set(deny)
        self._gone = gone_after_prime
        self._primed = False

    def _check(self, field):
        if self._gone and self._primed:
            raise psutil.NoSuchProcess(self.pid)
        if field in self._deny:
            raise psutil.AccessDenied(self.pid)

    def oneshot(self):
        return contextlib.nullcontext()

    def cpu_percent(self, interval=None):
        if self._primed:
            self._check("cpu")
        value = self._cpu.pop(0) if self._cpu else 0.0
        self._primed = True
        return value

    def name(self):
        self._check("name")
        return self._name

    def exe(self):
        self._check("exe")
        return self._exe

    def cmdline(self):
        self._check("cmdline")
        return self._cmdline

    def ppid(self):
        self._check("ppid")
        return self._ppid

    def memory_info(self):
        self._check("memory")
        return Mock(rss=self._rss)


MB = 1024 * 1024


@pytest.fixture
def collector():
    """Collector with no settle delay and the platform-neutral resolver"""
    return ProcessCollector(resolver=HeuristicTrustResolver(), settle_sec=0.0, kill_grace_sec=0.01)


class TestCollectProcesses:
    """Tests for ProcessCollector.collect_processes"""

    def test_builds_records(self, collector):
        """Test that every live process becomes a ProcessRecord with its fields"""
        procs = [
            FakeProc(
                10,
                name="bash",
                exe="/bin/bash",
                cmdline=["bash", "-l"],
                ppid=1,
                rss=64 * MB,
                cpu=(0.0, 12.5),
            )
        ]
        with patch("psutil.process_iter", return_value=procs):
            records = collector.collect_processes()

        assert len(records) == 1
        rec = records[0]
        assert isinstance(rec, ProcessRecord)
        assert rec.pid == 10
        assert rec.name == "bash"
        assert rec.path == "/bin/bash"
        assert rec.command_line == "bash -l"
        assert rec.parent_pid == 1
        assert rec.memory_mb == pytest.approx(64.0)
        assert rec.cpu == 12.5  # second read, not the priming zero
        assert rec.signed is True
        assert rec.publisher is None
        assert rec.risk == RiskCategory.LOW
        assert (rec.disk_kbps, rec.network_kbps, rec.gpu_percent) == (0.0, 0.0, 0.0)

    def test_sorted_by_cpu_descending(self, collector):
        """Test that the list comes back highest CPU first, ties in table order"""
        procs = [
            FakeProc(1, cpu=(0, 5.0)),
            FakeProc(2, cpu=(0, 50.0)),
            FakeProc(3, cpu=(0, 5.0)),
            FakeProc(4, cpu=(0, 20.0)),
        ]
        with patch("psutil.process_iter", return_value=procs):
            records = collector.collect_processes()
        assert [r.pid for r in records] == [2, 4, 1, 3]

    def test_cpu_clamped(self, collector):
        """Test that multi-core readings above 100% are clamped"""
        with patch("psutil.process_iter", return_value=[FakeProc(1, cpu=(0, 380.0))]):
            records = collector.collect_processes()
        assert records[0].cpu == 100.0

    def test_access_denied_fields_default(self, collector):
        """Test that protected processes are still listed with what could be read"""
        proc = FakeProc(4, name="System", deny={"exe", "cmdline", "memory", "cpu"})
        with patch("psutil.process_iter", return_value=[proc]):
            records = collector.collect_processes()
        rec = records[0]
        assert rec.name == "System"
        assert rec.path is None
        assert rec.command_line is None
        assert rec.memory_mb == 0.0
        assert rec.risk == RiskCategory.UNKNOWN  # no path

    def test_exited_process_dropped(self, collector):
        """Test that a process that exits between the two reads is skipped"""
        procs = [FakeProc(1, cpu=(0, 1.0)), FakeProc(2, gone_after_prime=True)]
        with patch("psutil.process_iter", return_value=procs):
            records = collector.collect_processes()
        assert [r.pid for r in records] == [1]

    def test_temp_binary_scored_high(self, collector):
        """Test that the quick verdict feeds the risk score"""
        proc = FakeProc(7, name="dropper", exe="/tmp/dropper")
        with patch("psutil.process_iter", return_value=[proc]):
            records = collector.collect_processes()
        assert records[0].signed is False
        assert records[0].risk == RiskCategory.HIGH

    def test_waits_settle_interval(self):
        """Test that the collector sleeps between the two reads"""
        collector = ProcessCollector(resolver=HeuristicTrustResolver(), settle_sec=0.15)
        with patch("psutil.process_iter", return_value=[]), patch("time.sleep") as mock_sleep:
            collector.collect_processes()
        mock_sleep.assert_called_once_with(0.15)

    def test_uses_quick_resolver_only(self):
        """Test that bulk collection never calls the slow details() path"""
        resolver = MagicMock()
        resolver.quick.return_value = TrustMetadata(signed=False)
        collector = ProcessCollector(resolver=resolver, settle_sec=0.0)
        with patch("psutil.process_iter", return_value=[FakeProc(1, exe="C:\\x.exe")]):
            collector.collect_processes()
        resolver.quick.assert_called_once_with("C:\\x.exe")
        resolver.details.assert_not_called()

    def test_process_table_failure(self, collector):
        """Test that an unreadable process table is a collection error"""
        with patch("psutil.process_iter", side_effect=psutil.Error("boom")):
            with pytest.raises(SentinelError) as excinfo:
                collector.collect_processes()
        assert excinfo.value.kind == ErrorKind.COLLECTION

    def test_real_process_table(self):
        """Smoke test against the live process table"""
        records = ProcessCollector(settle_sec=0.05).collect_processes()
        assert any(r.pid == os.getpid() for r in records)
        cpus = [r.cpu for r in records]
        assert cpus == sorted(cpus, reverse=True)
        assert all(0.0 <= c <= 100.0 for c in cpus)


class TestFindProcess:
    """Tests for ProcessCollector.find_process"""

    def test_uses_authoritative_resolver(self):
        """Test that details re-score the process with the slow verdict"""
        resolver = MagicMock()
        resolver.quick.return_value = TrustMetadata(signed=False)
        resolver.details.return_value = TrustMetadata(signed=True, publisher="Contoso")
        collector = ProcessCollector(resolver=resolver, settle_sec=0.0)
        procs = [FakeProc(1, exe="C:\\a.exe"), FakeProc(2, name="tool.exe", exe="C:\\Temp\\tool.exe")]
        with patch("psutil.process_iter", return_value=procs):
            rec = collector.find_process(2)
        resolver.details.assert_called_once_with("C:\\Temp\\tool.exe")
        assert rec.signed is True
        assert rec.publisher == "Contoso"
        assert rec.risk == RiskCategory.LOW

    def test_missing_pid(self, collector):
        with patch("psutil.process_iter", return_value=[FakeProc(1)]):
            assert collector.find_process(99) is None

    def test_no_path_skips_details(self):
        resolver = MagicMock()
        resolver.quick.return_value = TrustMetadata()
        collector = ProcessCollector(resolver=resolver, settle_sec=0.0)
        with patch("psutil.process_iter", return_value=[FakeProc(1, exe="")]):
            rec = collector.find_process(1)
        assert rec is not None
        resolver.details.assert_not_called()


class TestKillProcess:
    """Tests for ProcessCollector.kill_process"""

    def test_graceful_terminate(self, collector):
        proc = MagicMock()
        with patch("psutil.Process", return_value=proc):
            assert collector.kill_process(42) is True
        proc.terminate.assert_called_once()
        proc.kill.assert_not_called()

    def test_forced_after_timeout(self, collector):
        proc = MagicMock()
        proc.wait.side_effect = [psutil.TimeoutExpired(0.01), None]
        with patch("psutil.Process", return_value=proc):
            assert collector.kill_process(42) is True
        proc.kill.assert_called_once()

    def test_not_found(self, collector):
        with patch("psutil.Process", side_effect=psutil.NoSuchProcess(42)):
            assert collector.kill_process(42) is False

    def test_access_denied(self, collector):
        proc = MagicMock()
        proc.terminate.side_effect = psutil.AccessDenied(42)
        with patch("psutil.Process", return_value=proc):
            assert collector.kill_process(42) is False

    def test_exits_on_its_own(self, collector):
        proc = MagicMock()
        proc.wait.side_effect = psutil.NoSuchProcess(42)
        with patch("psutil.Process", return_value=proc):
            assert collector.kill_process(42) is True

    def test_negative_pid(self, collector):
        with patch("psutil.Process") as mock_process:
            assert collector.kill_process(-1) is False
            mock_process.assert_not_called()


class TestSystemSnapshot:
    """Tests for system_snapshot"""

    def test_fields(self):
        vm = Mock(total=16 * 1024 * MB, available=4 * 1024 * MB)
        with patch("psutil.virtual_memory", return_value=vm), patch("psutil.cpu_count", return_value=8):
            with patch("platform.node", return_value="box"):
                snap = system_snapshot()
        assert isinstance(snap, SystemSnapshot)
        assert snap.machine_name == "box"
        assert snap.total_physical_memory_mb == pytest.approx(16384.0)
        assert snap.available_memory_mb == pytest.approx(4096.0)
        assert snap.processor_count == 8
        assert snap.os_version

    def test_memory_failure(self):
        with patch("psutil.virtual_memory", side_effect=OSError("nope")):
            with pytest.raises(SentinelError):
                system_snapshot()
