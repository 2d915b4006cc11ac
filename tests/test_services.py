"""
Tests for agent.services - service listing and control
Tests JSON parsing, action scripts, the Windows controller (with PowerShell mocked) and the unsupported fallback.
"""

from __future__ import annotations

import json
import subprocess
from unittest.mock import Mock, patch

import pytest

from agent.errors import ErrorKind, SentinelError
from agent.models import RiskCategory
from agent.services import (
    SERVICE_ACTIONS,
    UnsupportedServiceController,
    WindowsServiceController,
    _action_script,
    get_service_controller,
    parse_services,
)


def _svc(name, display=None, path=None, state="Running", mode="Auto", desc=None):
    return {
        "Name": name,
        "DisplayName": display,
        "State": state,
        "StartMode": mode,
        "PathName": path,
        "Description": desc,
    }


class TestParseServices:
    """Tests for parse_services"""

    def test_single_object(self):
        """Test that one service serializes as an object, not an array"""
        raw = json.dumps(_svc("Spooler", "Print Spooler", "C:\\Windows\\System32\\spoolsv.exe"))
        services = parse_services(raw)
        assert len(services) == 1
        svc = services[0]
        assert svc.name == "Spooler"
        assert svc.display_name == "Print Spooler"
        assert svc.binary_path == "C:\\Windows\\System32\\spoolsv.exe"
        assert svc.signed is True
        assert svc.risk == RiskCategory.LOW

    def test_array_sorted_by_display_name(self):
        raw = json.dumps([_svc("b", "Zeta"), _svc("a", "Alpha"), _svc("c", "Mid")])
        assert [s.display_name for s in parse_services(raw)] == ["Alpha", "Mid", "Zeta"]

    def test_quoted_path_with_arguments(self):
        raw = json.dumps(_svc("x", "X", '"C:\\Program Files\\X\\x.exe" -k run'))
        assert parse_services(raw)[0].binary_path == "C:\\Program Files\\X\\x.exe"

    def test_unnamed_entries_skipped(self):
        raw = json.dumps([_svc(""), _svc("ok", "Ok")])
        assert [s.name for s in parse_services(raw)] == ["ok"]

    def test_display_name_falls_back_to_name(self):
        assert parse_services(json.dumps(_svc("svc")))[0].display_name == "svc"

    def test_temp_binary_high_risk(self):
        raw = json.dumps(_svc("bad", "Bad", "C:\\Users\\a\\AppData\\Local\\Temp\\bad.exe"))
        assert parse_services(raw)[0].risk == RiskCategory.HIGH

    def test_empty_output(self):
        assert parse_services("") == []
        assert parse_services("   ") == []

    def test_invalid_json(self):
        with pytest.raises(SentinelError) as excinfo:
            parse_services("{not json")
        assert excinfo.value.kind == ErrorKind.COLLECTION


class TestActionScript:
    """Tests for _action_script"""

    @pytest.mark.parametrize(
        "action,expected",
        [
            ("start", "Start-Service -Name 'Spooler'"),
            ("stop", "Stop-Service -Name 'Spooler' -Force"),
            ("restart", "Restart-Service -Name 'Spooler' -Force"),
            ("automatic", "Set-Service -Name 'Spooler' -StartupType Automatic"),
            ("manual", "Set-Service -Name 'Spooler' -StartupType Manual"),
            ("disabled", "Set-Service -Name 'Spooler' -StartupType Disabled"),
        ],
    )
    def test_known_actions(self, action, expected):
        assert _action_script("Spooler", action) == expected

    def test_all_actions_covered(self):
        for action in SERVICE_ACTIONS:
            assert _action_script("x", action)

    def test_case_insensitive(self):
        assert _action_script("x", "START") == "Start-Service -Name 'x'"

    def test_quote_escaped(self):
        assert _action_script("it's", "start") == "Start-Service -Name 'it''s'"

    def test_unknown_action(self):
        with pytest.raises(SentinelError) as excinfo:
            _action_script("x", "pause")
        assert excinfo.value.kind == ErrorKind.INVALID_REQUEST
        assert "pause" in str(excinfo.value)


class TestWindowsServiceController:
    """Tests for WindowsServiceController with PowerShell mocked"""

    def test_list_services(self):
        out = json.dumps([_svc("a", "A")])
        with patch("subprocess.run", return_value=Mock(returncode=0, stdout=out, stderr="")):
            services = WindowsServiceController().list_services()
        assert [s.name for s in services] == ["a"]

    def test_list_failure(self):
        with patch("subprocess.run", return_value=Mock(returncode=1, stdout="", stderr="denied")):
            with pytest.raises(SentinelError) as excinfo:
                WindowsServiceController().list_services()
        assert excinfo.value.kind == ErrorKind.COLLECTION
        assert str(excinfo.value) == "denied"

    def test_list_powershell_missing(self):
        with patch("subprocess.run", side_effect=FileNotFoundError("powershell")):
            with pytest.raises(SentinelError):
                WindowsServiceController().list_services()

    def test_action_success(self):
        with patch("subprocess.run", return_value=Mock(returncode=0, stdout="", stderr="")) as mock_run:
            msg = WindowsServiceController().run_action("Spooler", "stop")
        assert msg == "Service action completed."
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "powershell"
        assert cmd[-1] == "Stop-Service -Name 'Spooler' -Force"

    def test_action_failure_with_stderr(self):
        with patch("subprocess.run", return_value=Mock(returncode=1, stdout="", stderr="Access is denied\n")):
            with pytest.raises(SentinelError) as excinfo:
                WindowsServiceController().run_action("Spooler", "stop")
        assert str(excinfo.value) == "Access is denied"

    def test_action_failure_without_stderr(self):
        with patch("subprocess.run", return_value=Mock(returncode=1, stdout="", stderr="")):
            with pytest.raises(SentinelError) as excinfo:
                WindowsServiceController().run_action("Spooler", "start")
        assert "Administrator rights" in str(excinfo.value)

    def test_action_timeout(self):
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("powershell", 60)):
            with pytest.raises(SentinelError) as excinfo:
                WindowsServiceController().run_action("Spooler", "start")
        assert excinfo.value.kind == ErrorKind.PERSISTENCE

    def test_unknown_action_never_runs(self):
        with patch("subprocess.run") as mock_run:
            with pytest.raises(SentinelError):
                WindowsServiceController().run_action("Spooler", "explode")
        mock_run.assert_not_called()


class TestUnsupportedServiceController:
    """Tests for the non-Windows fallback"""

    def test_lists_nothing(self):
        assert UnsupportedServiceController().list_services() == []

    def test_refuses_actions(self):
        with pytest.raises(SentinelError) as excinfo:
            UnsupportedServiceController().run_action("cron", "restart")
        assert excinfo.value.kind == ErrorKind.UNSUPPORTED_PLATFORM
        assert str(excinfo.value) == "Service actions are only supported on Windows."


class TestGetServiceController:
    def test_windows(self):
        with patch("sys.platform", "win32"):
            assert isinstance(get_service_controller(), WindowsServiceController)

    def test_other(self):
        with patch("sys.platform", "linux"):
            assert isinstance(get_service_controller(), UnsupportedServiceController)
