"""Tests for qemumac.utils module."""

from __future__ import annotations

import re
import subprocess
from unittest.mock import patch

import pytest

from qemumac import constants
from qemumac.utils import (
    deterministic_mac,
    detect_image_format,
    get_env,
    log,
    privileged,
    run,
    sanitize_name,
    set_verbose,
    tap_name_for,
    wait_for_path,
)


class TestLog:
    def test_info_level(self, capsys):
        log("INFO", "test message")
        captured = capsys.readouterr()
        assert "[INFO]" in captured.out
        assert "test message" in captured.out

    def test_debug_suppressed_by_default(self, capsys):
        log("DEBUG", "should not appear")
        assert capsys.readouterr().out == ""

    def test_debug_shown_when_verbose(self, capsys):
        set_verbose(True)
        log("DEBUG", "now visible")
        assert "now visible" in capsys.readouterr().out
        assert constants._LOG_VERBOSE is True


class TestGetEnv:
    def test_returns_value(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "hello")
        assert get_env("TEST_VAR") == "hello"

    def test_returns_default(self, monkeypatch):
        monkeypatch.delenv("TEST_VAR", raising=False)
        assert get_env("TEST_VAR", "fallback") == "fallback"


class TestPrivileged:
    def test_root_runs_directly(self):
        with patch("qemumac.utils.os.geteuid", return_value=0):
            assert privileged(["ip", "link"]) == ["ip", "link"]

    def test_user_gets_sudo(self):
        with patch("qemumac.utils.os.geteuid", return_value=1000):
            assert privileged(["ip", "link"]) == ["sudo", "ip", "link"]


class TestNames:
    def test_deterministic_mac_format(self):
        mac = deterministic_mac("sys76")
        assert re.match(r"^52:54:00(:[0-9a-f]{2}){3}$", mac)
        assert mac == deterministic_mac("sys76")
        assert mac != deterministic_mac("osx")

    def test_sanitize_name(self):
        assert sanitize_name("Mac OS 9.2 (beta)!") == "MacOS9.2beta"

    @pytest.mark.parametrize(
        "session,expected",
        [
            ("sys76", "tap_sys76"),
            ("macos-9.2.2-installer", "tap_macos-9.2.2"),
            ("!!!", "tap_session"),
        ],
    )
    def test_tap_name(self, session, expected):
        name = tap_name_for(session)
        assert name == expected
        assert len(name) <= constants.IFNAME_MAX_LEN

    @pytest.mark.parametrize("name,fmt", [("a.img", "raw"), ("a.qcow2", "qcow2"), ("A.QCOW", "qcow2"), ("a.iso", "raw")])
    def test_detect_image_format(self, tmp_path, name, fmt):
        assert detect_image_format(tmp_path / name) == fmt


class TestWaitForPath:
    def test_present_immediately(self, tmp_path):
        with patch("qemumac.utils.time.sleep") as mock_sleep:
            assert wait_for_path(tmp_path, attempts=5, interval=1.0) is True
        mock_sleep.assert_not_called()

    def test_gives_up_after_attempts(self, tmp_path):
        with patch("qemumac.utils.time.sleep") as mock_sleep:
            assert wait_for_path(tmp_path / "sock", attempts=5, interval=1.0) is False
        assert mock_sleep.call_count == 4


class TestRun:
    @patch("qemumac.utils.subprocess.run")
    def test_passes_text_and_check(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(["true"], 0)
        run(["true"], capture_output=True)
        mock_run.assert_called_once_with(["true"], check=True, text=True, capture_output=True)
