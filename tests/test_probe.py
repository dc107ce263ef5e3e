"""Tests for ProcessProbe."""

import asyncio
import subprocess
from unittest.mock import patch, MagicMock

import pytest

from discovery_signals.exceptions import CommandError, ParseError
from discovery_signals.probe import ProcessProbe, current_platform


def _completed(stdout="", returncode=0, stderr=""):
    return MagicMock(stdout=stdout, returncode=returncode, stderr=stderr)


@patch("discovery_signals.probe.subprocess.run")
def test_run_command_strips_output(mock_run):
    mock_run.return_value = _completed("  chrome\n")
    result = ProcessProbe(timeout=2).run_command(["ps", "-eo", "comm"])
    assert result.stdout == "chrome"
    assert result.returncode == 0
    args, kwargs = mock_run.call_args
    assert args[0] == ["ps", "-eo", "comm"]
    assert kwargs["timeout"] == 2


@patch("discovery_signals.probe.subprocess.run")
def test_explicit_timeout_overrides_default(mock_run):
    mock_run.return_value = _completed("ok")
    ProcessProbe(timeout=10).run_text(["echo"], timeout=3)
    assert mock_run.call_args.kwargs["timeout"] == 3


@patch("discovery_signals.probe.subprocess.run")
def test_nonzero_exit_raises(mock_run):
    mock_run.return_value = _completed("", returncode=1, stderr="no such key")
    with pytest.raises(CommandError) as exc_info:
        ProcessProbe().run_command(["reg", "query"])
    assert exc_info.value.returncode == 1
    assert exc_info.value.stderr == "no such key"


@patch("discovery_signals.probe.subprocess.run", side_effect=FileNotFoundError())
def test_missing_binary_raises(mock_run):
    with pytest.raises(CommandError, match="not found"):
        ProcessProbe().run_command(["xdg-settings", "get", "default-web-browser"])


@patch("discovery_signals.probe.subprocess.run", side_effect=subprocess.TimeoutExpired("ps", 1))
def test_timeout_raises(mock_run):
    with pytest.raises(CommandError, match="timed out"):
        ProcessProbe(timeout=1).run_command(["ps"])


@patch("discovery_signals.probe.subprocess.run")
def test_run_json(mock_run):
    mock_run.return_value = _completed('{"a": [1, 2]}')
    assert ProcessProbe().run_json(["plutil"]) == {"a": [1, 2]}


@patch("discovery_signals.probe.subprocess.run")
def test_run_json_malformed(mock_run):
    mock_run.return_value = _completed("not json")
    with pytest.raises(ParseError):
        ProcessProbe().run_json(["plutil"])


@patch("discovery_signals.probe.subprocess.run")
def test_read_plist_json_invokes_plutil(mock_run, tmp_path):
    mock_run.return_value = _completed("{}")
    path = tmp_path / "Bookmarks.plist"
    ProcessProbe().read_plist_json(path)
    assert mock_run.call_args.args[0] == ["plutil", "-convert", "json", "-o", "-", str(path)]


@patch("discovery_signals.probe.subprocess.run")
def test_async_run_command(mock_run):
    mock_run.return_value = _completed("hello")
    result = asyncio.run(ProcessProbe().arun_command(["echo", "hello"]))
    assert result.stdout == "hello"


def test_current_platform():
    with patch("discovery_signals.probe.sys.platform", "win32"):
        assert current_platform() == "win32"
    with patch("discovery_signals.probe.sys.platform", "darwin"):
        assert current_platform() == "darwin"
    with patch("discovery_signals.probe.sys.platform", "linux"):
        assert current_platform() == "linux"
