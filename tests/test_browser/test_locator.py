"""Tests for browser detection."""

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from discovery_signals.browser.locator import (
    BrowserLocator,
    match_browser,
    parse_ls_handlers,
    parse_profile_from_history_path,
)
from discovery_signals.exceptions import CommandError


def _make_history(base: Path, rel: str, mtime: float | None = None) -> Path:
    path = base / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def _probe(**outputs):
    """Probe whose run_text answers by the command's first argument."""
    probe = MagicMock()

    def run_text(args, timeout=None):
        value = outputs.get(args[0])
        if value is None:
            raise CommandError(f"{args[0]} not found")
        return value

    probe.run_text.side_effect = run_text
    return probe


@pytest.mark.parametrize("output,platform,expected", [
    ("ProgId    REG_SZ    ChromeHTML", "win32", "chrome"),
    ("ProgId    REG_SZ    MSEdgeHTM", "win32", "edge"),
    ("ProgId    REG_SZ    FirefoxURL-308046B0AF4A39CB", "win32", None),
    ("com.google.chrome", "darwin", "chrome"),
    ("company.thebrowser.browser", "darwin", "arc"),
    ("com.apple.safari", "darwin", None),
    ("brave-browser.desktop", "linux", "brave"),
    ("chromium-browser.desktop", "linux", "chrome"),
    ("firefox.desktop", "linux", None),
    ("something-else", "linux", None),
])
def test_match_browser(output, platform, expected):
    assert match_browser(output, platform) == expected


def test_parse_ls_handlers():
    output = """(
        {
        LSHandlerPreferredVersions =         {
            LSHandlerRoleAll = "-";
        };
        LSHandlerRoleAll = "com.google.chrome";
        LSHandlerURLScheme = http;
    },
        {
        LSHandlerContentType = "public.html";
        LSHandlerRoleAll = "com.apple.safari";
    },
        {
        LSHandlerRoleAll = "company.thebrowser.browser";
        LSHandlerURLScheme = https;
    }
)"""
    assert parse_ls_handlers(output) == {
        "http": "com.google.chrome",
        "https": "company.thebrowser.browser",
    }


@pytest.mark.parametrize("path,expected", [
    ("/home/u/.config/google-chrome/Default/History", "Default"),
    ("C:\\Users\\u\\AppData\\Local\\Google\\Chrome\\User Data\\Profile 2\\History", "Profile 2"),
    ("/Users/u/Library/Application Support/com.operasoftware.Opera/History", None),
])
def test_parse_profile_from_history_path(path, expected):
    assert parse_profile_from_history_path(path) == expected


def test_detect_running_browsers_priority_order(tmp_path):
    probe = _probe(ps="COMMAND\n/usr/bin/brave\n/opt/google/chrome/chrome\n")
    locator = BrowserLocator(probe=probe, platform="linux", home=tmp_path, env={})
    assert locator.detect_running_browsers() == ["chrome", "brave"]


def test_detect_running_browsers_windows_uses_tasklist(tmp_path):
    probe = _probe(tasklist='"msedge.exe","1234","Console","1","100 K"')
    locator = BrowserLocator(probe=probe, platform="win32", home=tmp_path, env={"LOCALAPPDATA": str(tmp_path)})
    assert locator.detect_running_browsers() == ["edge"]
    assert probe.run_text.call_args.args[0] == ["tasklist", "/FO", "CSV", "/NH"]


def test_detect_running_browsers_command_failure(tmp_path):
    locator = BrowserLocator(probe=_probe(), platform="linux", home=tmp_path, env={})
    assert locator.detect_running_browsers() == []


def test_default_browser_mac_falls_back_to_perl(tmp_path):
    probe = _probe(defaults="(\n)", perl="com.brave.Browser")
    locator = BrowserLocator(probe=probe, platform="darwin", home=tmp_path, env={})
    assert locator.detect_default_browser() == "brave"


def test_default_browser_mac_safari_is_unsupported(tmp_path):
    output = '(\n    {\n        LSHandlerRoleAll = "com.apple.safari";\n        LSHandlerURLScheme = http;\n    }\n)'
    probe = _probe(defaults=output, perl="com.google.chrome")
    locator = BrowserLocator(probe=probe, platform="darwin", home=tmp_path, env={})
    assert locator.detect_default_browser() is None


def test_most_recent_profile(tmp_path):
    base = tmp_path / ".config" / "google-chrome"
    _make_history(base, "Default/History", mtime=1_000_000)
    _make_history(base, "Profile 2/History", mtime=2_000_000)
    locator = BrowserLocator(probe=_probe(), platform="linux", home=tmp_path, env={})
    assert locator.most_recent_profile("chrome") == "Profile 2"


def test_most_recent_profile_without_browser_dir(tmp_path):
    locator = BrowserLocator(probe=_probe(), platform="linux", home=tmp_path, env={})
    assert locator.most_recent_profile("vivaldi") == "Default"


def test_locate_prefers_running_browser(tmp_path):
    _make_history(tmp_path / ".config" / "google-chrome", "Default/History", mtime=1_000)
    brave = _make_history(tmp_path / ".config" / "BraveSoftware" / "Brave-Browser", "Default/History", mtime=9_000)
    probe = _probe(ps="brave\n")
    locator = BrowserLocator(probe=probe, platform="linux", home=tmp_path, env={})
    target = locator.locate()
    assert target.kind == "brave"
    assert target.history_path == brave
    assert target.profile_name == "Default"


def test_locate_uses_default_browser_when_none_running(tmp_path):
    edge = _make_history(tmp_path / ".config" / "microsoft-edge", "Profile 1/History")
    probe = _probe(ps="bash\n", **{"xdg-settings": "microsoft-edge.desktop"})
    locator = BrowserLocator(probe=probe, platform="linux", home=tmp_path, env={})
    target = locator.locate()
    assert target.kind == "edge"
    assert target.history_path == edge
    assert target.profile_name == "Profile 1"


def test_locate_falls_back_to_most_recently_modified(tmp_path):
    _make_history(tmp_path / ".config" / "google-chrome", "Default/History", mtime=1_000)
    vivaldi = _make_history(tmp_path / ".config" / "vivaldi", "Default/History", mtime=5_000)
    locator = BrowserLocator(probe=_probe(), platform="linux", home=tmp_path, env={})
    target = locator.locate()
    assert target.kind == "vivaldi"
    assert target.history_path == vivaldi


def test_scan_finds_alternate_channel(tmp_path):
    beta = _make_history(tmp_path, ".config/google-chrome-beta/Profile 3/History")
    locator = BrowserLocator(
        probe=_probe(), platform="linux", home=tmp_path, env={}, detection_order=("scan",),
    )
    target = locator.locate()
    assert target.kind == "chrome"
    assert target.history_path == beta
    assert target.profile_name == "Profile 3"


def test_detection_order_is_respected(tmp_path):
    _make_history(tmp_path / ".config" / "google-chrome", "Default/History", mtime=9_000)
    brave = _make_history(tmp_path / ".config" / "BraveSoftware" / "Brave-Browser", "Default/History", mtime=1_000)
    locator = BrowserLocator(
        probe=_probe(ps="brave\n"), platform="linux", home=tmp_path, env={},
        detection_order=("running", "recent"),
    )
    assert locator.locate().history_path == brave

    locator.detection_order = ("recent", "running")
    assert locator.locate().kind == "chrome"


def test_locate_nothing_found(tmp_path):
    locator = BrowserLocator(probe=_probe(), platform="linux", home=tmp_path, env={})
    assert locator.locate() is None


def test_windows_base_path_uses_localappdata(tmp_path):
    local = tmp_path / "Local"
    history = _make_history(local, "Google/Chrome/User Data/Default/History")
    locator = BrowserLocator(
        probe=_probe(), platform="win32", home=tmp_path, env={"LOCALAPPDATA": str(local)},
    )
    assert locator.history_path_for("chrome", "Default") == history
