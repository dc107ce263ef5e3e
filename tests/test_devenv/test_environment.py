"""Tests for development environment collection."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from discovery_signals.config import DiscoveryConfig
from discovery_signals.devenv.environment import (
    DevEnvironmentCollector,
    format_dev_environment_for_synthesis,
    parse_git_config,
    strip_extension_version,
    terminal_profile_key,
)
from discovery_signals.devenv.models import DevEnvironmentSignals, GitConfig, IDEExtension, IDESettings
from discovery_signals.exceptions import CommandError

GITCONFIG = """
[user]
    name = Ada Lovelace
    email = ada@example.org
[init]
    defaultBranch = main
[alias]
    co = checkout
    st = status
[core]
    editor = nvim
"""


def _collector(home, platform="linux", probe=None, env=None):
    config = DiscoveryConfig(home=home / "app", env=env or {})
    return DevEnvironmentCollector(config=config, probe=probe or MagicMock(), home=home, platform=platform)


@pytest.mark.parametrize("dirname,expected", [
    ("ms-python.python-2024.1.0", "ms-python.python"),
    ("rust-lang.rust-analyzer-0.3.1850", "rust-lang.rust-analyzer"),
    ("esbenp.prettier-vscode", "esbenp.prettier-vscode"),
])
def test_strip_extension_version(dirname, expected):
    assert strip_extension_version(dirname) == expected


def test_parse_git_config():
    assert parse_git_config(GITCONFIG) == GitConfig(
        name="Ada Lovelace",
        email="ada@example.org",
        default_branch="main",
        aliases=["co", "st"],
    )


def test_parse_git_config_empty():
    assert parse_git_config("   \n") is None


def test_terminal_profile_key():
    assert terminal_profile_key("darwin") == "terminal.integrated.defaultProfile.osx"
    assert terminal_profile_key("win32") == "terminal.integrated.defaultProfile.windows"
    assert terminal_profile_key("linux") == "terminal.integrated.defaultProfile.linux"


def test_collect_ide_extensions(tmp_path):
    vscode = tmp_path / ".vscode" / "extensions"
    cursor = tmp_path / ".cursor" / "extensions"
    for d in (vscode / "ms-python.python-2024.1.0", vscode / ".obsolete", cursor / "vscodevim.vim-1.27.2"):
        d.mkdir(parents=True)
    assert _collector(tmp_path).collect_ide_extensions() == [
        IDEExtension("ms-python.python", "vscode"),
        IDEExtension("vscodevim.vim", "cursor"),
    ]


def test_collect_ide_settings(tmp_path):
    path = tmp_path / ".config" / "Code" / "User" / "settings.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({
        "workbench.colorTheme": "One Dark Pro",
        "editor.formatOnSave": True,
        "editor.tabSize": 2,
        "telemetry.telemetryLevel": "off",
    }))
    assert _collector(tmp_path).collect_ide_settings() == [IDESettings("vscode", {
        "workbench.colorTheme": "One Dark Pro",
        "editor.formatOnSave": "true",
        "editor.tabSize": "2",
    })]


def test_settings_path_windows_uses_appdata(tmp_path):
    collector = _collector(tmp_path, platform="win32", env={"APPDATA": str(tmp_path / "Roaming")})
    assert collector.settings_path("cursor") == tmp_path / "Roaming" / "Cursor" / "User" / "settings.json"


def test_dotfiles_and_runtimes(tmp_path):
    (tmp_path / ".zshrc").write_text("")
    (tmp_path / ".tmux.conf").write_text("")
    (tmp_path / ".pyenv").mkdir()
    (tmp_path / ".local" / "share" / "mise").mkdir(parents=True)
    collector = _collector(tmp_path)
    assert collector.collect_dotfiles() == [".zshrc", ".tmux.conf"]
    assert collector.collect_runtimes() == ["pyenv", "mise"]


def test_package_managers_windows(tmp_path):
    (tmp_path / "scoop").mkdir()
    (tmp_path / "Local" / "pnpm").mkdir(parents=True)
    probe = MagicMock()
    collector = _collector(
        tmp_path, platform="win32", probe=probe,
        env={"LOCALAPPDATA": str(tmp_path / "Local"), "ProgramData": str(tmp_path / "ProgramData")},
    )
    assert collector.collect_package_managers() == ["scoop", "winget", "pnpm"]
    assert probe.run_command.call_args.args[0] == ["where", "winget"]


def test_package_managers_winget_missing(tmp_path):
    probe = MagicMock()
    probe.run_command.side_effect = CommandError("where exited with status 1")
    collector = _collector(tmp_path, platform="win32", probe=probe, env={"LOCALAPPDATA": str(tmp_path)})
    assert collector.collect_package_managers() == []


def test_detect_wsl(tmp_path):
    packages = tmp_path / "Local" / "Packages"
    (packages / "CanonicalGroupLimited.Ubuntu_79rhkp1fndgsc").mkdir(parents=True)
    collector = _collector(tmp_path, platform="win32", env={"LOCALAPPDATA": str(tmp_path / "Local")})
    assert collector.detect_wsl() is True
    assert _collector(tmp_path, platform="linux").detect_wsl() is False


def test_acollect(tmp_path):
    (tmp_path / ".gitconfig").write_text(GITCONFIG)
    (tmp_path / ".bashrc").write_text("")
    signals = asyncio.run(_collector(tmp_path).acollect())
    assert signals.git_config.email == "ada@example.org"
    assert signals.dotfiles == [".bashrc"]
    assert signals.wsl_detected is False


def test_acollect_failing_collector_keeps_others(tmp_path):
    (tmp_path / ".bashrc").write_text("")
    collector = _collector(tmp_path)

    def broken_extensions():
        raise ValueError("bad extension manifest")

    collector.collect_ide_extensions = broken_extensions
    signals = asyncio.run(collector.acollect())
    assert signals.ide_extensions == []
    assert signals.dotfiles == [".bashrc"]


def test_format():
    data = DevEnvironmentSignals(
        ide_extensions=[IDEExtension("ms-python.python", "vscode"), IDEExtension("vscodevim.vim", "cursor")],
        ide_settings=[IDESettings("vscode", {"editor.tabSize": "2"})],
        git_config=GitConfig(name="Ada Lovelace", email="ada@example.org", default_branch="main", aliases=["co"]),
        dotfiles=[".zshrc"],
        runtimes=["pyenv"],
        package_managers=["homebrew"],
    )
    assert format_dev_environment_for_synthesis(data) == "\n".join([
        "## Development Environment",
        "### IDE Extensions",
        "VSCode (1): ms-python.python",
        "Cursor (1): vscodevim.vim",
        "### IDE Settings",
        'vscode: editor.tabSize: "2"',
        "### Git Identity",
        "Name: Ada Lovelace, Email: ada@example.org, Default Branch: main",
        "Aliases: co",
        "### Dotfiles",
        ".zshrc",
        "### Runtimes",
        "pyenv",
        "### Package Managers",
        "homebrew",
    ])


def test_format_empty():
    assert format_dev_environment_for_synthesis(None) == ""
    assert format_dev_environment_for_synthesis(DevEnvironmentSignals()) == ""
