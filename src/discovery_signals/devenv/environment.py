"""Development environment: IDE extensions and settings, git identity, toolchains."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path

from discovery_signals.config import DiscoveryConfig
from discovery_signals.exceptions import ProbeError
from discovery_signals.probe import ProcessProbe, current_platform
from discovery_signals.devenv.models import (
    DevEnvironmentSignals,
    GitConfig,
    IDEExtension,
    IDESettings,
)

logger = logging.getLogger(__name__)

# Per-probe timeouts in seconds.
EXTENSIONS_TIMEOUT = 5.0
SETTINGS_TIMEOUT = 3.0
GIT_CONFIG_TIMEOUT = 2.0
DOTFILES_TIMEOUT = 2.0
RUNTIMES_TIMEOUT = 2.0
PACKAGE_MANAGERS_TIMEOUT = 2.0
WSL_TIMEOUT = 3.0

IDE_DIRS = {"vscode": ("Code", ".vscode"), "cursor": ("Cursor", ".cursor")}

DOTFILES = (
    ".zshrc",
    ".bashrc",
    ".bash_profile",
    ".profile",
    ".vimrc",
    ".nvimrc",
    ".tmux.conf",
    ".npmrc",
    ".yarnrc.yml",
    ".editorconfig",
    ".prettierrc",
    ".prettierrc.json",
    ".eslintrc",
    ".eslintrc.json",
    ".wezterm.lua",
    ".alacritty.yml",
    ".alacritty.toml",
    ".hyper.js",
    ".starship.toml",
)

RUNTIME_DIRS = (
    (".nvm", "nvm"),
    (".pyenv", "pyenv"),
    (".rustup", "rustup"),
    (".sdkman", "sdkman"),
    (".rbenv", "rbenv"),
    (".goenv", "goenv"),
    (".volta", "volta"),
    (".cargo", "cargo"),
    (".deno", "deno"),
    (".local/share/mise", "mise"),
)

HOMEBREW_ROOTS = (Path("/opt/homebrew"), Path("/usr/local/Homebrew"))

_VERSION_SUFFIX = re.compile(r"^(.+)-[\d.]+$")
_SECTION = re.compile(r"^\[([^\]]+)\]$")
_KEY_VALUE = re.compile(r"^(\w+)\s*=\s*(.*)$")


def strip_extension_version(dirname: str) -> str:
    """``ms-python.python-2024.1.0`` -> ``ms-python.python``."""
    match = _VERSION_SUFFIX.match(dirname)
    return match.group(1) if match else dirname


def parse_git_config(content: str) -> GitConfig | None:
    """Pull identity, default branch and alias names out of a ``.gitconfig``."""
    if not content.strip():
        return None

    config = GitConfig()
    section = ""
    for line in content.splitlines():
        trimmed = line.strip()
        m = _SECTION.match(trimmed)
        if m:
            section = m.group(1).strip()
            continue
        m = _KEY_VALUE.match(trimmed)
        if not m:
            continue
        key, value = m.group(1), m.group(2).strip()
        if section == "user":
            if key == "name":
                config.name = value
            elif key == "email":
                config.email = value
        elif section == "init" and key == "defaultBranch":
            config.default_branch = value
        elif section == "alias":
            config.aliases.append(key)
    return config


def terminal_profile_key(platform: str) -> str:
    suffix = {"darwin": "osx", "win32": "windows"}.get(platform, "linux")
    return f"terminal.integrated.defaultProfile.{suffix}"


class DevEnvironmentCollector:
    def __init__(
        self,
        config: DiscoveryConfig | None = None,
        probe: ProcessProbe | None = None,
        home: Path | None = None,
        platform: str | None = None,
    ):
        self.config = config or DiscoveryConfig.from_env()
        self.probe = probe or ProcessProbe(timeout=self.config.command_timeout)
        self.home = home or Path.home()
        self.platform = platform or current_platform()
        self.env = self.config.env

    def collect_ide_extensions(self) -> list[IDEExtension]:
        extensions = []
        for source, (_, dot_dir) in IDE_DIRS.items():
            ext_dir = self.home / dot_dir / "extensions"
            if not ext_dir.is_dir():
                continue
            for entry in sorted(ext_dir.iterdir()):
                if entry.name.startswith("."):
                    continue
                extensions.append(IDEExtension(name=strip_extension_version(entry.name), source=source))
        return extensions

    def settings_path(self, source: str) -> Path:
        app_dir = IDE_DIRS[source][0]
        if self.platform == "darwin":
            base = self.home / "Library" / "Application Support"
        elif self.platform == "win32":
            base = Path(self.env.get("APPDATA") or self.home / "AppData" / "Roaming")
        else:
            base = self.home / ".config"
        return base / app_dir / "User" / "settings.json"

    def collect_ide_settings(self) -> list[IDESettings]:
        keys = (
            "workbench.colorTheme",
            "editor.fontFamily",
            "editor.fontSize",
            "editor.formatOnSave",
            "editor.tabSize",
            "editor.defaultFormatter",
            terminal_profile_key(self.platform),
        )
        settings = []
        for source in IDE_DIRS:
            path = self.settings_path(source)
            try:
                parsed = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                continue
            if not isinstance(parsed, dict):
                continue
            highlights = {key: _setting_str(parsed[key]) for key in keys if key in parsed}
            if highlights:
                settings.append(IDESettings(source=source, highlights=highlights))
        return settings

    def collect_git_config(self) -> GitConfig | None:
        try:
            content = (self.home / ".gitconfig").read_text(encoding="utf-8")
        except OSError:
            return None
        return parse_git_config(content)

    def collect_dotfiles(self) -> list[str]:
        return [name for name in DOTFILES if (self.home / name).exists()]

    def collect_runtimes(self) -> list[str]:
        return [name for rel, name in RUNTIME_DIRS if (self.home / rel).exists()]

    def collect_package_managers(self) -> list[str]:
        detected = []
        if self.platform == "darwin" and any(root.exists() for root in HOMEBREW_ROOTS):
            detected.append("homebrew")

        if self.platform == "win32":
            if (self.home / "scoop").exists():
                detected.append("scoop")
            program_data = Path(self.env.get("ProgramData") or "C:\\ProgramData")
            if (program_data / "chocolatey").exists():
                detected.append("chocolatey")
            try:
                self.probe.run_command(["where", "winget"], timeout=PACKAGE_MANAGERS_TIMEOUT)
                detected.append("winget")
            except ProbeError:
                pass

        if self.platform == "win32":
            pnpm = Path(self.env.get("LOCALAPPDATA") or self.home / "AppData" / "Local") / "pnpm"
        else:
            pnpm = self.home / ".local" / "share" / "pnpm"
        if pnpm.exists():
            detected.append("pnpm")

        return list(dict.fromkeys(detected))

    def detect_wsl(self) -> bool:
        if self.platform != "win32":
            return False
        packages = Path(self.env.get("LOCALAPPDATA") or self.home / "AppData" / "Local") / "Packages"
        try:
            return any(entry.name.startswith("CanonicalGroupLimited") for entry in packages.iterdir())
        except OSError:
            return False

    async def acollect(self) -> DevEnvironmentSignals:
        (
            ide_extensions,
            ide_settings,
            git_config,
            dotfiles,
            runtimes,
            package_managers,
            wsl_detected,
        ) = await asyncio.gather(
            _with_timeout(self.collect_ide_extensions, EXTENSIONS_TIMEOUT, []),
            _with_timeout(self.collect_ide_settings, SETTINGS_TIMEOUT, []),
            _with_timeout(self.collect_git_config, GIT_CONFIG_TIMEOUT, None),
            _with_timeout(self.collect_dotfiles, DOTFILES_TIMEOUT, []),
            _with_timeout(self.collect_runtimes, RUNTIMES_TIMEOUT, []),
            _with_timeout(self.collect_package_managers, PACKAGE_MANAGERS_TIMEOUT, []),
            _with_timeout(self.detect_wsl, WSL_TIMEOUT, False),
        )
        return DevEnvironmentSignals(
            ide_extensions=ide_extensions,
            ide_settings=ide_settings,
            git_config=git_config,
            dotfiles=dotfiles,
            runtimes=runtimes,
            package_managers=package_managers,
            wsl_detected=wsl_detected,
        )

    def collect(self) -> DevEnvironmentSignals:
        return asyncio.run(self.acollect())


def _setting_str(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


async def _with_timeout(func, timeout: float, default):
    try:
        return await asyncio.wait_for(asyncio.to_thread(func), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("%s timed out after %ss", func.__name__, timeout)
        return default
    except OSError as e:
        logger.debug("%s failed: %s", func.__name__, e)
        return default
    except Exception as e:
        logger.warning("%s failed: %s", func.__name__, e, exc_info=True)
        return default


def format_dev_environment_for_synthesis(data: DevEnvironmentSignals | None) -> str:
    if not data:
        return ""

    sections = []

    if data.ide_extensions:
        lines = ["### IDE Extensions"]
        for source, label in (("vscode", "VSCode"), ("cursor", "Cursor")):
            exts = [e.name for e in data.ide_extensions if e.source == source]
            if exts:
                lines.append(f"{label} ({len(exts)}): {', '.join(exts[:20])}")
        sections.append("\n".join(lines))

    if data.ide_settings:
        lines = ["### IDE Settings"]
        for setting in data.ide_settings:
            for key, value in setting.highlights.items():
                lines.append(f"{setting.source}: {key}: {json.dumps(value)}")
        sections.append("\n".join(lines))

    git = data.git_config
    if git:
        lines = ["### Git Identity"]
        parts = []
        if git.name:
            parts.append(f"Name: {git.name}")
        if git.email:
            parts.append(f"Email: {git.email}")
        if git.default_branch:
            parts.append(f"Default Branch: {git.default_branch}")
        if parts:
            lines.append(", ".join(parts))
        if git.aliases:
            lines.append(f"Aliases: {', '.join(git.aliases)}")
        if len(lines) > 1:
            sections.append("\n".join(lines))

    if data.dotfiles:
        sections.append("### Dotfiles\n" + ", ".join(data.dotfiles))
    if data.runtimes:
        sections.append("### Runtimes\n" + ", ".join(data.runtimes))
    if data.package_managers:
        sections.append("### Package Managers\n" + ", ".join(data.package_managers))
    if data.wsl_detected:
        sections.append("### WSL\nDetected")

    if not sections:
        return ""
    return "## Development Environment\n" + "\n".join(sections)
