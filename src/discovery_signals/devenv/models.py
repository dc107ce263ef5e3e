"""Data models for development-environment signals."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class IDEExtension:
    name: str
    source: str  # "vscode" | "cursor"


@dataclass
class IDESettings:
    source: str
    highlights: dict[str, str] = field(default_factory=dict)


@dataclass
class GitConfig:
    name: str | None = None
    email: str | None = None
    default_branch: str | None = None
    aliases: list[str] = field(default_factory=list)


@dataclass
class DevEnvironmentSignals:
    ide_extensions: list[IDEExtension] = field(default_factory=list)
    ide_settings: list[IDESettings] = field(default_factory=list)
    git_config: GitConfig | None = None
    dotfiles: list[str] = field(default_factory=list)
    runtimes: list[str] = field(default_factory=list)
    package_managers: list[str] = field(default_factory=list)
    wsl_detected: bool = False


@dataclass
class CommandFrequency:
    command: str
    count: int


@dataclass
class ShellAnalysis:
    top_commands: list[CommandFrequency] = field(default_factory=list)
    project_paths: list[str] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)


@dataclass
class DevProject:
    name: str
    path: str
    last_activity: datetime
