"""Data models for system signals."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DockPin:
    name: str
    path: str


@dataclass
class AppUsage:
    """Foreground time for one application over the last 7 days."""

    app: str
    duration_minutes: int


@dataclass
class FilesystemSignals:
    downloads_extensions: dict[str, int] = field(default_factory=dict)
    documents_folders: list[str] = field(default_factory=list)
    desktop_file_types: dict[str, int] = field(default_factory=dict)


@dataclass
class SystemSignals:
    dock_pins: list[DockPin] = field(default_factory=list)
    app_usage: list[AppUsage] = field(default_factory=list)
    filesystem: FilesystemSignals = field(default_factory=FilesystemSignals)
