"""Dock pins, app usage and filesystem signals."""

from discovery_signals.system.models import DockPin, AppUsage, FilesystemSignals, SystemSignals
from discovery_signals.system.signals import (
    SystemSignalCollector,
    format_system_signals_for_synthesis,
)

__all__ = [
    "DockPin",
    "AppUsage",
    "FilesystemSignals",
    "SystemSignals",
    "SystemSignalCollector",
    "format_system_signals_for_synthesis",
]
