"""Behavioral system signals: Dock pins, app usage and filesystem sampling.

Each sub-collector runs in a worker thread under its own timeout; a slow or
hung OS store yields that collector's empty default instead of blocking the
run.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections import Counter
from pathlib import Path

from discovery_signals.config import DiscoveryConfig
from discovery_signals.exceptions import DiscoveryError, PermissionDeniedError
from discovery_signals.probe import ProcessProbe, current_platform
from discovery_signals.storage import read_only_copy
from discovery_signals.system.models import AppUsage, DockPin, FilesystemSignals, SystemSignals

logger = logging.getLogger(__name__)

USAGE_LIMIT = 30
TOP_EXTENSIONS = 5
TOP_DOCUMENT_FOLDERS = 20

# ZSTARTDATE/ZENDDATE are Core Data timestamps (seconds since 2001-01-01).
KNOWLEDGE_USAGE_QUERY = f"""
    SELECT ZVALUESTRING AS app, SUM(ZENDDATE - ZSTARTDATE) AS total_seconds
    FROM ZOBJECT
    WHERE ZSTREAMNAME = '/app/usage'
      AND ZVALUESTRING IS NOT NULL
      AND ZVALUESTRING != ''
      AND ZSTARTDATE > (strftime('%s', 'now') - 978307200 - 604800)
    GROUP BY ZVALUESTRING
    ORDER BY total_seconds DESC
    LIMIT {USAGE_LIMIT}
"""

# LastModifiedTime is Unix seconds.
ACTIVITY_USAGE_QUERY = f"""
    SELECT AppId, SUM(COALESCE(ActiveDurationSeconds, 0)) AS total_seconds
    FROM Activity
    WHERE LastModifiedTime > CAST(strftime('%s', 'now') AS INTEGER) - 604800
    GROUP BY AppId
    ORDER BY total_seconds DESC
    LIMIT {USAGE_LIMIT}
"""

ACTIVITY_FALLBACK_QUERY = f"""
    SELECT AppId, COUNT(*) AS total_seconds
    FROM Activity
    WHERE LastModifiedTime > CAST(strftime('%s', 'now') AS INTEGER) - 604800
    GROUP BY AppId
    ORDER BY total_seconds DESC
    LIMIT {USAGE_LIMIT}
"""


def clean_bundle_name(bundle_id: str) -> str:
    """``com.apple.Safari`` -> ``Safari``; ``com.tinyspeck.slackmacgap`` -> ``Slackmacgap``."""
    name = bundle_id
    if name.startswith("com.apple."):
        name = name[len("com.apple."):]
    name = name.split(".")[-1]
    return name[:1].upper() + name[1:]


def clean_activity_app_id(app_id: str) -> str:
    """Resolve an ``Activity.AppId`` value to a display name."""
    name = app_id or ""
    try:
        parsed = json.loads(name)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and parsed.get("application"):
        name = parsed["application"]
    elif isinstance(parsed, list):
        for entry in parsed:
            if isinstance(entry, dict) and entry.get("application"):
                name = entry["application"]
                break
    if name.startswith("Microsoft."):
        name = name[len("Microsoft."):]
    return name


def _to_usage(app: str, total_seconds: float | None) -> AppUsage:
    return AppUsage(app=app, duration_minutes=round((total_seconds or 0) / 60))


def count_extensions(directory: Path, limit: int = TOP_EXTENSIONS) -> dict[str, int]:
    """Most common lowercase file extensions in ``directory`` (dotfiles ignored)."""
    counts: Counter[str] = Counter()
    for entry in directory.iterdir():
        if entry.name.startswith("."):
            continue
        if entry.suffix:
            counts[entry.suffix.lower()] += 1
    return dict(counts.most_common(limit))


def list_subfolders(directory: Path, limit: int = TOP_DOCUMENT_FOLDERS) -> list[str]:
    folders = []
    for entry in directory.iterdir():
        if entry.name.startswith("."):
            continue
        try:
            if entry.is_dir():
                folders.append(entry.name)
        except OSError:
            continue
    return sorted(folders, key=str.lower)[:limit]


class SystemSignalCollector:
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

    # ------------------------------------------------------------------
    # Dock pins
    # ------------------------------------------------------------------

    def collect_dock_pins(self) -> list[DockPin]:
        if self.platform != "darwin":
            return []

        plist_path = self.home / "Library" / "Preferences" / "com.apple.dock.plist"
        try:
            plist = self.probe.read_plist_json(plist_path, timeout=self.config.dock_timeout)
        except DiscoveryError as e:
            logger.warning("Failed to read dock pins: %s", e)
            return []

        pins = []
        for entry in (plist or {}).get("persistent-apps") or []:
            tile = entry.get("tile-data") if isinstance(entry, dict) else None
            if not tile:
                continue
            name = tile.get("file-label")
            url = (tile.get("file-data") or {}).get("_CFURLString")
            if name and url:
                pins.append(DockPin(name=name, path=url))
        return pins

    # ------------------------------------------------------------------
    # App usage
    # ------------------------------------------------------------------

    def collect_app_usage(self) -> list[AppUsage]:
        if self.platform == "darwin":
            return self._app_usage_macos()
        if self.platform == "win32":
            return self._app_usage_windows()
        return []

    def _app_usage_macos(self) -> list[AppUsage]:
        source = self.home / "Library" / "Application Support" / "Knowledge" / "knowledgeC.db"
        if not source.exists():
            logger.info("knowledgeC.db not found")
            return []

        try:
            with read_only_copy(source, self.config.cache_dir, "knowledgec") as conn:
                rows = conn.execute(KNOWLEDGE_USAGE_QUERY).fetchall()
        except PermissionDeniedError:
            logger.warning("knowledgeC.db access denied - grant Full Disk Access")
            return []
        except (DiscoveryError, sqlite3.Error) as e:
            logger.warning("Failed to read macOS app usage: %s", e)
            return []

        usage = [_to_usage(clean_bundle_name(row["app"]), row["total_seconds"]) for row in rows]
        return [u for u in usage if u.duration_minutes > 0]

    def _activities_cache_path(self) -> Path | None:
        local = self.config.env.get("LOCALAPPDATA")
        base = (Path(local) if local else self.home / "AppData" / "Local") / "ConnectedDevicesPlatform"
        if not base.is_dir():
            return None
        for entry in sorted(base.iterdir()):
            candidate = entry / "ActivitiesCache.db"
            if candidate.is_file():
                return candidate
        return None

    def _app_usage_windows(self) -> list[AppUsage]:
        source = self._activities_cache_path()
        if not source:
            logger.info("ActivitiesCache.db not found")
            return []

        try:
            with read_only_copy(source, self.config.cache_dir, "activitiescache") as conn:
                try:
                    rows = conn.execute(ACTIVITY_USAGE_QUERY).fetchall()
                except sqlite3.OperationalError as e:
                    # Some schema versions lack ActiveDurationSeconds.
                    logger.debug("Activity duration query failed, counting rows: %s", e)
                    rows = conn.execute(ACTIVITY_FALLBACK_QUERY).fetchall()
        except (DiscoveryError, sqlite3.Error) as e:
            logger.warning("Failed to read Windows app usage: %s", e)
            return []

        usage = [_to_usage(clean_activity_app_id(row["AppId"]), row["total_seconds"]) for row in rows]
        return [u for u in usage if u.duration_minutes > 0]

    # ------------------------------------------------------------------
    # Filesystem
    # ------------------------------------------------------------------

    def collect_filesystem(self) -> FilesystemSignals:
        result = FilesystemSignals()

        try:
            result.downloads_extensions = count_extensions(self.home / "Downloads")
        except OSError as e:
            logger.debug("Failed to read Downloads: %s", e)

        try:
            result.documents_folders = list_subfolders(self.home / "Documents")
        except OSError as e:
            logger.debug("Failed to read Documents: %s", e)

        try:
            result.desktop_file_types = count_extensions(self.home / "Desktop")
        except OSError as e:
            logger.debug("Failed to read Desktop: %s", e)

        return result

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def acollect(self) -> SystemSignals:
        """Run the three sub-collectors concurrently, each under its timeout."""
        dock_pins, app_usage, filesystem = await asyncio.gather(
            self._with_timeout(self.collect_dock_pins, self.config.dock_timeout, []),
            self._with_timeout(self.collect_app_usage, self.config.usage_timeout, []),
            self._with_timeout(
                self.collect_filesystem, self.config.filesystem_timeout, FilesystemSignals()
            ),
        )
        logger.info(
            "System signals collected: %d dock pins, %d apps",
            len(dock_pins), len(app_usage),
        )
        return SystemSignals(dock_pins=dock_pins, app_usage=app_usage, filesystem=filesystem)

    def collect(self) -> SystemSignals:
        return asyncio.run(self.acollect())

    @staticmethod
    async def _with_timeout(func, timeout: float, default):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %ss", func.__name__, timeout)
            return default
        except Exception as e:
            logger.warning("%s failed: %s", func.__name__, e, exc_info=True)
            return default


def _format_duration(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m" if hours > 0 else f"{mins}m"


def _format_extensions(counts: dict[str, int]) -> str:
    return ", ".join(f"{ext} ({count})" for ext, count in counts.items())


def format_system_signals_for_synthesis(data: SystemSignals | None) -> str:
    if not data:
        return ""

    sections = []

    if data.dock_pins:
        lines = ["### Dock/Pinned Apps"]
        lines.extend(f"{pin.name} ({pin.path})" for pin in data.dock_pins)
        sections.append("\n".join(lines))

    if data.app_usage:
        lines = ["### App Usage (Screen Time)"]
        lines.extend(f"{u.app}: {_format_duration(u.duration_minutes)}" for u in data.app_usage)
        sections.append("\n".join(lines))

    fs = data.filesystem
    if fs.downloads_extensions or fs.documents_folders or fs.desktop_file_types:
        lines = ["### Filesystem"]
        if fs.downloads_extensions:
            lines.append("**Downloads** (by file type)")
            lines.append(_format_extensions(fs.downloads_extensions))
        if fs.documents_folders:
            lines.append("**Documents Folders**")
            lines.append(", ".join(fs.documents_folders))
        if fs.desktop_file_types:
            lines.append("**Desktop** (by file type)")
            lines.append(_format_extensions(fs.desktop_file_types))
        sections.append("\n".join(lines))

    if not sections:
        return ""
    return "## System Signals\n" + "\n\n".join(sections)
