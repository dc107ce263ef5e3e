"""Safari history and bookmarks (macOS only).

Both ``~/Library/Safari/History.db`` and ``Bookmarks.plist`` sit behind
Full Disk Access; a refusal is logged and treated as "no data".
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from urllib.parse import urlparse

from discovery_signals.browser.models import BookmarkEntry
from discovery_signals.config import DiscoveryConfig
from discovery_signals.exceptions import DiscoveryError, PermissionDeniedError
from discovery_signals.probe import ProcessProbe, current_platform
from discovery_signals.processing.domains import aggregate_domains
from discovery_signals.processing.models import DomainVisit
from discovery_signals.safari.models import SafariData
from discovery_signals.storage import read_only_copy

logger = logging.getLogger(__name__)

MAX_BOOKMARKS = 200
HISTORY_LIMIT = 30

# history_visits.visit_time is CFAbsoluteTime (seconds since 2001-01-01).
HISTORY_QUERY = f"""
    SELECT hi.domain AS domain, COUNT(*) AS visits
    FROM history_visits hv
    JOIN history_items hi ON hv.history_item = hi.id
    WHERE hi.domain IS NOT NULL
      AND hi.domain != ''
      AND hv.visit_time > ((strftime('%s', 'now') - 978307200) - 604800)
    GROUP BY hi.domain
    ORDER BY visits DESC
    LIMIT {HISTORY_LIMIT}
"""

HISTORY_FALLBACK_QUERY = f"""
    SELECT domain, visit_count AS visits
    FROM history_items
    WHERE domain IS NOT NULL AND domain != ''
    ORDER BY visit_count DESC
    LIMIT {HISTORY_LIMIT}
"""

PROXY_BOOKMARK_TYPE = "WebBookmarkTypeProxy"

FULL_DISK_ACCESS_HINT = "grant Full Disk Access to read Safari data"


def walk_safari_bookmarks(node: dict, folder: str | None, result: list[BookmarkEntry]) -> None:
    """Collect leaf bookmarks under ``node`` into ``result``."""
    if node.get("WebBookmarkType") == PROXY_BOOKMARK_TYPE:
        return

    url = node.get("URLString")
    if url:
        uri_dict = node.get("URIDictionary") or {}
        title = uri_dict.get("title") or node.get("Title") or "Untitled"
        result.append(BookmarkEntry(title=title, url=url, folder=folder or None))
        return

    children = node.get("Children")
    if children:
        folder_name = node.get("Title") or folder
        for child in children:
            if isinstance(child, dict):
                walk_safari_bookmarks(child, folder_name, result)


class SafariCollector:
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

    @property
    def history_path(self) -> Path:
        return self.home / "Library" / "Safari" / "History.db"

    @property
    def bookmarks_path(self) -> Path:
        return self.home / "Library" / "Safari" / "Bookmarks.plist"

    def collect_history(self) -> list[DomainVisit]:
        """Top Safari domains over the last 7 days."""
        if self.platform != "darwin":
            return []
        if not self.history_path.exists():
            logger.info("Safari History.db not found")
            return []

        try:
            with read_only_copy(self.history_path, self.config.cache_dir, "safari_history") as conn:
                try:
                    rows = conn.execute(HISTORY_QUERY).fetchall()
                except sqlite3.Error as e:
                    logger.info("Using Safari history fallback query: %s", e)
                    rows = conn.execute(HISTORY_FALLBACK_QUERY).fetchall()
        except PermissionDeniedError:
            logger.warning("Safari History access denied - %s", FULL_DISK_ACCESS_HINT)
            return []
        except (DiscoveryError, sqlite3.Error) as e:
            logger.warning("Error reading Safari history: %s", e)
            return []

        return aggregate_domains(rows)

    def collect_bookmarks(self) -> list[BookmarkEntry]:
        """Safari bookmarks, proxies skipped, capped at ``MAX_BOOKMARKS``."""
        if self.platform != "darwin":
            return []

        try:
            plist = self.probe.read_plist_json(self.bookmarks_path)
        except DiscoveryError as e:
            if "not permitted" in str(e).lower() or "permission" in str(e).lower():
                logger.warning("Safari Bookmarks access denied - %s", FULL_DISK_ACCESS_HINT)
            else:
                logger.warning("Error reading Safari bookmarks: %s", e)
            return []

        result: list[BookmarkEntry] = []
        if isinstance(plist, dict):
            for child in plist.get("Children") or []:
                if isinstance(child, dict):
                    walk_safari_bookmarks(child, None, result)
        return result[:MAX_BOOKMARKS]

    async def acollect(self) -> SafariData | None:
        """Collect history and bookmarks concurrently; ``None`` when both are empty."""
        if self.platform != "darwin":
            return None

        history, bookmarks = await asyncio.gather(
            asyncio.to_thread(self.collect_history),
            asyncio.to_thread(self.collect_bookmarks),
        )
        if not history and not bookmarks:
            logger.info("No Safari data found")
            return None

        logger.info("Safari data collected: %d domains, %d bookmarks", len(history), len(bookmarks))
        return SafariData(history=history, bookmarks=bookmarks)

    def collect(self) -> SafariData | None:
        return asyncio.run(self.acollect())


def _host(url: str) -> str:
    return urlparse(url).hostname or url


def format_safari_data_for_synthesis(data: SafariData | None) -> str:
    if not data:
        return ""

    lines = ["## Safari Data"]

    if data.history:
        lines.append("\n### Top Domains")
        lines.extend(f"{d.domain} ({d.visits})" for d in data.history[:20])

    if data.bookmarks:
        by_folder: dict[str, list[BookmarkEntry]] = {}
        for bookmark in data.bookmarks:
            by_folder.setdefault(bookmark.folder or "Bookmarks", []).append(bookmark)

        lines.append("\n### Bookmarks")
        for folder, bookmarks in list(by_folder.items())[:15]:
            lines.append(f"\n**{folder}**")
            lines.extend(f"- {b.title} ({_host(b.url)})" for b in bookmarks[:8])

    return "\n".join(lines)
