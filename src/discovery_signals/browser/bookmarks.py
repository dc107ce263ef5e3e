"""Read Chromium-family ``Bookmarks`` JSON files."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from discovery_signals.browser.models import BookmarkEntry, BrowserBookmarks
from discovery_signals.probe import current_platform

logger = logging.getLogger(__name__)

MAX_BOOKMARKS = 200
SKIPPED_URL_PREFIXES = ("chrome://", "edge://", "about:")
BOOKMARK_ROOTS = ("bookmark_bar", "other", "synced")
CHROMIUM_PROFILES = ("Default", "Profile 1", "Profile 2", "Profile 3")


def bookmark_sources(
    platform: str | None = None,
    home: Path | None = None,
    env: dict[str, str] | None = None,
) -> list[tuple[str, Path, tuple[str, ...]]]:
    """``(browser name, base dir, profiles)`` in lookup order."""
    platform = platform or current_platform()
    home = home or Path.home()
    env = dict(os.environ if env is None else env)

    if platform == "darwin":
        app_data = home / "Library" / "Application Support"
    elif platform == "win32":
        app_data = Path(env.get("LOCALAPPDATA") or home / "AppData" / "Local")
    else:
        app_data = home / ".config"
    roaming = Path(env.get("APPDATA") or home / "AppData" / "Roaming")

    darwin = platform == "darwin"
    if darwin:
        opera = app_data / "com.operasoftware.Opera"
    elif platform == "win32":
        opera = roaming / "Opera Software" / "Opera Stable"
    else:
        opera = home / ".config" / "opera"

    return [
        ("Chrome", app_data / "Google" / "Chrome" if darwin
         else app_data / "Google" / "Chrome" / "User Data", CHROMIUM_PROFILES),
        ("Arc", app_data / "Arc" / "User Data", CHROMIUM_PROFILES),
        ("Edge", app_data / "Microsoft Edge" if darwin
         else app_data / "Microsoft" / "Edge" / "User Data", CHROMIUM_PROFILES),
        ("Brave", app_data / "BraveSoftware" / "Brave-Browser" if darwin
         else app_data / "BraveSoftware" / "Brave-Browser" / "User Data", CHROMIUM_PROFILES),
        ("Vivaldi", app_data / "Vivaldi" if darwin
         else app_data / "Vivaldi" / "User Data", CHROMIUM_PROFILES),
        ("Opera", opera, ("", "Default")),
    ]


def walk_bookmark_tree(node: object, parent_folder: str | None = None) -> list[BookmarkEntry]:
    """Flatten a Chromium bookmark node into entries tagged with their folder."""
    if not isinstance(node, dict):
        return []

    entries: list[BookmarkEntry] = []
    if node.get("type") == "url":
        title = (node.get("name") or "").strip()
        url = (node.get("url") or "").strip()
        if title and url and not url.startswith(SKIPPED_URL_PREFIXES):
            entries.append(BookmarkEntry(title=title, url=url, folder=parent_folder))
    elif node.get("type") == "folder":
        folder = (node.get("name") or "").strip() or parent_folder
        for child in node.get("children") or []:
            entries.extend(walk_bookmark_tree(child, folder))
    return entries


def parse_bookmarks_file(path: Path) -> list[BookmarkEntry]:
    """Entries from one ``Bookmarks`` file, capped at ``MAX_BOOKMARKS``."""
    data = json.loads(path.read_text(encoding="utf-8"))
    roots = data.get("roots") if isinstance(data, dict) else None
    if not isinstance(roots, dict):
        return []

    entries: list[BookmarkEntry] = []
    for root in BOOKMARK_ROOTS:
        entries.extend(walk_bookmark_tree(roots.get(root)))
    return entries[:MAX_BOOKMARKS]


def collect_browser_bookmarks(
    platform: str | None = None,
    home: Path | None = None,
    env: dict[str, str] | None = None,
) -> BrowserBookmarks | None:
    """First readable, non-empty bookmarks file across browsers and profiles."""
    for name, base, profiles in bookmark_sources(platform, home, env):
        for profile in profiles:
            path = base / profile / "Bookmarks" if profile else base / "Bookmarks"
            if not path.is_file():
                continue
            try:
                entries = parse_bookmarks_file(path)
            except (OSError, ValueError) as e:
                logger.debug("Skipping unreadable bookmarks file %s: %s", path, e)
                continue
            if not entries:
                continue

            folders = list(dict.fromkeys(e.folder for e in entries if e.folder))
            logger.info("Found %d bookmarks in %s (%s)", len(entries), name, profile or "base")
            return BrowserBookmarks(browser=name, bookmarks=entries, folders=folders)

    logger.info("No bookmarks found in any browser")
    return None


def _host(url: str) -> str:
    return urlparse(url).hostname or url


def format_browser_bookmarks_for_synthesis(data: BrowserBookmarks | None) -> str:
    if not data:
        return ""

    lines = [f"## Browser Bookmarks ({data.browser})"]
    if data.folders:
        lines.append("### Bookmark Folders")
        lines.append(", ".join(data.folders))
        lines.append("")

    by_folder: dict[str, list[BookmarkEntry]] = {}
    uncategorized: list[BookmarkEntry] = []
    for bookmark in data.bookmarks:
        if bookmark.folder:
            by_folder.setdefault(bookmark.folder, []).append(bookmark)
        else:
            uncategorized.append(bookmark)

    if by_folder:
        lines.append("### Bookmarks by Folder")
        for folder, bookmarks in list(by_folder.items())[:15]:
            lines.append(f"**{folder}**")
            lines.extend(f"- {b.title} ({_host(b.url)})" for b in bookmarks[:10])
            lines.append("")

    if uncategorized:
        lines.append("### Uncategorized Bookmarks")
        lines.extend(f"- {b.title} ({_host(b.url)})" for b in uncategorized[:20])

    return "\n".join(lines).rstrip()
