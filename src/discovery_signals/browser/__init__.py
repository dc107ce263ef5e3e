"""Chromium-family browser discovery, history extraction and bookmarks."""

from discovery_signals.browser.models import (
    BrowserTarget,
    BrowserSignals,
    BookmarkEntry,
    BrowserBookmarks,
)
from discovery_signals.browser.locator import BrowserLocator, parse_profile_from_history_path
from discovery_signals.browser.history import (
    HistoryExtractor,
    to_chrome_time,
    from_chrome_time,
    collect_browser_data,
    acollect_browser_data,
    detect_preferred_browser_profile,
    format_browser_data_for_synthesis,
)
from discovery_signals.browser.bookmarks import (
    collect_browser_bookmarks,
    format_browser_bookmarks_for_synthesis,
)

__all__ = [
    "BrowserTarget",
    "BrowserSignals",
    "BookmarkEntry",
    "BrowserBookmarks",
    "BrowserLocator",
    "parse_profile_from_history_path",
    "HistoryExtractor",
    "to_chrome_time",
    "from_chrome_time",
    "collect_browser_data",
    "acollect_browser_data",
    "detect_preferred_browser_profile",
    "format_browser_data_for_synthesis",
    "collect_browser_bookmarks",
    "format_browser_bookmarks_for_synthesis",
]
