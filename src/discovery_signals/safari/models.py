"""Data models for the Safari collector."""

from __future__ import annotations

from dataclasses import dataclass, field

from discovery_signals.browser.models import BookmarkEntry
from discovery_signals.processing.models import DomainVisit


@dataclass
class SafariData:
    history: list[DomainVisit] = field(default_factory=list)
    bookmarks: list[BookmarkEntry] = field(default_factory=list)
