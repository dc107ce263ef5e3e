"""Data models for the browser module."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from discovery_signals.processing.models import DomainDetail, DomainVisit


@dataclass(frozen=True)
class BrowserTarget:
    """A concrete Chromium-schema history store on disk."""

    kind: str  # "chrome" | "arc" | "edge" | "brave" | "opera" | "vivaldi"
    history_path: Path
    profile_name: str | None = None


@dataclass
class BrowserSignals:
    """Aggregated browsing signals from one history store."""

    browser: str | None = None
    cluster_domains: list[str] = field(default_factory=list)
    recent_domains: list[DomainVisit] = field(default_factory=list)
    all_time_domains: list[DomainVisit] = field(default_factory=list)
    domain_details: dict[str, list[DomainDetail]] = field(default_factory=dict)


@dataclass
class BookmarkEntry:
    title: str
    url: str
    folder: str | None = None


@dataclass
class BrowserBookmarks:
    browser: str
    bookmarks: list[BookmarkEntry] = field(default_factory=list)
    folders: list[str] = field(default_factory=list)
