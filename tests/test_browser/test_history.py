"""Tests for Chromium history extraction."""

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from discovery_signals.browser.history import (
    ALL_TIME_DOMAINS_QUERY,
    CHROME_EPOCH_OFFSET_MS,
    HistoryExtractor,
    acollect_browser_data,
    collect_browser_data,
    detect_preferred_browser_profile,
    format_browser_data_for_synthesis,
    from_chrome_time,
    to_chrome_time,
)
from discovery_signals.browser.models import BrowserSignals, BrowserTarget
from discovery_signals.config import DiscoveryConfig
from discovery_signals.processing import DomainDetail, DomainVisit
from discovery_signals.processing.domains import aggregate_domains

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _history_db(path, urls, visits=(), clusters=None):
    """urls: (id, url, title, visit_count); visits: (url_id, datetime)."""
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE urls (id INTEGER PRIMARY KEY, url TEXT, title TEXT, visit_count INTEGER)")
    conn.execute("CREATE TABLE visits (id INTEGER PRIMARY KEY, url INTEGER, visit_time INTEGER)")
    conn.executemany("INSERT INTO urls (id, url, title, visit_count) VALUES (?, ?, ?, ?)", urls)
    conn.executemany(
        "INSERT INTO visits (url, visit_time) VALUES (?, ?)",
        [(url_id, to_chrome_time(when)) for url_id, when in visits],
    )
    if clusters is not None:
        conn.execute("CREATE TABLE clusters (id INTEGER PRIMARY KEY, label TEXT)")
        conn.executemany("INSERT INTO clusters (label) VALUES (?)", [(c,) for c in clusters])
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def target(tmp_path):
    history = _history_db(
        tmp_path / "History",
        urls=[
            (1, "https://github.com/x", "Repo X", 10),
            (2, "https://www.github.com/y", "Repo Y", 5),
            (3, "https://news.ycombinator.com/", "Hacker News", 40),
            (4, "http://localhost:3000/", "Local app", 99),
        ],
        visits=[(3, NOW - timedelta(days=1)), (3, NOW - timedelta(days=2))],
    )
    return BrowserTarget(kind="chrome", history_path=history, profile_name="Default")


def test_chrome_time_round_trip():
    dt = datetime(2024, 3, 5, 17, 45, 12, 345000, tzinfo=timezone.utc)
    chrome = to_chrome_time(dt)
    assert chrome == (int(dt.timestamp()) * 1000 + 345 + CHROME_EPOCH_OFFSET_MS) * 1000
    assert from_chrome_time(chrome) == dt


def test_chrome_time_epoch():
    assert to_chrome_time(datetime(1601, 1, 1, tzinfo=timezone.utc)) == 0


def test_all_time_query_aggregates_www_variant(target):
    conn = sqlite3.connect(str(target.history_path))
    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute(ALL_TIME_DOMAINS_QUERY).fetchall()
    finally:
        conn.close()
    domains = aggregate_domains(rows)
    assert DomainVisit("github.com", 15) in domains
    assert not any(d.domain == "www.github.com" for d in domains)
    assert not any("localhost" in d.domain for d in domains)


def test_extract(target, tmp_path):
    signals = HistoryExtractor(tmp_path / "cache", now=NOW).extract(target)
    assert signals.browser == "chrome"
    assert signals.recent_domains == [DomainVisit("news.ycombinator.com", 2)]
    assert signals.all_time_domains == [DomainVisit("github.com", 15)]
    assert signals.cluster_domains == []
    assert signals.domain_details["github.com"] == [
        DomainDetail("Repo X", "https://github.com/x", 10),
        DomainDetail("Repo Y", "https://www.github.com/y", 5),
    ]


def test_all_time_never_overlaps_recent(target, tmp_path):
    signals = HistoryExtractor(tmp_path / "cache", now=NOW).extract(target)
    recent = {d.domain.lower() for d in signals.recent_domains}
    assert not recent & {d.domain.lower() for d in signals.all_time_domains}


def test_recent_falls_back_when_window_empty(tmp_path):
    history = _history_db(
        tmp_path / "History",
        urls=[(1, "https://github.com/x", "Repo X", 10), (2, "https://docs.rs/", "Docs", 3)],
        visits=[(1, NOW - timedelta(days=30))],
    )
    target = BrowserTarget(kind="brave", history_path=history)
    signals = HistoryExtractor(tmp_path / "cache", now=NOW).extract(target)
    assert signals.recent_domains == [DomainVisit("github.com", 10), DomainVisit("docs.rs", 3)]
    assert signals.all_time_domains == []


def test_cluster_labels(tmp_path):
    history = _history_db(
        tmp_path / "History",
        urls=[(1, "https://github.com/x", "Repo X", 10)],
        clusters=["rust async", "rust async", "travel", "", "localhost dev"],
    )
    signals = HistoryExtractor(tmp_path / "cache", now=NOW).extract(
        BrowserTarget(kind="chrome", history_path=history)
    )
    assert signals.cluster_domains == ["rust async", "travel"]


def test_extract_without_wal_and_cleans_cache(target, tmp_path):
    cache = tmp_path / "cache"
    assert not (tmp_path / "History-wal").exists()
    signals = HistoryExtractor(cache, now=NOW).extract(target)
    assert signals.recent_domains
    assert list(cache.iterdir()) == []


def test_extract_cleans_up_when_query_raises(target, tmp_path):
    cache = tmp_path / "cache"
    with patch.object(HistoryExtractor, "_extract_from", side_effect=sqlite3.DatabaseError("corrupt")):
        signals = HistoryExtractor(cache, now=NOW).extract(target)
    assert signals == BrowserSignals(browser="chrome")
    assert list(cache.iterdir()) == []


def test_extract_missing_store(tmp_path):
    target = BrowserTarget(kind="edge", history_path=tmp_path / "missing" / "History")
    assert HistoryExtractor(tmp_path / "cache").extract(target) == BrowserSignals(browser="edge")


def test_collect_browser_data(target, tmp_path):
    config = DiscoveryConfig(home=tmp_path / "app", env={})
    with patch("discovery_signals.browser.history.BrowserLocator.locate", return_value=target):
        signals = collect_browser_data(config)
    assert signals.browser == "chrome"
    assert DomainVisit("github.com", 15) in signals.recent_domains + signals.all_time_domains


def test_collect_browser_data_no_browser(tmp_path):
    config = DiscoveryConfig(home=tmp_path, env={})
    with patch("discovery_signals.browser.history.BrowserLocator.locate", return_value=None):
        assert collect_browser_data(config) == BrowserSignals()
        assert asyncio.run(acollect_browser_data(config)) == BrowserSignals()


def test_detect_preferred_browser_profile(target, tmp_path):
    config = DiscoveryConfig(home=tmp_path, env={})
    with patch("discovery_signals.browser.history.BrowserLocator.locate", return_value=target):
        assert detect_preferred_browser_profile(config) == ("chrome", "Default")
    with patch("discovery_signals.browser.history.BrowserLocator.locate", return_value=None):
        assert detect_preferred_browser_profile(config) is None


def test_format_no_browser():
    assert format_browser_data_for_synthesis(BrowserSignals()) == "No browser data available."


def test_format_sections():
    signals = BrowserSignals(
        browser="arc",
        recent_domains=[DomainVisit("github.com", 12)],
        all_time_domains=[DomainVisit("wikipedia.org", 80)],
        domain_details={"github.com": [DomainDetail("Pull requests", "https://github.com/pulls", 7)]},
    )
    text = format_browser_data_for_synthesis(signals)
    assert text == "\n".join([
        "## Browser Data (arc)",
        "",
        "### Most Active (Last 7 Days)",
        "github.com (12)",
        "",
        "### Long-term Interests (All-time, excluding recent)",
        "wikipedia.org (80)",
        "",
        "### Content Details",
        "",
        "**github.com**",
        "- Pull requests (7)",
    ])
