"""Extract domain-level signals from a Chromium-schema History database."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

from discovery_signals.browser.locator import BrowserLocator
from discovery_signals.browser.models import BrowserSignals, BrowserTarget
from discovery_signals.config import DiscoveryConfig
from discovery_signals.exceptions import StoreError
from discovery_signals.probe import ProcessProbe
from discovery_signals.processing.domains import (
    aggregate_domains,
    dedupe_titles,
    exclude_domains,
    top_domains_for_details,
)
from discovery_signals.processing.models import DomainDetail, DomainVisit
from discovery_signals.storage import read_only_copy

logger = logging.getLogger(__name__)

# Milliseconds from 1601-01-01 (Chrome/WebKit epoch) to 1970-01-01.
CHROME_EPOCH_OFFSET_MS = 11_644_473_600_000

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

RECENT_WINDOW = timedelta(days=7)

RECENT_LIMIT = 30
ALL_TIME_QUERY_LIMIT = 50
ALL_TIME_LIMIT = 20
CLUSTER_LIMIT = 40
RECENT_DETAIL_DOMAINS = 15
ALL_TIME_DETAIL_DOMAINS = 10
TITLES_PER_DOMAIN_QUERY = 25
TITLES_PER_DOMAIN = 15

_HOST_EXPR = """
    CASE
        WHEN INSTR(SUBSTR(u.url, INSTR(u.url, '://') + 3), '/') > 0
        THEN SUBSTR(
            SUBSTR(u.url, INSTR(u.url, '://') + 3),
            1,
            INSTR(SUBSTR(u.url, INSTR(u.url, '://') + 3), '/') - 1
        )
        ELSE SUBSTR(u.url, INSTR(u.url, '://') + 3)
    END
"""

_URL_EXCLUSIONS = """
    u.url NOT LIKE '%localhost%'
    AND u.url NOT LIKE '%127.0.0.1%'
    AND u.url NOT LIKE 'file://%'
    AND u.url NOT LIKE 'chrome://%'
    AND u.url NOT LIKE 'edge://%'
    AND u.url NOT LIKE 'brave://%'
"""

CLUSTER_QUERY = f"""
    SELECT label, COUNT(*) AS count
    FROM clusters
    WHERE label IS NOT NULL AND label != ''
      AND label NOT LIKE '%localhost%'
      AND label NOT LIKE '%127.0.0.1%'
    GROUP BY label
    ORDER BY count DESC
    LIMIT {CLUSTER_LIMIT}
"""

RECENT_DOMAINS_QUERY = f"""
    SELECT {_HOST_EXPR} AS domain, COUNT(*) AS visits
    FROM urls u
    JOIN visits v ON u.id = v.url
    WHERE v.visit_time > ?
      AND {_URL_EXCLUSIONS}
    GROUP BY domain
    HAVING domain != ''
    ORDER BY visits DESC
    LIMIT {RECENT_LIMIT}
"""

FALLBACK_DOMAINS_QUERY = f"""
    SELECT {_HOST_EXPR} AS domain, SUM(u.visit_count) AS visits
    FROM urls u
    WHERE u.visit_count > 0
      AND {_URL_EXCLUSIONS}
    GROUP BY domain
    HAVING domain != ''
    ORDER BY visits DESC
    LIMIT {RECENT_LIMIT}
"""

ALL_TIME_DOMAINS_QUERY = f"""
    SELECT {_HOST_EXPR} AS domain, SUM(u.visit_count) AS visits
    FROM urls u
    WHERE {_URL_EXCLUSIONS}
    GROUP BY domain
    HAVING domain != ''
    ORDER BY visits DESC
    LIMIT {ALL_TIME_QUERY_LIMIT}
"""

DOMAIN_TITLES_QUERY = f"""
    SELECT title, url, visit_count
    FROM urls
    WHERE url LIKE ? AND title IS NOT NULL AND title != ''
    ORDER BY visit_count DESC
    LIMIT {TITLES_PER_DOMAIN_QUERY}
"""


def to_chrome_time(dt: datetime) -> int:
    """Convert ``dt`` to microseconds since 1601-01-01 UTC, at millisecond precision."""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    ms = (dt - _UNIX_EPOCH) // timedelta(milliseconds=1)
    return (ms + CHROME_EPOCH_OFFSET_MS) * 1000


def from_chrome_time(chrome_us: int) -> datetime:
    """Inverse of ``to_chrome_time``, in UTC."""
    ms = chrome_us // 1000 - CHROME_EPOCH_OFFSET_MS
    return _UNIX_EPOCH + timedelta(milliseconds=ms)


class HistoryExtractor:
    """Copy-then-read extraction of one browser profile's History database."""

    def __init__(self, cache_dir: Path, now: datetime | None = None):
        self.cache_dir = Path(cache_dir)
        self._now = now

    def extract(self, target: BrowserTarget) -> BrowserSignals:
        """Return aggregated signals; empty (but tagged) on any store failure."""
        try:
            with read_only_copy(target.history_path, self.cache_dir, "browser_history") as conn:
                return self._extract_from(conn, target.kind)
        except (StoreError, sqlite3.Error, OSError) as e:
            logger.warning("Failed to read %s history at %s: %s", target.kind, target.history_path, e)
            return BrowserSignals(browser=target.kind)

    def _extract_from(self, conn: sqlite3.Connection, kind: str) -> BrowserSignals:
        cluster_domains = self._cluster_labels(conn)

        recent = self._recent_domains(conn)
        try:
            all_time_rows = conn.execute(ALL_TIME_DOMAINS_QUERY).fetchall()
        except sqlite3.Error as e:
            logger.warning("All-time domain query failed: %s", e)
            all_time_rows = []
        all_time = exclude_domains(aggregate_domains(all_time_rows), recent)[:ALL_TIME_LIMIT]

        domain_details = self._domain_details(conn, recent, all_time)

        return BrowserSignals(
            browser=kind,
            cluster_domains=cluster_domains,
            recent_domains=recent,
            all_time_domains=all_time,
            domain_details=domain_details,
        )

    @staticmethod
    def _cluster_labels(conn: sqlite3.Connection) -> list[str]:
        try:
            rows = conn.execute(CLUSTER_QUERY).fetchall()
        except sqlite3.OperationalError:
            # Older profiles have no clusters table.
            return []
        return [row["label"] for row in rows]

    def _recent_domains(self, conn: sqlite3.Connection) -> list[DomainVisit]:
        now = self._now or datetime.now(timezone.utc)
        since = to_chrome_time(now - RECENT_WINDOW)
        try:
            rows = conn.execute(RECENT_DOMAINS_QUERY, (since,)).fetchall()
        except sqlite3.Error as e:
            logger.debug("Recent-visits query failed, using all-time fallback: %s", e)
            rows = []

        if not rows:
            try:
                rows = conn.execute(FALLBACK_DOMAINS_QUERY).fetchall()
            except sqlite3.Error as e:
                logger.warning("Fallback domain query failed: %s", e)
                rows = []
        return aggregate_domains(rows)

    @staticmethod
    def _domain_details(
        conn: sqlite3.Connection,
        recent: list[DomainVisit],
        all_time: list[DomainVisit],
    ) -> dict[str, list[DomainDetail]]:
        candidates = dict.fromkeys(
            top_domains_for_details(recent, RECENT_DETAIL_DOMAINS)
            + top_domains_for_details(all_time, ALL_TIME_DETAIL_DOMAINS)
        )

        details: dict[str, list[DomainDetail]] = {}
        for domain in candidates:
            try:
                rows = conn.execute(DOMAIN_TITLES_QUERY, (f"%{domain}%",)).fetchall()
            except sqlite3.Error as e:
                logger.debug("Title query failed for %s: %s", domain, e)
                continue
            titles = dedupe_titles(rows, limit=TITLES_PER_DOMAIN)
            if titles:
                details[domain] = titles
        return details


def collect_browser_data(
    config: DiscoveryConfig | None = None,
    probe: ProcessProbe | None = None,
) -> BrowserSignals:
    """Locate the user's browser and extract its signals."""
    config = config or DiscoveryConfig.from_env()
    start = time.monotonic()
    locator = BrowserLocator(
        probe=probe or ProcessProbe(timeout=config.command_timeout),
        env=config.env,
        detection_order=config.detection_order,
    )
    target = locator.locate()
    if target is None:
        return BrowserSignals()

    signals = HistoryExtractor(config.cache_dir).extract(target)
    logger.info(
        "Browser data collected from %s in %dms: %d recent, %d all-time, %d detail domains",
        target.kind,
        (time.monotonic() - start) * 1000,
        len(signals.recent_domains),
        len(signals.all_time_domains),
        len(signals.domain_details),
    )
    return signals


async def acollect_browser_data(
    config: DiscoveryConfig | None = None,
    probe: ProcessProbe | None = None,
) -> BrowserSignals:
    """Async version of collect_browser_data."""
    return await asyncio.to_thread(collect_browser_data, config, probe)


def detect_preferred_browser_profile(
    config: DiscoveryConfig | None = None,
    probe: ProcessProbe | None = None,
) -> tuple[str, str | None] | None:
    """Return ``(kind, profile)`` of the browser that would be read."""
    config = config or DiscoveryConfig.from_env()
    locator = BrowserLocator(
        probe=probe or ProcessProbe(timeout=config.command_timeout),
        env=config.env,
        detection_order=config.detection_order,
    )
    target = locator.locate()
    if target is None:
        return None
    return target.kind, target.profile_name


def format_browser_data_for_synthesis(signals: BrowserSignals) -> str:
    if not signals.browser:
        return "No browser data available."

    lines = [f"## Browser Data ({signals.browser})"]

    if signals.recent_domains:
        lines.append("\n### Most Active (Last 7 Days)")
        lines.extend(f"{d.domain} ({d.visits})" for d in signals.recent_domains)

    if signals.all_time_domains:
        lines.append("\n### Long-term Interests (All-time, excluding recent)")
        lines.extend(f"{d.domain} ({d.visits})" for d in signals.all_time_domains)

    if signals.domain_details:
        lines.append("\n### Content Details")
        for domain, titles in signals.domain_details.items():
            lines.append(f"\n**{domain}**")
            lines.extend(f"- {t.title} ({t.visit_count})" for t in titles)

    return "\n".join(lines)
