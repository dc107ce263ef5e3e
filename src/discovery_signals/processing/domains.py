"""Domain normalization, aggregation and title noise filtering."""

from __future__ import annotations

import re
from typing import Iterable, Mapping

from discovery_signals.processing.models import DomainDetail, DomainVisit

# Checked in order; only the first matching prefix is stripped.
DOMAIN_PREFIXES = ("www.", "mobile.", "m.")

# Titles that reflect a transient technical state rather than content.
NOISE_TITLE_PATTERNS = [
    re.compile(r"^just a moment\.{0,3}$", re.IGNORECASE),
    re.compile(r"^loading\.{0,3}$", re.IGNORECASE),
    re.compile(r"^please wait\.{0,3}$", re.IGNORECASE),
    re.compile(r"^redirecting\.{0,3}$", re.IGNORECASE),
    re.compile(r"^access denied", re.IGNORECASE),
    re.compile(r"^403 forbidden", re.IGNORECASE),
    re.compile(r"^404 not found", re.IGNORECASE),
    re.compile(r"^500 ", re.IGNORECASE),
    re.compile(r"^error$", re.IGNORECASE),
    re.compile(r"^untitled$", re.IGNORECASE),
    re.compile(r"^new tab$", re.IGNORECASE),
    re.compile(r"^https?://", re.IGNORECASE),
    # "domain.com/path/to/page" used as a title
    re.compile(r"^\w+\.\w+/[\w/-]+$"),
]

# Auth/infrastructure hosts; never queried for page titles.
AUTH_DOMAINS = (
    "accounts.google.com",
    "login.",
    "auth.",
    "oauth.",
    "signin.",
    "sso.",
    "id.",
)


def normalize_domain(domain: str) -> str:
    """Lowercase ``domain`` and strip one ``www.``/``mobile.``/``m.`` prefix.

    A prefix is kept when what follows starts with another prefix, so
    ``www.mobile.de`` stays as is and never aggregates with ``mobile.de``.
    """
    normalized = (domain or "").strip().lower()
    for prefix in DOMAIN_PREFIXES:
        if normalized.startswith(prefix):
            stripped = normalized[len(prefix):]
            # Leave "m.co" and stacked prefixes like "www.m.site.com" alone
            # so a second pass never strips again.
            if "." in stripped and not stripped.startswith(DOMAIN_PREFIXES):
                normalized = stripped
            break
    return normalized


def aggregate_domains(rows: Iterable[Mapping | DomainVisit]) -> list[DomainVisit]:
    """Normalize domains, sum visits of duplicates, sort by visits descending.

    Ties keep the order in which the domain was first seen.
    """
    totals: dict[str, int] = {}
    for row in rows:
        if isinstance(row, DomainVisit):
            domain, visits = row.domain, row.visits
        else:
            domain, visits = row["domain"], row["visits"]
        if not domain:
            continue
        normalized = normalize_domain(domain)
        if not normalized:
            continue
        totals[normalized] = totals.get(normalized, 0) + max(0, int(visits or 0))

    result = [DomainVisit(domain=d, visits=v) for d, v in totals.items()]
    result.sort(key=lambda d: d.visits, reverse=True)
    return result


def exclude_domains(domains: list[DomainVisit], excluded: Iterable[DomainVisit]) -> list[DomainVisit]:
    """Return ``domains`` minus any domain present in ``excluded`` (case-insensitive)."""
    blocked = {d.domain.lower() for d in excluded}
    return [d for d in domains if d.domain.lower() not in blocked]


def is_noise_title(title: str | None) -> bool:
    trimmed = (title or "").strip()
    if not trimmed:
        return True
    return any(pattern.search(trimmed) for pattern in NOISE_TITLE_PATTERNS)


def is_auth_domain(domain: str) -> bool:
    lower = domain.lower()
    return any(auth in lower for auth in AUTH_DOMAINS)


def top_domains_for_details(domains: list[DomainVisit], limit: int = 15) -> list[str]:
    """Pick the top non-auth domains worth querying for page titles."""
    return [d.domain for d in domains if not is_auth_domain(d.domain)][:limit]


def dedupe_titles(rows: Iterable[Mapping], limit: int = 15) -> list[DomainDetail]:
    """Drop noise titles, merge duplicates by normalized title, keep the top ``limit``."""
    by_title: dict[str, DomainDetail] = {}
    for row in rows:
        title = row["title"] or ""
        if is_noise_title(title):
            continue
        key = title.strip().lower()
        count = int(row["visit_count"] or 0)
        existing = by_title.get(key)
        if existing:
            existing.visit_count += count
        else:
            by_title[key] = DomainDetail(title=title, url=row["url"] or "", visit_count=count)

    details = sorted(by_title.values(), key=lambda d: d.visit_count, reverse=True)
    return details[:limit]
