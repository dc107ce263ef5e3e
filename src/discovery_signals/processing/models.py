"""Domain-level records shared by the browser, Safari and formatting code."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class DomainVisit:
    """A normalized domain and its visit count."""

    domain: str
    visits: int = 0


@dataclass
class DomainDetail:
    """A page title seen under a domain, with its summed visit count."""

    title: str
    url: str
    visit_count: int = 0
