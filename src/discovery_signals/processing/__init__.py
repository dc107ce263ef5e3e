"""Pure aggregation, filtering and tiering passes over collected signals."""

from discovery_signals.processing.models import DomainVisit, DomainDetail
from discovery_signals.processing.domains import (
    normalize_domain,
    aggregate_domains,
    exclude_domains,
    is_noise_title,
    is_auth_domain,
    dedupe_titles,
)
from discovery_signals.processing.tiering import (
    filter_low_signal_domains,
    tier_formatted_signals,
    apply_output_budget,
)

__all__ = [
    "DomainVisit",
    "DomainDetail",
    "normalize_domain",
    "aggregate_domains",
    "exclude_domains",
    "is_noise_title",
    "is_auth_domain",
    "dedupe_titles",
    "filter_low_signal_domains",
    "tier_formatted_signals",
    "apply_output_budget",
]
