"""Safari history and bookmarks (macOS)."""

from discovery_signals.safari.models import SafariData
from discovery_signals.safari.reader import (
    SafariCollector,
    walk_safari_bookmarks,
    format_safari_data_for_synthesis,
)

__all__ = [
    "SafariData",
    "SafariCollector",
    "walk_safari_bookmarks",
    "format_safari_data_for_synthesis",
]
