"""Run the selected collectors concurrently and build the synthesis digest.

Each category fans out to one or more collectors. A collector that raises or
times out is logged and replaced with its empty default, so one failing
source never costs the others their sections.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from discovery_signals.browser import (
    BrowserBookmarks,
    BrowserSignals,
    acollect_browser_data,
    collect_browser_bookmarks,
    format_browser_bookmarks_for_synthesis,
    format_browser_data_for_synthesis,
)
from discovery_signals.config import DiscoveryConfig
from discovery_signals.devenv import (
    DevEnvironmentCollector,
    DevEnvironmentSignals,
    DevProject,
    ShellAnalysis,
    analyze_shell_history,
    collect_dev_projects,
    format_dev_environment_for_synthesis,
    format_dev_projects_for_synthesis,
    format_shell_analysis_for_synthesis,
)
from discovery_signals.exceptions import ConfigError, DiscoveryError
from discovery_signals.identity import ContactRecord, IdentityMap, IdentityStore, pseudonymize
from discovery_signals.messages import (
    MessagesNotesCollector,
    MessagesNotesSignals,
    format_messages_notes_for_synthesis,
)
from discovery_signals.probe import ProcessProbe
from discovery_signals.processing import (
    apply_output_budget,
    filter_low_signal_domains,
    tier_formatted_signals,
)
from discovery_signals.safari import SafariCollector, SafariData, format_safari_data_for_synthesis
from discovery_signals.system import (
    SystemSignalCollector,
    SystemSignals,
    format_system_signals_for_synthesis,
)

logger = logging.getLogger(__name__)


class DiscoveryCategory:
    BROWSING_BOOKMARKS = "browsing_bookmarks"
    DEV_ENVIRONMENT = "dev_environment"
    APPS_SYSTEM = "apps_system"
    MESSAGES_NOTES = "messages_notes"


@dataclass(frozen=True)
class CategoryInfo:
    id: str
    label: str
    description: str
    default_enabled: bool
    requires_full_disk_access: bool


DISCOVERY_CATEGORIES = (
    CategoryInfo(
        id=DiscoveryCategory.BROWSING_BOOKMARKS,
        label="Browsing & Bookmarks",
        description="Browser history, bookmarks, and saved pages",
        default_enabled=True,
        requires_full_disk_access=False,
    ),
    CategoryInfo(
        id=DiscoveryCategory.DEV_ENVIRONMENT,
        label="Development Environment",
        description="IDE extensions, git config, dotfiles, runtimes, and package managers",
        default_enabled=True,
        requires_full_disk_access=False,
    ),
    CategoryInfo(
        id=DiscoveryCategory.APPS_SYSTEM,
        label="Apps & System",
        description="App usage patterns, dock pins, and filesystem signals",
        default_enabled=True,
        requires_full_disk_access=True,
    ),
    CategoryInfo(
        id=DiscoveryCategory.MESSAGES_NOTES,
        label="Messages & Notes",
        description="Communication patterns, note titles, calendar density (metadata only)",
        default_enabled=False,
        requires_full_disk_access=True,
    ),
)

ALL_CATEGORIES = tuple(c.id for c in DISCOVERY_CATEGORIES)
DEFAULT_CATEGORIES = tuple(c.id for c in DISCOVERY_CATEGORIES if c.default_enabled)

NO_DATA_DIGEST = "## No data available"

# Collector keys owned by each category, in digest order.
CATEGORY_KEYS = {
    DiscoveryCategory.BROWSING_BOOKMARKS: ("browser", "bookmarks", "safari"),
    DiscoveryCategory.DEV_ENVIRONMENT: ("dev_projects", "shell", "dev_environment"),
    DiscoveryCategory.APPS_SYSTEM: ("system_signals",),
    DiscoveryCategory.MESSAGES_NOTES: ("messages_notes",),
}

_CALENDAR_ATTENDEE = re.compile(r"\bwith\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)")


@dataclass
class CollectedSignals:
    """Raw collector output; ``None`` where the category was not selected."""

    browser: BrowserSignals | None = None
    bookmarks: BrowserBookmarks | None = None
    safari: SafariData | None = None
    dev_projects: list[DevProject] | None = None
    shell: ShellAnalysis | None = None
    dev_environment: DevEnvironmentSignals | None = None
    system_signals: SystemSignals | None = None
    messages_notes: MessagesNotesSignals | None = None


@dataclass
class CollectedSignalsBundle:
    data: CollectedSignals | None = None
    formatted: str = ""
    formatted_sections: dict[str, str] = field(default_factory=dict)
    error: str | None = None


def validate_categories(categories: Iterable[str]) -> tuple[str, ...]:
    """Deduplicate ``categories``, rejecting unknown ids."""
    selected = tuple(dict.fromkeys(categories))
    unknown = [c for c in selected if c not in ALL_CATEGORIES]
    if unknown:
        raise ConfigError(
            f"Unknown discovery categories: {', '.join(unknown)}. "
            f"Expected any of: {', '.join(ALL_CATEGORIES)}"
        )
    return selected


# ----------------------------------------------------------------------
# Collection
# ----------------------------------------------------------------------


async def _guarded(key: str, awaitable, default, timeout: float):
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        logger.warning("Collector %s timed out after %ss", key, timeout)
    except Exception as e:
        logger.warning("Collector %s failed: %s", key, e, exc_info=True)
    return default


def _collector_tasks(config: DiscoveryConfig, probe: ProcessProbe, categories: tuple[str, ...]) -> dict:
    """``{key: (awaitable, default)}`` for every selected category."""
    tasks = {}
    if DiscoveryCategory.BROWSING_BOOKMARKS in categories:
        tasks["browser"] = (acollect_browser_data(config, probe), BrowserSignals())
        tasks["bookmarks"] = (asyncio.to_thread(collect_browser_bookmarks, None, None, config.env), None)
        tasks["safari"] = (SafariCollector(config, probe).acollect(), None)
    if DiscoveryCategory.DEV_ENVIRONMENT in categories:
        tasks["dev_projects"] = (asyncio.to_thread(collect_dev_projects), [])
        tasks["shell"] = (asyncio.to_thread(analyze_shell_history, None, None, config.env), ShellAnalysis())
        tasks["dev_environment"] = (DevEnvironmentCollector(config, probe).acollect(), DevEnvironmentSignals())
    if DiscoveryCategory.APPS_SYSTEM in categories:
        tasks["system_signals"] = (SystemSignalCollector(config, probe).acollect(), SystemSignals())
    if DiscoveryCategory.MESSAGES_NOTES in categories:
        tasks["messages_notes"] = (MessagesNotesCollector(config).acollect(), MessagesNotesSignals())
    return tasks


async def collect_all_user_signals(
    config: DiscoveryConfig | None = None,
    categories: Iterable[str] = DEFAULT_CATEGORIES,
    probe: ProcessProbe | None = None,
) -> CollectedSignals:
    """Run every collector of the selected categories concurrently."""
    config = config or DiscoveryConfig.from_env()
    categories = validate_categories(categories)
    probe = probe or ProcessProbe(timeout=config.command_timeout)

    start = time.monotonic()
    tasks = _collector_tasks(config, probe, categories)
    keys = list(tasks)
    results = await asyncio.gather(*(
        _guarded(key, awaitable, default, config.collector_timeout)
        for key, (awaitable, default) in tasks.items()
    ))

    data = CollectedSignals(**dict(zip(keys, results)))
    logger.info(
        "Collected %d signal sources for %s in %dms",
        len(keys), ", ".join(categories), (time.monotonic() - start) * 1000,
    )
    return data


# ----------------------------------------------------------------------
# Formatting
# ----------------------------------------------------------------------


def extract_contacts(data: CollectedSignals) -> list[ContactRecord]:
    """Real people named in the collected messages, calendars and git identity."""
    contacts: list[ContactRecord] = []

    messages = data.messages_notes
    if messages:
        for contact in messages.contacts:
            if contact.display_name and contact.identifier:
                contacts.append(ContactRecord(contact.display_name, contact.identifier, "imessage"))
        for calendar in messages.calendars:
            for title in calendar.recurring_titles:
                m = _CALENDAR_ATTENDEE.search(title)
                if m:
                    name = m.group(1)
                    contacts.append(ContactRecord(name, name, "calendar"))

    git = data.dev_environment.git_config if data.dev_environment else None
    if git and git.name and git.email:
        contacts.append(ContactRecord(git.name, git.email, "git_config"))

    return contacts


def _load_identity_map(config: DiscoveryConfig, contacts: list[ContactRecord]) -> IdentityMap:
    store = IdentityStore(config.state_dir)
    if contacts:
        return store.add_contacts(contacts)
    return store.load()


def _format_collector_sections(data: CollectedSignals) -> dict[str, str]:
    sections: dict[str, str] = {}
    if data.browser is not None:
        browser = format_browser_data_for_synthesis(data.browser)
        if browser != "No browser data available.":
            sections["browser"] = browser
    sections["bookmarks"] = format_browser_bookmarks_for_synthesis(data.bookmarks)
    sections["safari"] = format_safari_data_for_synthesis(data.safari)
    sections["dev_projects"] = format_dev_projects_for_synthesis(data.dev_projects)
    sections["shell"] = format_shell_analysis_for_synthesis(data.shell)
    sections["dev_environment"] = format_dev_environment_for_synthesis(data.dev_environment)
    sections["system_signals"] = format_system_signals_for_synthesis(data.system_signals)
    sections["messages_notes"] = format_messages_notes_for_synthesis(data.messages_notes)
    return {key: text for key, text in sections.items() if text}


def _format_category_sections(data: CollectedSignals, categories: tuple[str, ...]) -> dict[str, str]:
    """Join collector sections per selected category, in ``ALL_CATEGORIES`` order."""
    collector_sections = _format_collector_sections(data)
    sections: dict[str, str] = {}
    for category in ALL_CATEGORIES:
        if category not in categories:
            continue
        parts = [collector_sections[key] for key in CATEGORY_KEYS[category] if key in collector_sections]
        if parts:
            sections[category] = "\n\n".join(parts)
    return sections


def format_signals_for_synthesis(
    data: CollectedSignals,
    config: DiscoveryConfig | None = None,
    categories: Iterable[str] = DEFAULT_CATEGORIES,
) -> tuple[str, dict[str, str]]:
    """Build the digest and the per-category formatted sections.

    Categories always appear in ``ALL_CATEGORIES`` order, whatever order the
    caller passes. When messages and notes were collected, contacts are
    registered in the identity map and the messages and dev-environment
    sections are pseudonymized before anything else sees them. If the
    identity map cannot be used, the messages section is dropped.
    """
    config = config or DiscoveryConfig.from_env()
    categories = validate_categories(categories)
    sections = _format_category_sections(data, categories)

    if DiscoveryCategory.MESSAGES_NOTES in categories:
        try:
            identity_map = _load_identity_map(config, extract_contacts(data))
        except DiscoveryError as e:
            logger.warning("Identity map unavailable, dropping messages section: %s", e)
            sections.pop(DiscoveryCategory.MESSAGES_NOTES, None)
        else:
            if identity_map.mappings:
                for key in (DiscoveryCategory.MESSAGES_NOTES, DiscoveryCategory.DEV_ENVIRONMENT):
                    if key in sections:
                        sections[key] = pseudonymize(sections[key], identity_map)

    if not sections:
        return NO_DATA_DIGEST, sections

    formatted = tier_formatted_signals(filter_low_signal_domains("\n\n".join(sections.values())))
    return apply_output_budget(formatted, config.max_output_chars), sections


# ----------------------------------------------------------------------
# Persistence
# ----------------------------------------------------------------------


def persist_selected_categories(config: DiscoveryConfig, categories: Iterable[str]) -> Path:
    path = config.categories_path
    payload = {"categories": list(categories), "updatedAt": int(time.time() * 1000)}
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def load_selected_categories(config: DiscoveryConfig | None = None) -> tuple[str, ...] | None:
    """Categories from the last run, or ``None`` if never persisted or unreadable."""
    config = config or DiscoveryConfig.from_env()
    path = config.categories_path
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read %s: %s", path, e)
        return None

    categories = data.get("categories") if isinstance(data, dict) else None
    if not isinstance(categories, list):
        return None
    try:
        return validate_categories(categories)
    except ConfigError as e:
        logger.warning("Ignoring persisted categories: %s", e)
        return None


def write_core_memory(config: DiscoveryConfig, text: str) -> Path:
    path = config.core_memory_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info("Wrote %d chars to %s", len(text), path)
    return path


def core_memory_exists(config: DiscoveryConfig | None = None) -> bool:
    config = config or DiscoveryConfig.from_env()
    return config.core_memory_path.is_file()


# ----------------------------------------------------------------------
# Entry points
# ----------------------------------------------------------------------


async def collect_all_signals(
    config: DiscoveryConfig | None = None,
    categories: Iterable[str] | None = None,
    probe: ProcessProbe | None = None,
) -> CollectedSignalsBundle:
    """Persist the selection, collect and format. Errors land in ``error``."""
    config = config or DiscoveryConfig.from_env()
    try:
        if categories is None:
            categories = load_selected_categories(config)
            if categories is None:
                categories = DEFAULT_CATEGORIES
        categories = validate_categories(categories)
        persist_selected_categories(config, categories)

        data = await collect_all_user_signals(config, categories, probe)
        formatted, sections = format_signals_for_synthesis(data, config, categories)
        return CollectedSignalsBundle(data=data, formatted=formatted, formatted_sections=sections)
    except Exception as e:
        logger.error("Signal discovery failed: %s", e, exc_info=True)
        return CollectedSignalsBundle(error=str(e))


def run_discovery(
    categories: Iterable[str] | None = None,
    config: DiscoveryConfig | None = None,
    write_memory: bool = True,
) -> CollectedSignalsBundle:
    """Blocking entry point; writes the digest to ``CORE_MEMORY.MD`` on success.

    Blocking store reads run on a private thread pool. When the run ends the
    pool is shut down without joining, so a read stuck past its timeout is
    abandoned instead of holding up the return.
    """
    config = config or DiscoveryConfig.from_env()
    executor = ThreadPoolExecutor(thread_name_prefix="discovery")
    loop = asyncio.new_event_loop()
    loop.set_default_executor(executor)
    try:
        bundle = loop.run_until_complete(collect_all_signals(config, categories))
        loop.run_until_complete(loop.shutdown_asyncgens())
    finally:
        loop.close()
        executor.shutdown(wait=False, cancel_futures=True)

    if write_memory and bundle.error is None:
        write_core_memory(config, bundle.formatted)
    return bundle
