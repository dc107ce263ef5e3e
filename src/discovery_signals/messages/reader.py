"""Messaging, notes, reminders and calendar metadata.

Only handles, counts, folder names and recurring event titles are read;
message bodies and note contents are never queried.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from discovery_signals.config import DiscoveryConfig
from discovery_signals.exceptions import DiscoveryError, PermissionDeniedError
from discovery_signals.messages.contacts import load_contact_lookup, normalize_handle
from discovery_signals.messages.models import (
    CalendarSummary,
    ContactFrequency,
    GroupChat,
    MessagesNotesSignals,
    NoteFolder,
)
from discovery_signals.probe import current_platform
from discovery_signals.storage import read_only_copy

logger = logging.getLogger(__name__)

# Apple's Core Data epoch offset (2001-01-01 vs 1970-01-01)
APPLE_EPOCH_OFFSET = 978307200

IMESSAGE_TIMEOUT = 10.0
STORE_TIMEOUT = 5.0
CONTACT_WINDOW = timedelta(days=30)
CONTACT_LIMIT = 30
RECURRING_LIMIT = 20

# Group chats have style 43; one-to-one chats are 45.
GROUP_CHAT_STYLE = 43

CONTACTS_QUERY = f"""
    SELECT h.id AS identifier,
           COALESCE(h.uncanonicalized_id, h.id) AS display_name,
           COUNT(*) AS msg_count
    FROM message m
    JOIN handle h ON m.handle_id = h.ROWID
    WHERE m.handle_id IS NOT NULL AND m.date > ?
    GROUP BY h.id, h.uncanonicalized_id
    ORDER BY msg_count DESC
    LIMIT {CONTACT_LIMIT}
"""

GROUP_CHATS_QUERY = f"""
    SELECT c.display_name AS name,
           (SELECT COUNT(DISTINCT chj.handle_id)
            FROM chat_handle_join chj WHERE chj.chat_id = c.ROWID) AS participant_count
    FROM chat c
    WHERE c.display_name IS NOT NULL AND c.display_name != ''
      AND c.style = {GROUP_CHAT_STYLE}
"""

# Schema varies across macOS releases; tried in order.
NOTES_QUERIES = (
    """
    SELECT COALESCE(folder.ZTITLE2, 'Uncategorized') AS folder_name, COUNT(*) AS note_count
    FROM ZICCLOUDSYNCINGOBJECT note
    LEFT JOIN ZICCLOUDSYNCINGOBJECT folder
        ON note.ZFOLDER = folder.Z_PK AND folder.ZTITLE2 IS NOT NULL
    WHERE note.ZTITLE1 IS NOT NULL AND note.ZMARKEDFORDELETION != 1
    GROUP BY folder_name
    ORDER BY note_count DESC
    """,
    """
    SELECT COALESCE(folder.ZTITLE, 'Uncategorized') AS folder_name, COUNT(*) AS note_count
    FROM ZICCLOUDSYNCINGOBJECT note
    LEFT JOIN ZICCLOUDSYNCINGOBJECT folder
        ON note.ZFOLDER = folder.Z_PK AND folder.ZTITLE IS NOT NULL
    WHERE note.ZTITLE IS NOT NULL AND note.ZMARKEDFORDELETION != 1
    GROUP BY folder_name
    ORDER BY note_count DESC
    """,
    """
    SELECT 'Notes' AS folder_name, COUNT(*) AS note_count
    FROM ZICCLOUDSYNCINGOBJECT
    WHERE ZTYPEUTI = 'com.apple.notes.note'
    """,
)

REMINDERS_QUERY = """
    SELECT ZTITLE AS name,
           (SELECT COUNT(*) FROM ZREMCDREMINDER r WHERE r.ZLIST = l.Z_PK) AS note_count
    FROM ZREMCDLIST l
    WHERE ZTITLE IS NOT NULL
    ORDER BY note_count DESC
"""

CALENDARS_QUERY = """
    SELECT c.ZTITLE AS calendar_name, COUNT(e.Z_PK) AS event_count
    FROM ZCALENDAR c
    LEFT JOIN ZCALENDARITEM e ON e.ZCALENDAR = c.Z_PK
    WHERE c.ZTITLE IS NOT NULL
    GROUP BY c.Z_PK
    ORDER BY event_count DESC
"""

RECURRING_QUERY = f"""
    SELECT DISTINCT ci.ZTITLE AS title, c.ZTITLE AS calendar_name
    FROM ZCALENDARITEM ci
    JOIN ZCALENDAR c ON ci.ZCALENDAR = c.Z_PK
    WHERE ci.ZRECURRENCERULE IS NOT NULL
      AND ci.ZTITLE IS NOT NULL AND ci.ZTITLE != ''
    LIMIT {RECURRING_LIMIT}
"""

STICKY_NOTES_QUERIES = (
    "SELECT 'Sticky Notes' AS name, COUNT(*) AS note_count FROM Note WHERE IsDeleted = 0",
    "SELECT 'Sticky Notes' AS name, COUNT(*) AS note_count FROM Note",
)


def _first_working_query(conn: sqlite3.Connection, queries) -> list[sqlite3.Row]:
    """Run each query until one succeeds; re-raise the last failure."""
    last_error: sqlite3.Error | None = None
    for i, query in enumerate(queries):
        try:
            return conn.execute(query).fetchall()
        except sqlite3.Error as e:
            logger.debug("Query variant %d failed: %s", i + 1, e)
            last_error = e
    raise last_error or sqlite3.OperationalError("no query variants")


def apple_timestamp(dt: datetime, nanoseconds: bool) -> int:
    """Convert ``dt`` to a Messages ``date`` value."""
    apple_ts = dt.timestamp() - APPLE_EPOCH_OFFSET
    return int(apple_ts * 1e9) if nanoseconds else int(apple_ts)


class MessagesNotesCollector:
    def __init__(
        self,
        config: DiscoveryConfig | None = None,
        home: Path | None = None,
        platform: str | None = None,
        contact_lookup: Callable[[], dict[str, str]] = load_contact_lookup,
    ):
        self.config = config or DiscoveryConfig.from_env()
        self.home = home or Path.home()
        self.platform = platform or current_platform()
        self.contact_lookup = contact_lookup

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _query_store(self, source: Path, prefix: str, label: str, read, default=None):
        """Run ``read`` on a scratch copy of ``source``; ``default`` (or []) on failure."""
        fallback = [] if default is None else default
        if not source.exists():
            logger.info("%s database not found", label)
            return fallback
        try:
            with read_only_copy(source, self.config.cache_dir, prefix) as conn:
                return read(conn)
        except PermissionDeniedError:
            logger.warning("%s access denied - grant Full Disk Access", label)
        except (DiscoveryError, sqlite3.Error) as e:
            logger.warning("Error collecting %s metadata: %s", label, e)
        return fallback

    # ------------------------------------------------------------------
    # Collectors
    # ------------------------------------------------------------------

    def collect_imessage(self) -> tuple[list[ContactFrequency], list[GroupChat]]:
        if self.platform != "darwin":
            return [], []

        def read(conn: sqlite3.Connection):
            row = conn.execute("SELECT MAX(ABS(date)) FROM message").fetchone()
            nanoseconds = bool(row and row[0] and row[0] > 1e12)
            since = apple_timestamp(datetime.now() - CONTACT_WINDOW, nanoseconds)

            contacts = [
                ContactFrequency(
                    identifier=r["identifier"],
                    display_name=r["display_name"],
                    message_count=r["msg_count"],
                )
                for r in conn.execute(CONTACTS_QUERY, (since,)).fetchall()
            ]
            groups = [
                GroupChat(name=r["name"], participant_count=r["participant_count"])
                for r in conn.execute(GROUP_CHATS_QUERY).fetchall()
            ]
            return contacts, groups

        contacts, groups = self._query_store(
            self.home / "Library" / "Messages" / "chat.db", "messages", "Messages", read,
            default=([], []),
        )
        self._resolve_names(contacts)
        logger.info("Collected %d contacts, %d group chats", len(contacts), len(groups))
        return contacts, groups

    def _resolve_names(self, contacts: list[ContactFrequency]) -> None:
        if not contacts:
            return
        lookup = self.contact_lookup()
        for contact in contacts:
            name = lookup.get(normalize_handle(contact.identifier))
            if name:
                contact.display_name = name

    def collect_notes(self) -> list[NoteFolder]:
        if self.platform != "darwin":
            return []
        source = (
            self.home / "Library" / "Group Containers" / "group.com.apple.notes" / "NoteStore.sqlite"
        )
        return self._query_store(
            source, "notes", "Notes",
            lambda conn: [
                NoteFolder(name=r["folder_name"], note_count=r["note_count"])
                for r in _first_working_query(conn, NOTES_QUERIES)
            ],
        )

    def reminders_store(self) -> Path | None:
        candidates = (
            self.home / "Library" / "Reminders" / "Container_v1" / "Stores",
            self.home / "Library" / "Group Containers" / "group.com.apple.reminders"
            / "Container_v1" / "Stores",
        )
        for base in candidates:
            if not base.is_dir():
                continue
            for entry in sorted(base.iterdir()):
                if entry.suffix == ".sqlite":
                    return entry
        return None

    def collect_reminders(self) -> list[NoteFolder]:
        if self.platform != "darwin":
            return []
        source = self.reminders_store()
        if not source:
            logger.info("Reminders database not found")
            return []
        return self._query_store(
            source, "reminders", "Reminders",
            lambda conn: [
                NoteFolder(name=r["name"], note_count=r["note_count"])
                for r in conn.execute(REMINDERS_QUERY).fetchall()
            ],
        )

    def collect_calendars(self) -> list[CalendarSummary]:
        if self.platform != "darwin":
            return []

        def read(conn: sqlite3.Connection) -> list[CalendarSummary]:
            calendars = conn.execute(CALENDARS_QUERY).fetchall()
            recurring = conn.execute(RECURRING_QUERY).fetchall()
            return [
                CalendarSummary(
                    calendar_name=c["calendar_name"],
                    event_count=c["event_count"],
                    recurring_titles=[
                        r["title"] for r in recurring if r["calendar_name"] == c["calendar_name"]
                    ],
                )
                for c in calendars
            ]

        return self._query_store(
            self.home / "Library" / "Calendars" / "Calendar.sqlitedb", "calendar", "Calendar", read
        )

    def collect_sticky_notes(self) -> list[NoteFolder]:
        if self.platform != "win32":
            return []
        local = self.config.env.get("LOCALAPPDATA")
        if not local:
            logger.info("LOCALAPPDATA not set")
            return []

        packages = Path(local) / "Packages"
        try:
            package = next(
                (p for p in sorted(packages.iterdir())
                 if p.name.startswith("Microsoft.MicrosoftStickyNotes_")),
                None,
            )
        except OSError:
            package = None
        if not package:
            logger.info("Sticky Notes package not found")
            return []

        return self._query_store(
            package / "LocalState" / "plum.sqlite", "stickynotes", "Sticky Notes",
            lambda conn: [
                NoteFolder(name=r["name"], note_count=r["note_count"])
                for r in _first_working_query(conn, STICKY_NOTES_QUERIES)
            ],
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def acollect(self) -> MessagesNotesSignals:
        if self.platform == "darwin":
            imessage, notes, reminders, calendars = await asyncio.gather(
                _with_timeout(self.collect_imessage, IMESSAGE_TIMEOUT, ([], [])),
                _with_timeout(self.collect_notes, STORE_TIMEOUT, []),
                _with_timeout(self.collect_reminders, STORE_TIMEOUT, []),
                _with_timeout(self.collect_calendars, STORE_TIMEOUT, []),
            )
            contacts, group_chats = imessage
            return MessagesNotesSignals(
                contacts=contacts,
                group_chats=group_chats,
                note_folders=notes + reminders,
                calendars=calendars,
            )

        if self.platform == "win32":
            sticky = await _with_timeout(self.collect_sticky_notes, STORE_TIMEOUT, [])
            return MessagesNotesSignals(note_folders=sticky)

        return MessagesNotesSignals()

    def collect(self) -> MessagesNotesSignals:
        return asyncio.run(self.acollect())


async def _with_timeout(func, timeout: float, default):
    try:
        return await asyncio.wait_for(asyncio.to_thread(func), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("%s timed out after %ss", func.__name__, timeout)
        return default
    except Exception as e:
        logger.warning("%s failed: %s", func.__name__, e, exc_info=True)
        return default


def format_messages_notes_for_synthesis(data: MessagesNotesSignals | None) -> str:
    if not data:
        return ""

    sections = []

    if data.contacts:
        lines = ["### Communication Patterns", "Top contacts by message frequency:"]
        lines.extend(f"- {c.display_name} ({c.message_count} messages)" for c in data.contacts)
        sections.append("\n".join(lines))

    if data.group_chats:
        lines = ["### Group Chats"]
        lines.extend(f"- {g.name} ({g.participant_count} members)" for g in data.group_chats)
        sections.append("\n".join(lines))

    if data.note_folders:
        lines = ["### Note Organization"]
        lines.extend(f"- {f.name}: {f.note_count} notes" for f in data.note_folders)
        sections.append("\n".join(lines))

    if data.calendars:
        lines = ["### Calendars"]
        for cal in data.calendars:
            line = f"- {cal.calendar_name}: {cal.event_count} events"
            if cal.recurring_titles:
                line += f"\n  Recurring: {', '.join(cal.recurring_titles)}"
            lines.append(line)
        sections.append("\n".join(lines))

    if not sections:
        return ""
    return "## Messages & Notes (metadata only)\n" + "\n\n".join(sections)
