"""Messaging, notes and calendar metadata (opt-in)."""

from discovery_signals.messages.models import (
    ContactFrequency,
    GroupChat,
    NoteFolder,
    CalendarSummary,
    MessagesNotesSignals,
)
from discovery_signals.messages.contacts import ContactsReader, load_contact_lookup
from discovery_signals.messages.reader import (
    MessagesNotesCollector,
    format_messages_notes_for_synthesis,
)

__all__ = [
    "ContactFrequency",
    "GroupChat",
    "NoteFolder",
    "CalendarSummary",
    "MessagesNotesSignals",
    "ContactsReader",
    "load_contact_lookup",
    "MessagesNotesCollector",
    "format_messages_notes_for_synthesis",
]
