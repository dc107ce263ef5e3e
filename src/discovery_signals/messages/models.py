"""Data models for messaging and notes metadata. No message bodies are read."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ContactFrequency:
    identifier: str  # phone number or email handle
    display_name: str
    message_count: int = 0


@dataclass
class GroupChat:
    name: str
    participant_count: int = 0


@dataclass
class NoteFolder:
    name: str
    note_count: int = 0


@dataclass
class CalendarSummary:
    calendar_name: str
    event_count: int = 0
    recurring_titles: list[str] = field(default_factory=list)


@dataclass
class MessagesNotesSignals:
    contacts: list[ContactFrequency] = field(default_factory=list)
    group_chats: list[GroupChat] = field(default_factory=list)
    note_folders: list[NoteFolder] = field(default_factory=list)
    calendars: list[CalendarSummary] = field(default_factory=list)
