"""Persistent pseudonymization of contact names and identifiers.

Every real contact gets a deterministic alias (name plus fake email or phone
number) derived from a SHA-256 of its identifier. Mappings are append-only
and persisted at ``<AppHome>/state/identity_map.json`` so the same person
keeps the same alias across runs. Real names and identifiers are stored
encrypted (see ``protected``).
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from discovery_signals.exceptions import IdentityMapError, ParseError
from discovery_signals.identity.protected import FieldProtector

logger = logging.getLogger(__name__)

IDENTITY_MAP_VERSION = 1
IDENTITY_MAP_FILENAME = "identity_map.json"

NAME_SCOPE = "identity-map-real-name"
IDENTIFIER_SCOPE = "identity-map-real-identifier"

IDENTITY_SOURCES = ("imessage", "calendar", "notes", "reminders", "git_config")

FIRST_NAMES = (
    "Adrian", "Blake", "Carmen", "Dana", "Ellis", "Finley", "Glenn", "Harper", "Ivory",
    "Jules", "Kai", "Lane", "Morgan", "Noel", "Oakley", "Parker", "Quinn", "Reed",
    "Sage", "Taylor", "Uma", "Val", "Winter", "Xen", "Yael", "Zara", "Archer", "Briar",
    "Cedar", "Devon", "Ember", "Fern", "Gray", "Haven", "Indigo", "Jordan", "Kira",
    "Lark", "Milan", "Nova", "Onyx", "Phoenix", "Raven", "Skylar", "Tatum", "Unity",
    "Vesper", "Wren", "Xander", "Zephyr", "Aspen", "Blair", "Cove", "Darcy", "Emery",
    "Flynn", "Greer", "Hollis", "Iris", "Jude", "Keegan", "Leander", "Marlow", "Nico",
    "Orion", "Pax", "Reese", "Shea", "Tobin", "Ursa", "Vivian", "West", "Yara", "Zion",
    "Avery", "Beck", "Cade", "Drew", "Eden", "Fox", "Gemma", "Hale", "Ira", "Jasper",
    "Kit", "Lennox", "Mars", "Neve", "Opal", "Penn", "Rio", "Scout", "True", "Valor",
    "Wade", "Ximena", "York", "Zola",
)

LAST_NAMES = (
    "Ashford", "Bellamy", "Calloway", "Dalton", "Everhart", "Fairchild", "Gallagher",
    "Hartwell", "Irvine", "Jennings", "Kensington", "Langford", "Mercer", "Northcott",
    "Osborne", "Pemberton", "Quinlan", "Redmond", "Sterling", "Thorne", "Underwood",
    "Vance", "Whitfield", "Yardley", "Zimmerman", "Aldridge", "Blackwell", "Cromwell",
    "Davenport", "Ellsworth", "Fletcher", "Garrison", "Holloway", "Isherwood",
    "Jarrett", "Kingsley", "Lockwood", "Montague", "Norwood", "Oakwell", "Prescott",
    "Ramsey", "Sinclair", "Thornton", "Upton", "Vaughn", "Westbrook", "Ainsley",
    "Bradford", "Castillo", "Donovan", "Eastwood", "Finch", "Gentry", "Hawthorne",
    "Ingram", "Jessup", "Kimball", "Lancaster", "Moreland", "Newell", "Ogden",
    "Porter", "Rowan", "Sawyer", "Trask", "Ulrich", "Wakefield", "Abbott", "Brinley",
    "Chandler", "Drake", "Elwood", "Frost", "Graves", "Henley", "Irving", "Kemp",
    "Linden", "Maxwell", "Nash", "Olivier", "Pearce", "Roland", "Sutton", "Trent",
    "Vernon", "Winslow", "Alden", "Burke", "Cross", "Delaney", "Emerson", "Foley",
    "Grant", "Hayes", "Ives",
)

# Serializes read-merge-write cycles on the map file within this process.
_STORE_LOCK = threading.Lock()

# Characters allowed between digits of a formatted phone number.
_PHONE_SEPARATOR = r"[\s().+-]*"
_MIN_PHONE_DIGITS = 10


def normalize_identifier(identifier: str) -> str:
    return (identifier or "").strip().lower()


def generate_alias(identifier: str) -> tuple[str, str]:
    """Deterministic ``(alias name, alias identifier)`` for ``identifier``.

    Emails become ``first.last@example.com``; anything else gets a
    ``+1-NXX-XXX-XXXX`` phone number built from the hash bytes.
    """
    digest = hashlib.sha256(identifier.encode("utf-8")).digest()
    hash_int = int(digest[:4].hex(), 16)

    first = FIRST_NAMES[hash_int % len(FIRST_NAMES)]
    last = LAST_NAMES[(hash_int // len(FIRST_NAMES)) % len(LAST_NAMES)]
    name = f"{first} {last}"

    if "@" in identifier:
        return name, f"{first.lower()}.{last.lower()}@example.com"

    d = [b % 10 for b in digest[:10]]
    area = (digest[0] % 8) + 2
    return name, f"+1-{area}{d[1]}{d[2]}-{d[3]}{d[4]}{d[5]}-{d[6]}{d[7]}{d[8]}{d[9]}"


@dataclass
class ContactRecord:
    """A real contact seen by a collector, before aliasing."""

    name: str
    identifier: str
    source: str


@dataclass
class IdentityMapping:
    real_name: str
    real_identifier: str
    alias_name: str
    alias_identifier: str
    source: str

    def to_dict(self) -> dict:
        return {
            "real": {"name": self.real_name, "identifier": self.real_identifier},
            "alias": {"name": self.alias_name, "identifier": self.alias_identifier},
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict) -> IdentityMapping:
        return cls(
            real_name=data["real"]["name"],
            real_identifier=data["real"]["identifier"],
            alias_name=data["alias"]["name"],
            alias_identifier=data["alias"]["identifier"],
            source=data.get("source", ""),
        )


@dataclass
class IdentityMap:
    version: int = IDENTITY_MAP_VERSION
    mappings: list[IdentityMapping] = field(default_factory=list)

    def find(self, identifier: str) -> IdentityMapping | None:
        key = normalize_identifier(identifier)
        for mapping in self.mappings:
            if normalize_identifier(mapping.real_identifier) == key:
                return mapping
        return None

    def to_dict(self) -> dict:
        return {"version": self.version, "mappings": [m.to_dict() for m in self.mappings]}


class IdentityStore:
    """Load, save and extend the on-disk identity map.

    Real names and identifiers are encrypted on disk by ``protector``; aliases
    stay in clear. Without an explicit protector one is built from the OS
    keyring the first time a real field is read or written.
    """

    def __init__(self, state_dir: Path, protector: FieldProtector | None = None):
        self.state_dir = Path(state_dir)
        self._protector = protector

    @property
    def path(self) -> Path:
        return self.state_dir / IDENTITY_MAP_FILENAME

    @property
    def protector(self) -> FieldProtector:
        if self._protector is None:
            self._protector = FieldProtector.from_keyring()
        return self._protector

    def load(self) -> IdentityMap:
        """Read the map; a missing file or unknown version yields an empty map.

        Entries whose real fields cannot be decrypted are dropped.
        """
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return IdentityMap()
        except OSError as e:
            raise IdentityMapError(f"Failed to read {self.path}: {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ParseError(f"Malformed identity map at {self.path}: {e}") from e

        if not isinstance(data, dict) or data.get("version") != IDENTITY_MAP_VERSION:
            version = data.get("version") if isinstance(data, dict) else None
            logger.warning("Unsupported identity map version: %s", version)
            return IdentityMap()

        mappings = []
        unreadable = 0
        for entry in data.get("mappings") or []:
            try:
                mapping = IdentityMapping.from_dict(entry)
            except (KeyError, TypeError) as e:
                logger.debug("Skipping malformed identity mapping: %s", e)
                continue
            real_name = self.protector.unprotect(NAME_SCOPE, mapping.real_name)
            real_identifier = self.protector.unprotect(IDENTIFIER_SCOPE, mapping.real_identifier)
            if real_name is None or real_identifier is None:
                unreadable += 1
                continue
            mapping.real_name = real_name
            mapping.real_identifier = real_identifier
            mappings.append(mapping)

        if unreadable:
            logger.warning("Dropped %d identity mappings that could not be decrypted", unreadable)
        return IdentityMap(mappings=mappings)

    def _protected_dict(self, identity_map: IdentityMap) -> dict:
        data = identity_map.to_dict()
        for entry in data["mappings"]:
            real = entry["real"]
            real["name"] = self.protector.protect(NAME_SCOPE, real["name"])
            real["identifier"] = self.protector.protect(IDENTIFIER_SCOPE, real["identifier"])
        return data

    def save(self, identity_map: IdentityMap) -> None:
        """Atomically replace the map file (owner read/write only)."""
        data = self._protected_dict(identity_map)
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.state_dir, prefix=".identity_map.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise IdentityMapError(f"Failed to write {self.path}: {e}") from e

    def add_contacts(self, contacts: Iterable[ContactRecord]) -> IdentityMap:
        """Append aliases for unseen identifiers; write only if something was added."""
        with _STORE_LOCK:
            identity_map = self.load()
            known = {normalize_identifier(m.real_identifier) for m in identity_map.mappings}

            added = 0
            for contact in contacts:
                key = normalize_identifier(contact.identifier)
                if not key or key in known:
                    continue
                alias_name, alias_identifier = generate_alias(contact.identifier.strip())
                identity_map.mappings.append(IdentityMapping(
                    real_name=contact.name.strip(),
                    real_identifier=contact.identifier.strip(),
                    alias_name=alias_name,
                    alias_identifier=alias_identifier,
                    source=contact.source,
                ))
                known.add(key)
                added += 1

            if added:
                self.save(identity_map)
                logger.info("Added %d identity mappings (%d total)", added, len(identity_map.mappings))
            return identity_map


# ----------------------------------------------------------------------
# Text substitution
# ----------------------------------------------------------------------


def _name_pattern(name: str) -> str:
    return r"(?<!\w)" + re.escape(name) + r"(?!\w)"


def _phone_pattern(identifier: str) -> str | None:
    """Match the number in any common formatting; the country code is optional."""
    digits = re.sub(r"\D", "", identifier)
    if len(digits) < _MIN_PHONE_DIGITS:
        return None
    national = _PHONE_SEPARATOR.join(digits[-_MIN_PHONE_DIGITS:])
    country = digits[:-_MIN_PHONE_DIGITS]
    if country:
        national = f"(?:{_PHONE_SEPARATOR.join(country)}{_PHONE_SEPARATOR})?{national}"
    return rf"(?<!\d)\+?{national}(?!\d)"


def _substitution_entries(pairs: Iterable[tuple[str, str, bool]]) -> list[tuple[str, str]]:
    """``(pattern, replacement)`` list, longest source first.

    ``pairs`` holds ``(source, replacement, is_identifier)``. Later pairs
    with the same pattern override earlier ones.
    """
    entries: dict[str, tuple[int, str]] = {}
    for source, replacement, is_identifier in pairs:
        source = (source or "").strip()
        if not source:
            continue
        if is_identifier:
            phone = _phone_pattern(source)
            if phone:
                entries[phone] = (len(source), replacement)
            entries[re.escape(source)] = (len(source), replacement)
        else:
            entries[_name_pattern(source)] = (len(source), replacement)

    ordered = sorted(entries.items(), key=lambda item: -item[1][0])
    return [(pattern, replacement) for pattern, (_, replacement) in ordered]


def _substitute(text: str, entries: list[tuple[str, str]]) -> str:
    if not entries:
        return text
    combined = re.compile(
        "|".join(f"(?P<g{i}>{pattern})" for i, (pattern, _) in enumerate(entries)),
        re.IGNORECASE,
    )
    replacements = {f"g{i}": replacement for i, (_, replacement) in enumerate(entries)}
    return combined.sub(lambda m: replacements[m.lastgroup], text)


def pseudonymize(text: str, identity_map: IdentityMap) -> str:
    """Replace real names and identifiers in ``text`` with their aliases.

    One regex pass over the text. Aliases are part of the same alternation
    and map to themselves, so pseudonymizing already pseudonymized text
    changes nothing.
    """
    if not text or not identity_map.mappings:
        return text

    pairs: list[tuple[str, str, bool]] = []
    for m in identity_map.mappings:
        pairs.append((m.alias_identifier, m.alias_identifier, True))
        pairs.append((m.alias_name, m.alias_name, False))
    # Real values override alias self-mappings on collision.
    for m in identity_map.mappings:
        # Calendar attendees are keyed by name; the name alias wins.
        if normalize_identifier(m.real_identifier) != normalize_identifier(m.real_name):
            pairs.append((m.real_identifier, m.alias_identifier, True))
        pairs.append((m.real_name, m.alias_name, False))

    return _substitute(text, _substitution_entries(pairs))


def depseudonymize(text: str, identity_map: IdentityMap) -> str:
    """Restore real names and identifiers in text produced by ``pseudonymize``."""
    if not text or not identity_map.mappings:
        return text

    pairs: list[tuple[str, str, bool]] = []
    for m in identity_map.mappings:
        pairs.append((m.alias_identifier, m.real_identifier, True))
        pairs.append((m.alias_name, m.real_name, False))
    return _substitute(text, _substitution_entries(pairs))
