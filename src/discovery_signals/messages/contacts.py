"""Resolve message handles to address-book names via pyobjc (optional)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from discovery_signals.exceptions import ContactResolutionError

logger = logging.getLogger(__name__)

try:
    import objc  # noqa: F401
    from Contacts import (
        CNContactStore,
        CNContactFetchRequest,
        CNContactGivenNameKey,
        CNContactFamilyNameKey,
        CNContactPhoneNumbersKey,
        CNContactEmailAddressesKey,
    )
    _PYOBJC_AVAILABLE = True
except ImportError:
    _PYOBJC_AVAILABLE = False


@dataclass
class AddressBookEntry:
    full_name: str
    phone_numbers: list[str] = field(default_factory=list)
    email_addresses: list[str] = field(default_factory=list)


def normalize_phone(raw: str) -> str:
    """Normalize a phone number to its last 10 digits."""
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits[-10:] if len(digits) >= 10 else digits


def normalize_email(raw: str) -> str:
    return raw.strip().lower()


def normalize_handle(handle: str) -> str:
    return normalize_email(handle) if "@" in handle else normalize_phone(handle)


def build_lookup(entries: list[AddressBookEntry]) -> dict[str, str]:
    """Map normalized phone/email to a contact's full name."""
    lookup: dict[str, str] = {}
    for entry in entries:
        for phone in entry.phone_numbers:
            key = normalize_phone(phone)
            if key:
                lookup[key] = entry.full_name
        for email in entry.email_addresses:
            key = normalize_email(email)
            if key:
                lookup[key] = entry.full_name
    return lookup


class ContactsReader:
    """Read names, phones and emails from macOS Contacts via CNContactStore."""

    def __init__(self):
        if not _PYOBJC_AVAILABLE:
            raise ImportError(
                "ContactsReader requires macOS and pyobjc-framework-Contacts. "
                "Install with: pip install discovery-signals[contacts]"
            )

    def fetch_all(self) -> list[AddressBookEntry]:
        store = CNContactStore.alloc().init()
        keys = [
            CNContactGivenNameKey,
            CNContactFamilyNameKey,
            CNContactPhoneNumbersKey,
            CNContactEmailAddressesKey,
        ]
        request = CNContactFetchRequest.alloc().initWithKeysToFetch_(keys)
        entries: list[AddressBookEntry] = []

        def _handle_contact(contact, stop):
            full = f"{contact.givenName() or ''} {contact.familyName() or ''}".strip()
            if not full:
                return
            phones = [p.value().stringValue() for p in contact.phoneNumbers() if p.value()]
            emails = [str(e.value()) for e in contact.emailAddresses() if e.value()]
            entries.append(AddressBookEntry(full_name=full, phone_numbers=phones, email_addresses=emails))

        success, error = store.enumerateContactsWithFetchRequest_error_usingBlock_(
            request, None, _handle_contact
        )
        if not success:
            raise ContactResolutionError(f"Failed to fetch contacts: {error or 'Unknown error'}")

        logger.info("Fetched %d contacts from macOS Contacts", len(entries))
        return entries


def load_contact_lookup() -> dict[str, str]:
    """Handle -> name lookup, or ``{}`` when the address book is unavailable."""
    if not _PYOBJC_AVAILABLE:
        logger.debug("pyobjc Contacts not installed; handles stay unresolved")
        return {}
    try:
        return build_lookup(ContactsReader().fetch_all())
    except ContactResolutionError as e:
        logger.warning("Contact name resolution unavailable: %s", e)
        return {}
