"""Encryption at rest for real contact fields in the identity map.

Values are Fernet tokens tagged with a scope, stored as
``discovery-protected:<scope>:v1:<token>``. The Fernet key lives in the OS
keyring (Keychain, Credential Locker, Secret Service) and is created on
first use.
"""

from __future__ import annotations

import logging

import keyring
from cryptography.fernet import Fernet, InvalidToken
from keyring.errors import KeyringError

from discovery_signals.exceptions import ProtectedStorageError

logger = logging.getLogger(__name__)

PROTECTED_PREFIX = "discovery-protected"
KEYRING_SERVICE = "discovery-signals"
KEYRING_KEY_NAME = "identity-map-key"


def _prefix_for_scope(scope: str) -> str:
    return f"{PROTECTED_PREFIX}:{scope}:v1:"


class FieldProtector:
    """Encrypt and decrypt scoped string values with one Fernet key."""

    def __init__(self, key: bytes | str):
        try:
            self._cipher = Fernet(key)
        except (TypeError, ValueError) as e:
            raise ProtectedStorageError(f"Invalid identity map key: {e}") from e

    @classmethod
    def from_keyring(cls, service: str = KEYRING_SERVICE) -> FieldProtector:
        """Load the key from the OS keyring, creating and storing one if absent.

        Raises:
            ProtectedStorageError: If no usable keyring backend is available.
        """
        try:
            key = keyring.get_password(service, KEYRING_KEY_NAME)
            if not key:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(service, KEYRING_KEY_NAME, key)
                logger.info("Created identity map key in the OS keyring (%s)", service)
        except KeyringError as e:
            raise ProtectedStorageError(f"OS keyring unavailable: {e}") from e
        return cls(key)

    def protect(self, scope: str, plaintext: str) -> str:
        token = self._cipher.encrypt(plaintext.encode("utf-8")).decode("ascii")
        return _prefix_for_scope(scope) + token

    def unprotect(self, scope: str, value: object) -> str | None:
        """Plaintext of ``value``, or ``None`` if it is not a readable token for ``scope``."""
        prefix = _prefix_for_scope(scope)
        if not isinstance(value, str) or not value.startswith(prefix):
            return None
        token = value[len(prefix):]
        if not token:
            return None
        try:
            return self._cipher.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            logger.debug("Cannot decrypt %s value: %r", scope, e)
            return None
