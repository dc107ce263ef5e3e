"""Tests for encryption of identity map fields."""

from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet
from keyring.errors import NoKeyringError

from discovery_signals.exceptions import ProtectedStorageError
from discovery_signals.identity.protected import (
    KEYRING_KEY_NAME,
    KEYRING_SERVICE,
    FieldProtector,
)

SCOPE = "identity-map-real-name"


@pytest.fixture
def protector():
    return FieldProtector(Fernet.generate_key())


def test_protect_round_trip(protector):
    value = protector.protect(SCOPE, "Ada Lovelace")
    assert value.startswith(f"discovery-protected:{SCOPE}:v1:")
    assert "Ada" not in value
    assert protector.unprotect(SCOPE, value) == "Ada Lovelace"


def test_unprotect_rejects_other_scope(protector):
    value = protector.protect(SCOPE, "Ada Lovelace")
    assert protector.unprotect("identity-map-real-identifier", value) is None


@pytest.mark.parametrize("value", [
    "Ada Lovelace",
    f"discovery-protected:{SCOPE}:v1:",
    f"discovery-protected:{SCOPE}:v1:not-a-token",
    None,
    42,
])
def test_unprotect_unreadable_values(protector, value):
    assert protector.unprotect(SCOPE, value) is None


def test_unprotect_with_another_key(protector):
    value = protector.protect(SCOPE, "Ada Lovelace")
    assert FieldProtector(Fernet.generate_key()).unprotect(SCOPE, value) is None


def test_invalid_key():
    with pytest.raises(ProtectedStorageError):
        FieldProtector("too-short")


def test_from_keyring_creates_then_reuses_key(memory_keyring):
    first = FieldProtector.from_keyring()
    stored = memory_keyring.get_password(KEYRING_SERVICE, KEYRING_KEY_NAME)
    assert stored

    second = FieldProtector.from_keyring()
    assert memory_keyring.get_password(KEYRING_SERVICE, KEYRING_KEY_NAME) == stored
    assert second.unprotect(SCOPE, first.protect(SCOPE, "Grace Hopper")) == "Grace Hopper"


def test_from_keyring_unavailable():
    with patch(
        "discovery_signals.identity.protected.keyring.get_password",
        side_effect=NoKeyringError("No recommended backend was available"),
    ):
        with pytest.raises(ProtectedStorageError, match="keyring unavailable"):
            FieldProtector.from_keyring()
