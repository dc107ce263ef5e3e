"""Unified exception hierarchy for discovery-signals."""


class DiscoveryError(Exception):
    """Base exception for all signal-discovery errors."""


# Configuration
class ConfigError(DiscoveryError):
    """Invalid configuration value."""


# OS probing
class ProbeError(DiscoveryError):
    """Base exception for OS command probing."""


class CommandError(ProbeError):
    """An OS command was missing, timed out, or exited non-zero."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


# Local stores
class StoreError(DiscoveryError):
    """Base exception for local data store access."""


class StoreReadError(StoreError):
    """Failed to copy or open a local data store."""


class PermissionDeniedError(StoreReadError):
    """The OS refused access to a protected store (e.g. Full Disk Access)."""


# Parsing
class ParseError(DiscoveryError):
    """Malformed JSON, plist or command output."""


# Identity map
class IdentityMapError(DiscoveryError):
    """Failed to load or persist the identity map."""


class ProtectedStorageError(IdentityMapError):
    """OS keyring unavailable or encryption key unusable."""


# Contacts
class ContactResolutionError(DiscoveryError):
    """Failed to read the system address book."""
