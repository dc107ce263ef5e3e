"""Alias generation and reversible pseudonymization of contacts."""

from discovery_signals.identity.identity_map import (
    ContactRecord,
    IdentityMapping,
    IdentityMap,
    IdentityStore,
    generate_alias,
    pseudonymize,
    depseudonymize,
)
from discovery_signals.identity.protected import FieldProtector

__all__ = [
    "ContactRecord",
    "IdentityMapping",
    "IdentityMap",
    "IdentityStore",
    "generate_alias",
    "pseudonymize",
    "depseudonymize",
    "FieldProtector",
]
