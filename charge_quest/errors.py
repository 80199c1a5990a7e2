"""Central error types used across the application."""

from __future__ import annotations


class ChargeQuestError(RuntimeError):
    """Base error for every failure surfaced by the discovery core."""


class InvalidPositionError(ChargeQuestError):
    """Raised at the location-source boundary for malformed fixes."""


class UnknownStationError(ChargeQuestError):
    """Raised when a station id is not present in the catalog."""


class NotDiscoverableError(ChargeQuestError):
    """Raised when a claim targets a station that is not currently in range."""


class LootNotFoundError(ChargeQuestError):
    """Raised when a collect command references loot the player does not own."""


class PersistenceFailureError(ChargeQuestError):
    """Raised when the store rejects a write; in-memory state is kept."""


class ProviderError(ChargeQuestError):
    """Base error for station provider failures."""


class ProviderPermissionError(ProviderError):
    """Raised when the provider rejects the API key."""


class ProviderResourceNotFoundError(ProviderError):
    """Raised when the provider endpoint does not exist."""


class ProviderUnavailableError(ProviderError):
    """Raised when a fetch keeps failing after the retry budget is spent."""


__all__ = [
    "ChargeQuestError",
    "InvalidPositionError",
    "UnknownStationError",
    "NotDiscoverableError",
    "LootNotFoundError",
    "PersistenceFailureError",
    "ProviderError",
    "ProviderPermissionError",
    "ProviderResourceNotFoundError",
    "ProviderUnavailableError",
]
