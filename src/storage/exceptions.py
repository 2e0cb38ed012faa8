"""Exception hierarchy for the persistence layer."""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for all store errors."""


class StoreTimeoutError(StorageError):
    """A store call did not complete within its timeout."""
