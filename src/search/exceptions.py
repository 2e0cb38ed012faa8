"""Exception hierarchy for the log search client."""

from __future__ import annotations


class SearchError(Exception):
    """Base exception for all search backend errors."""


class SearchConnectionError(SearchError):
    """Transport failure or non-success HTTP status from the backend."""


class SearchResponseError(SearchError):
    """The backend answered with a body we could not interpret."""
