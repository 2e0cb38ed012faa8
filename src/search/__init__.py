"""Log search backend access: HTTP client and cursor scanner."""

from src.search.client import SearchClient
from src.search.exceptions import SearchConnectionError, SearchError, SearchResponseError
from src.search.scanner import LogCursorScanner, decode_field, parse_timestamp

__all__ = [
    "LogCursorScanner",
    "SearchClient",
    "SearchConnectionError",
    "SearchError",
    "SearchResponseError",
    "decode_field",
    "parse_timestamp",
]
