"""Thin async client for an Elasticsearch-compatible search HTTP API."""

from __future__ import annotations

from types import TracebackType
from typing import Any

import httpx
import structlog

from src.core.config import SearchConfig, get_settings
from src.search.exceptions import SearchConnectionError, SearchResponseError

logger = structlog.stdlib.get_logger()


class SearchClient:
    """Issues ``_cat/indices`` and ``_search`` requests over httpx.

    Usage::

        async with SearchClient() as client:
            names = await client.list_indices()
            body = await client.search("core-logs", {"size": 10})
    """

    def __init__(self, config: SearchConfig | None = None) -> None:
        self._config = config or get_settings().search
        self._http: httpx.AsyncClient | None = None

    @property
    def connected(self) -> bool:
        return self._http is not None and not self._http.is_closed

    async def connect(self) -> None:
        """Create the httpx async client."""
        auth: httpx.BasicAuth | None = None
        if self._config.username:
            auth = httpx.BasicAuth(
                self._config.username, self._config.password.get_secret_value()
            )
        self._http = httpx.AsyncClient(
            base_url=self._config.url.rstrip("/"),
            auth=auth,
            timeout=httpx.Timeout(self._config.timeout_secs),
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        """Close the httpx async client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> SearchClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._http is None:
            raise SearchConnectionError("HTTP client not connected")

        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SearchConnectionError(
                f"search backend returned {exc.response.status_code} for {path}: "
                f"{exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SearchConnectionError(f"search request {path} failed: {exc!r}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise SearchResponseError(f"invalid JSON from {path}") from exc

    async def list_indices(self) -> list[str]:
        """Names of every index on the backend."""
        body = await self._request("GET", "/_cat/indices", params={"format": "json"})
        if not isinstance(body, list):
            raise SearchResponseError("_cat/indices did not return a list")
        return [str(entry["index"]) for entry in body if isinstance(entry, dict) and "index" in entry]

    async def search(self, index: str, body: dict[str, Any]) -> dict[str, Any]:
        """Run a search request against one index and return the raw response."""
        result = await self._request("POST", f"/{index}/_search", json=body)
        if not isinstance(result, dict):
            raise SearchResponseError(f"search on {index} did not return an object")
        return result
