"""Shared fixtures: in-memory SQL store and a fake search backend."""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime
from typing import Any

import pytest

from src.search.exceptions import SearchConnectionError
from src.search.scanner import parse_timestamp, to_epoch_millis
from src.storage.sql import SqlStore, create_store_engine


class FakeSearchBackend:
    """In-memory stand-in for SearchClient honouring sort, ``gte`` and ``search_after``."""

    def __init__(self) -> None:
        self.indices: dict[str, list[dict[str, Any]]] = {}
        self.failing: set[str] = set()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def add_log(
        self,
        index: str,
        doc_id: str,
        timestamp: datetime | str | None,
        app_name: str | None = "core",
        duration_ms: int | None = 1500,
        message: str | None = "x",
        correlation_id: str | None = None,
        context: Any = None,
    ) -> None:
        extra: dict[str, Any] = {}
        if duration_ms is not None:
            extra["duration_ms"] = duration_ms
        if correlation_id is not None:
            extra["correlation_id"] = correlation_id
        source: dict[str, Any] = {"message": message, "extra": extra}
        if app_name is not None:
            source["app_name"] = app_name
        if timestamp is not None:
            source["@timestamp"] = timestamp.isoformat() if isinstance(timestamp, datetime) else timestamp
        if context is not None:
            source["context"] = context
        self.indices.setdefault(index, []).append({"_id": doc_id, "_source": source})

    @staticmethod
    def _sort_key(doc: dict[str, Any]) -> tuple[int, str]:
        ts = parse_timestamp(doc["_source"].get("@timestamp"))
        return (to_epoch_millis(ts) if ts is not None else 0, doc["_id"])

    async def list_indices(self) -> list[str]:
        return list(self.indices)

    async def search(self, index: str, body: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((index, body))
        if index in self.failing:
            raise SearchConnectionError(f"{index} unavailable")

        docs = sorted(self.indices.get(index, []), key=self._sort_key)
        for clause in body["query"]["bool"]["must"]:
            if "range" in clause:
                bound = next(iter(clause["range"].values()))["gte"]
                floor = to_epoch_millis(parse_timestamp(bound))  # type: ignore[arg-type]
                docs = [d for d in docs if self._sort_key(d)[0] >= floor]
        if "search_after" in body:
            after = tuple(body["search_after"])
            docs = [d for d in docs if self._sort_key(d) > after]

        page = docs[: body["size"]]
        hits = [{**d, "_index": index, "sort": list(self._sort_key(d))} for d in page]
        return {"hits": {"hits": hits}}


@pytest.fixture
def store() -> Generator[SqlStore, None, None]:
    """Fresh in-memory database with every table created."""
    sql_store = SqlStore(create_store_engine("sqlite://"), timeout_secs=5.0)
    sql_store.create_schema()
    yield sql_store
    sql_store.dispose()


@pytest.fixture
def backend() -> FakeSearchBackend:
    return FakeSearchBackend()
