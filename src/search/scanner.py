"""Log cursor scanner: resumable, totally ordered pagination over one collection."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import structlog

from src.core.config import SearchConfig, get_settings
from src.core.types import Checkpoint, LogRecord, ScanBatch
from src.search.client import SearchClient
from src.search.exceptions import SearchError

logger = structlog.stdlib.get_logger()

# Application names the log shippers emit when the field was never set.
_EMPTY_APP_NAMES = {"", "null", "none"}


def decode_field(value: Any) -> Any:
    """Decode a free-form attribute that may have been stored as a JSON string.

    Malformed strings become None instead of failing the batch.
    """
    if value is None or isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 string or epoch milliseconds into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        text = value.strip().replace("Z", "+00:00")
        if " " in text and "T" not in text:
            text = text.replace(" ", "T", 1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    return None


def to_epoch_millis(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return int(ts.timestamp() * 1000)


def to_iso(ts: datetime) -> str:
    """UTC ISO 8601 with millisecond precision and a ``Z`` suffix."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def _lookup(source: dict[str, Any], dotted: str) -> Any:
    """Resolve ``a.b.c`` against nested dicts, also accepting a flat ``"a.b.c"`` key."""
    if dotted in source:
        return source[dotted]
    node: Any = source
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


class LogCursorScanner:
    """Fetches batches sorted by (timestamp asc, id asc) after a cursor.

    Usage::

        scanner = LogCursorScanner(client)
        batch = await scanner.scan("core-logs", checkpoint, batch_size=500)
        while not batch.exhausted:
            ...
            batch = await scanner.scan("core-logs", checkpoint, 500, cursor=batch.next_cursor)
    """

    def __init__(self, client: SearchClient, config: SearchConfig | None = None) -> None:
        self._client = client
        self._config = config or get_settings().search

    # ── Collections ─────────────────────────────────────────────

    async def list_collections(self) -> list[str]:
        """Collections to scan: the configured list, else keyword-matched indices.

        Raises:
            SearchError: if discovery is needed and the backend call fails.
        """
        if self._config.collections:
            return list(self._config.collections)

        names = await self._client.list_indices()
        keywords = [k for k in self._config.collection_keywords if k]
        selected = sorted(
            name for name in names
            if not name.startswith(".") and any(k in name for k in keywords)
        )
        logger.info("collections_discovered", total=len(names), selected=len(selected))
        return selected

    # ── Query building ──────────────────────────────────────────

    @staticmethod
    def resume_cursor(checkpoint: Checkpoint | None) -> list[Any] | None:
        """Cursor that skips records already covered by *checkpoint*."""
        if checkpoint is None or checkpoint.last_timestamp is None or not checkpoint.last_id:
            return None
        return [to_epoch_millis(checkpoint.last_timestamp), checkpoint.last_id]

    def build_query(
        self,
        batch_size: int,
        cursor: list[Any] | None = None,
        since: datetime | None = None,
    ) -> dict[str, Any]:
        cfg = self._config
        must: list[dict[str, Any]] = []
        if since is not None:
            must.append({"range": {cfg.timestamp_field: {"gte": to_iso(since)}}})
        must.append({"exists": {"field": cfg.duration_field}})
        must.append({"exists": {"field": cfg.app_field}})

        body: dict[str, Any] = {
            "size": batch_size,
            "query": {
                "bool": {
                    "must": must,
                    "must_not": [
                        {"term": {cfg.app_field: ""}},
                        {"term": {f"{cfg.app_field}.keyword": "null"}},
                    ],
                }
            },
            "sort": [
                {cfg.timestamp_field: {"order": "asc"}},
                {cfg.tiebreak_field: {"order": "asc"}},
            ],
            "track_total_hits": False,
        }
        if cursor is not None:
            body["search_after"] = list(cursor)
        return body

    # ── Scanning ────────────────────────────────────────────────

    async def scan(
        self,
        collection: str,
        checkpoint: Checkpoint | None,
        batch_size: int,
        cursor: list[Any] | None = None,
        since: datetime | None = None,
    ) -> ScanBatch:
        """Fetch the next batch strictly after *cursor*.

        With no explicit *cursor*/*since*, both are derived from *checkpoint*;
        with no checkpoint the scan starts at the beginning of the collection.
        Backend failures return an empty batch with ``error`` set.
        """
        if since is None and checkpoint is not None:
            since = checkpoint.last_timestamp
        if cursor is None:
            cursor = self.resume_cursor(checkpoint)

        body = self.build_query(batch_size, cursor=cursor, since=since)
        try:
            result = await self._client.search(collection, body)
        except SearchError as exc:
            logger.error("scan_batch_failed", collection=collection, error=str(exc))
            return ScanBatch(next_cursor=cursor, error=str(exc))

        hits = (result.get("hits") or {}).get("hits") or []
        if not isinstance(hits, list):
            logger.error("scan_batch_malformed", collection=collection)
            return ScanBatch(next_cursor=cursor, error="malformed hits in search response")

        records = [r for r in (self.normalize_hit(collection, h) for h in hits) if r is not None]

        next_cursor = cursor
        if hits:
            last_sort = hits[-1].get("sort") if isinstance(hits[-1], dict) else None
            if last_sort:
                next_cursor = list(last_sort)
            elif records and records[-1].timestamp is not None:
                next_cursor = [to_epoch_millis(records[-1].timestamp), records[-1].record_id]

        if len(records) < len(hits):
            logger.debug(
                "scan_hits_dropped",
                collection=collection,
                dropped=len(hits) - len(records),
            )

        return ScanBatch(records=records, next_cursor=next_cursor, hits_seen=len(hits))

    def normalize_hit(self, collection: str, hit: Any) -> LogRecord | None:
        """Flatten one search hit; None when duration or application is missing."""
        if not isinstance(hit, dict):
            return None
        source = hit.get("_source")
        if not isinstance(source, dict):
            return None

        cfg = self._config
        context = decode_field(source.get("context"))
        extra = decode_field(source.get("extra"))
        flat = {**source, "context": context, "extra": extra}

        duration = _as_int(_lookup(flat, cfg.duration_field))
        if duration is None:
            return None

        app_name = _as_str(_lookup(flat, cfg.app_field))
        if app_name is None or app_name.strip().lower() in _EMPTY_APP_NAMES:
            return None

        raw_ts = source.get(cfg.timestamp_field)
        if raw_ts is None:
            raw_ts = source.get(cfg.fallback_timestamp_field)

        correlation_id = None
        if isinstance(extra, dict):
            correlation_id = _as_str(extra.get("correlation_id"))
        if correlation_id is None and isinstance(context, dict):
            correlation_id = _as_str(context.get("correlation_id"))

        return LogRecord(
            collection=str(hit.get("_index") or collection),
            record_id=str(hit.get("_id", "")),
            timestamp=parse_timestamp(raw_ts),
            raw_timestamp=_as_str(raw_ts),
            app_name=app_name,
            message=_as_str(source.get("message")),
            level=_as_str(source.get("level_name") or source.get("level")),
            duration_ms=duration,
            correlation_id=correlation_id,
            context=context,
            extra=extra,
            sort_values=list(hit.get("sort") or []),
        )
