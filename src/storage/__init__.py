"""Persistence: store interfaces and their SQLAlchemy implementation."""

from src.storage.base import (
    AuditStore,
    CheckpointStore,
    RateLimitStore,
    RuleStore,
    RunLock,
    RunStore,
)
from src.storage.exceptions import StorageError, StoreTimeoutError
from src.storage.sql import SqlStore, create_store_engine

__all__ = [
    "AuditStore",
    "CheckpointStore",
    "RateLimitStore",
    "RuleStore",
    "RunLock",
    "RunStore",
    "SqlStore",
    "StorageError",
    "StoreTimeoutError",
    "create_store_engine",
]
