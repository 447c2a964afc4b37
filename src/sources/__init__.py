"""
Sources module - durable store implementations.

The engine only depends on the DurableStore contract; the in-memory store
(with its local change feed) and the aiohttp REST store are interchangeable.
"""

from sources.durable_store import DurableStore, StoreError, StoreErrorKind
from sources.http_store import HttpDurableStore, error_kind_for_status
from sources.memory_store import InMemoryDurableStore, LocalChangeFeed

__all__ = [
    "DurableStore",
    "StoreError",
    "StoreErrorKind",
    # Implementations
    "InMemoryDurableStore",
    "LocalChangeFeed",
    "HttpDurableStore",
    "error_kind_for_status",
]
