"""
Storage backend abstraction for DocService.

This module provides a pluggable storage interface supporting:
- SQLite (default, single node)
- Apache Cassandra / ScyllaDB (optional, via cassandra-driver)
- In-memory (for testing)

Each backend offers partitioned tables with clustering order, atomic
batched writes and streaming partition scans. DocService defines its own
schema and access protocol on top; it never reimplements the engine.

Invariants:
    - apply_batch() is all-or-nothing
    - scan() yields one partition in clustering order
    - Backends are long-lived and shared by all concurrent requests

How to change safely:
    - New backends must implement the StorageBackend protocol
    - Run the reader/writer integration tests against every backend
"""

from .base import (
    Row,
    RowWrite,
    StorageBackend,
    StorageBatchError,
    StorageConnectionError,
    StorageError,
    StorageTimeoutError,
    create_storage_backend,
)
from .memory import InMemoryBackend
from .sqlite import SqliteBackend

__all__ = [
    # Protocol and types
    "StorageBackend",
    "Row",
    "RowWrite",
    "StorageError",
    "StorageConnectionError",
    "StorageTimeoutError",
    "StorageBatchError",
    # Factory
    "create_storage_backend",
    # Implementations
    "SqliteBackend",
    "InMemoryBackend",
]
