"""
In-memory storage backend for testing.

This module provides a simple in-memory implementation of partitioned
tables for:
- Unit tests
- Integration tests
- Local development without external dependencies

Invariants:
    - All data is lost on process exit (or close())
    - Provides the same clustering order and batch atomicity as the
      durable backends
    - Batches are validated completely before any row is applied

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with StorageBackend protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Sequence
from typing import Any

from ..ids import version_sort_key
from ..schema.tables import ClusteringOrder, ColumnType, TableSpec
from .base import (
    Row,
    RowWrite,
    StorageBatchError,
    StorageConnectionError,
    StorageError,
    check_row,
)

logger = logging.getLogger(__name__)

Partition = dict[tuple[Any, ...], Row]


class InMemoryBackend:
    """In-memory implementation of StorageBackend for testing.

    Attributes:
        keyspaces: Names of keyspaces created so far
        batch_count: Number of apply_batch() calls that reached the backend
        scan_count: Number of scan() calls that reached the backend

    Thread safety:
        Uses an asyncio lock around batch application. Safe to use from
        multiple coroutines.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.ensure_table(DOCUMENTS)
        >>> await backend.apply_batch([RowWrite(DOCUMENTS, row)])
    """

    def __init__(self) -> None:
        self.keyspaces: set[str] = set()
        self.batch_count = 0
        self.scan_count = 0
        self._specs: dict[str, TableSpec] = {}
        self._tables: dict[str, dict[tuple[Any, ...], Partition]] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._batch_failure: Exception | None = None
        self._scan_failure: tuple[int, Exception] | None = None

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryBackend connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._tables.clear()
        self._specs.clear()
        self.keyspaces.clear()
        logger.debug("InMemoryBackend closed")

    async def ensure_keyspace(self, name: str, replication_factor: int) -> None:
        self._require_connection()
        self.keyspaces.add(name)

    async def ensure_table(self, spec: TableSpec) -> None:
        self._require_connection()
        if spec.name not in self._specs:
            self._specs[spec.name] = spec
            self._tables[spec.name] = defaultdict(dict)
            logger.debug("Created in-memory table", extra={"table": spec.name})

    async def apply_batch(self, writes: Sequence[RowWrite]) -> None:
        """Apply all writes or none.

        Raises:
            StorageConnectionError: If not connected
            StorageBatchError: If a row is invalid or targets an unknown table
        """
        self._require_connection()
        self.batch_count += 1

        if self._batch_failure is not None:
            failure, self._batch_failure = self._batch_failure, None
            raise failure

        for write in writes:
            if write.table.name not in self._specs:
                raise StorageBatchError(f"Table does not exist: {write.table.name}")
            check_row(write.table, write.values)

        async with self._lock:
            for write in writes:
                table = self._tables[write.table.name]
                clustering = tuple(write.values[c] for c in write.table.clustering_key)
                table[write.partition()][clustering] = dict(write.values)

        logger.debug("Batch applied to in-memory tables", extra={"rows": len(writes)})

    async def scan(
        self,
        table: TableSpec,
        partition: Row,
        clustering: Row | None = None,
    ) -> AsyncIterator[Row]:
        """Yield one partition's rows in clustering order."""
        self._require_connection()
        self.scan_count += 1

        if table.name not in self._specs:
            raise StorageError(f"Table does not exist: {table.name}")

        failure = self._scan_failure
        self._scan_failure = None

        part_key = tuple(partition[c] for c in table.partition_key)
        rows = [dict(r) for r in self._tables[table.name].get(part_key, {}).values()]
        if clustering:
            rows = [r for r in rows if all(r[c] == v for c, v in clustering.items())]
        rows = _sort_rows(table, rows)

        for index, row in enumerate(rows):
            if failure is not None and index >= failure[0]:
                raise failure[1]
            yield row
            await asyncio.sleep(0)

        if failure is not None:
            raise failure[1]

    def _require_connection(self) -> None:
        if not self._connected:
            raise StorageConnectionError("Not connected")

    # Testing helpers

    def fail_next_batch(self, exception: Exception) -> None:
        """Make the next apply_batch() raise without applying any row."""
        self._batch_failure = exception

    def fail_next_scan(self, exception: Exception, after_rows: int = 0) -> None:
        """Make the next scan() raise after yielding ``after_rows`` rows."""
        self._scan_failure = (after_rows, exception)

    def row_count(self, table_name: str) -> int:
        """Total rows across all partitions of a table (testing helper)."""
        return sum(len(p) for p in self._tables.get(table_name, {}).values())

    def get_rows(self, table_name: str) -> list[Row]:
        """All rows of a table, unordered (testing helper)."""
        return [
            dict(row)
            for part in self._tables.get(table_name, {}).values()
            for row in part.values()
        ]


def _sort_rows(table: TableSpec, rows: list[Row]) -> list[Row]:
    # Stable sorts from the least significant clustering column upwards
    for name in reversed(table.clustering_key):
        if table.column(name).type == ColumnType.TIMEUUID:
            key = lambda r, n=name: version_sort_key(r[n])  # noqa: E731
        else:
            key = lambda r, n=name: r[n]  # noqa: E731
        rows.sort(key=key, reverse=table.order_of(name) == ClusteringOrder.DESC)
    return rows
