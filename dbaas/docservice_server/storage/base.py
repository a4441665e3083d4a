"""
Base protocol and types for the storage backend abstraction.

This module defines the StorageBackend protocol that all backends must
implement, along with the row-write type and storage errors.

Invariants:
    - apply_batch() is all-or-nothing: either every row in the batch is
      visible afterwards or none is
    - scan() yields the rows of exactly one partition, in clustering order
    - scan() is lazy, single-pass and not restartable; failures surface
      from the iterator, possibly after some rows were yielded
    - Writing an existing primary key replaces the row (upsert)

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the memory backend's ordering identical to the durable ones
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import logging

from ..schema.tables import INT_MAX, INT_MIN, ColumnType, TableSpec

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class StorageError(Exception):
    """Base exception for storage backend operations."""

    pass


class StorageConnectionError(StorageError):
    """Connection to the storage backend failed or is not established."""

    pass


class StorageTimeoutError(StorageError):
    """Storage operation exceeded the backend's timeout."""

    pass


class StorageBatchError(StorageError):
    """Backend rejected a write batch; none of its rows were applied."""

    pass


@dataclass(frozen=True)
class RowWrite:
    """One row insertion inside a batch.

    Attributes:
        table: Target table layout
        values: Column values; must cover every primary key column
    """

    table: TableSpec
    values: Row = field(default_factory=dict)

    def primary_key(self) -> tuple[Any, ...]:
        return tuple(self.values[c] for c in self.table.primary_key)

    def partition(self) -> tuple[Any, ...]:
        return tuple(self.values[c] for c in self.table.partition_key)

    def __str__(self) -> str:
        return f"RowWrite(table={self.table.name}, pk={self.primary_key()})"


def check_row(table: TableSpec, values: Row) -> None:
    """Validate a row against its table before it joins a batch.

    Raises:
        StorageBatchError: If a key column is missing, a column is unknown
            or an INT value is outside the 32-bit range
    """
    unknown = set(values) - set(table.column_names)
    if unknown:
        raise StorageBatchError(
            f"Unknown columns for table '{table.name}': {sorted(unknown)}"
        )
    for col in table.primary_key:
        if values.get(col) is None:
            raise StorageBatchError(
                f"Missing primary key column '{col}' for table '{table.name}'"
            )
    for col in table.columns:
        value = values.get(col.name)
        if col.type != ColumnType.INT or value is None:
            continue
        if not isinstance(value, int) or isinstance(value, bool) or not INT_MIN <= value <= INT_MAX:
            raise StorageBatchError(
                f"Column '{col.name}' of table '{table.name}' needs a 32-bit integer, got {value!r}"
            )


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for wide-column style storage backends.

    The backend provides partitioned tables with clustering order, atomic
    batched writes and streaming partition reads. Connections are
    long-lived and safe for concurrent use by many requests.

    Example:
        >>> backend = SqliteBackend(config.sqlite)
        >>> await backend.connect()
        >>> await backend.apply_batch([RowWrite(DOCUMENTS, row)])
        >>> async for row in backend.scan(DOCUMENTS, {"key": "doc-42"}):
        ...     print(row["version_id"])
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            StorageConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections and other resources."""
        ...

    @abstractmethod
    async def ensure_keyspace(self, name: str, replication_factor: int) -> None:
        """Create the keyspace (namespace) if it does not exist."""
        ...

    @abstractmethod
    async def ensure_table(self, spec: TableSpec) -> None:
        """Create a table with the given layout if it does not exist."""
        ...

    @abstractmethod
    async def apply_batch(self, writes: Sequence[RowWrite]) -> None:
        """Apply a batch of row writes atomically.

        Args:
            writes: Rows to insert; may span several tables and partitions

        Raises:
            StorageConnectionError: If not connected
            StorageTimeoutError: If the batch times out
            StorageBatchError: If the backend rejects the batch
            StorageError: For other failures

        Atomicity:
            Either every row is visible afterwards or none is.
        """
        ...

    @abstractmethod
    def scan(
        self,
        table: TableSpec,
        partition: Row,
        clustering: Row | None = None,
    ) -> AsyncIterator[Row]:
        """Stream the rows of one partition in clustering order.

        Args:
            table: Table layout
            partition: Values for every partition key column
            clustering: Optional equality filter on clustering columns

        Yields:
            Row dicts keyed by column name

        Raises:
            StorageConnectionError: If not connected
            StorageError: On query failure, possibly mid-stream
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_storage_backend(config: ServerConfig) -> StorageBackend:
    """Factory function to create a storage backend from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate StorageBackend implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StorageBackendKind

    if config.storage_backend == StorageBackendKind.SQLITE:
        from .sqlite import SqliteBackend

        return SqliteBackend(config.sqlite)
    elif config.storage_backend == StorageBackendKind.CASSANDRA:
        from .cassandra import CassandraBackend

        return CassandraBackend(config.cassandra)
    elif config.storage_backend == StorageBackendKind.MEMORY:
        from .memory import InMemoryBackend

        return InMemoryBackend()
    else:
        raise ValueError(f"Unsupported storage backend: {config.storage_backend}")
