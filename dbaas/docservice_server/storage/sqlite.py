"""
SQLite storage backend for DocService.

This module emulates partitioned, clustered tables on a single SQLite file
per keyspace:
- The primary key is (partition columns..., clustering columns...) on a
  WITHOUT ROWID table, so a partition is one contiguous index range
- Clustering direction is declared on the primary key and repeated in
  every scan's ORDER BY
- A batch is one IMMEDIATE transaction: committed whole or rolled back

Invariants:
    - One SQLite file per keyspace under data_dir
    - Every blocking call runs in a worker thread (asyncio.to_thread)
    - Each operation uses its own connection; WAL mode lets readers run
      while a batch is being written
    - TIMEUUID values are stored as "<15 hex digit timestamp><uuid hex>"
      so that text order equals time order

How to change safely:
    - Never change the TIMEUUID encoding of an existing database
    - Test with concurrent writers before raising busy_timeout_ms
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..schema.tables import ColumnType, TableSpec, quote_identifier
from .base import (
    Row,
    RowWrite,
    StorageBatchError,
    StorageConnectionError,
    StorageError,
    StorageTimeoutError,
    check_row,
)

logger = logging.getLogger(__name__)

_SQLITE_TYPES = {
    ColumnType.TEXT: "TEXT",
    ColumnType.INT: "INTEGER",
    ColumnType.TIMEUUID: "TEXT",
}


def encode_value(col_type: ColumnType, value: Any) -> Any:
    """Convert a Python value to its SQLite storage form."""
    if value is None:
        return None
    if col_type == ColumnType.TIMEUUID:
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        return f"{value.time:015x}{value.hex}"
    if col_type == ColumnType.INT:
        return int(value)
    return str(value)


def decode_value(col_type: ColumnType, value: Any) -> Any:
    """Convert a stored SQLite value back to its Python form."""
    if value is None:
        return None
    if col_type == ColumnType.TIMEUUID:
        return uuid.UUID(hex=value[15:])
    return value


def render_sqlite_ddl(spec: TableSpec) -> str:
    """Render CREATE TABLE for a table spec."""
    pk = set(spec.primary_key)
    cols = [
        f"{quote_identifier(c.name)} {_SQLITE_TYPES[c.type]}"
        + (" NOT NULL" if c.name in pk else "")
        for c in spec.columns
    ]
    key_parts = [quote_identifier(c) for c in spec.partition_key] + [
        f"{quote_identifier(c)} {spec.order_of(c).value}" for c in spec.clustering_key
    ]
    return (
        f"CREATE TABLE IF NOT EXISTS {quote_identifier(spec.name)} (\n    "
        + ",\n    ".join(cols)
        + f",\n    PRIMARY KEY ({', '.join(key_parts)})\n) WITHOUT ROWID"
    )


def _wrap_error(e: sqlite3.Error, action: str) -> StorageError:
    if isinstance(e, sqlite3.OperationalError) and "locked" in str(e).lower():
        return StorageTimeoutError(f"{action} timed out: {e}")
    if isinstance(e, (sqlite3.IntegrityError, sqlite3.DataError)):
        return StorageBatchError(f"{action} rejected: {e}")
    return StorageError(f"{action} failed: {e}")


class SqliteBackend:
    """SQLite implementation of StorageBackend.

    Attributes:
        config: SqliteConfig with data_dir and connection tuning
        keyspace: Current keyspace, set by ensure_keyspace()

    Thread safety:
        Each operation opens its own connection in a worker thread.
        SQLite serializes writers; busy_timeout_ms bounds the wait.

    Example:
        >>> backend = SqliteBackend(SqliteConfig(data_dir="/var/lib/docservice"))
        >>> await backend.connect()
        >>> await backend.ensure_keyspace("docservice", 3)
        >>> await backend.ensure_table(DOCUMENTS)
    """

    def __init__(self, config: Any) -> None:
        """Initialize the SQLite backend.

        Args:
            config: SqliteConfig instance
        """
        self.config = config
        self.keyspace: str | None = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _db_path(self) -> Path:
        if self.keyspace is None:
            raise StorageConnectionError("No keyspace selected; call ensure_keyspace() first")
        safe = "".join(c for c in self.keyspace if c.isalnum() or c in "-_")
        return Path(self.config.data_dir) / f"{safe}.db"

    def _open_connection(self) -> sqlite3.Connection:
        """Open a configured connection to the keyspace database (blocking).

        Returns:
            SQLite connection (autocommit, explicit transactions)
        """
        if not self._connected:
            raise StorageConnectionError("Not connected")

        conn = sqlite3.connect(
            str(self._db_path()),
            timeout=self.config.busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.config.busy_timeout_ms}")
            if self.config.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
        except Exception:
            conn.close()
            raise
        return conn

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Connection for use inside a worker thread; closed on exit."""
        conn = self._open_connection()
        try:
            yield conn
        finally:
            conn.close()

    async def connect(self) -> None:
        """Ensure the data directory is usable.

        Raises:
            StorageConnectionError: If data_dir cannot be created
        """
        if self._connected:
            return
        try:
            await asyncio.to_thread(
                Path(self.config.data_dir).mkdir, parents=True, exist_ok=True
            )
        except OSError as e:
            raise StorageConnectionError(
                f"Cannot use data directory {self.config.data_dir}: {e}"
            ) from e
        self._connected = True
        logger.info("SQLite backend connected", extra={"data_dir": self.config.data_dir})

    async def close(self) -> None:
        self._connected = False
        logger.info("SQLite backend closed")

    async def ensure_keyspace(self, name: str, replication_factor: int) -> None:
        """Select (and create) the keyspace database file.

        SQLite has no replication; replication_factor is ignored.
        """
        self.keyspace = name

        def _create() -> None:
            with self._get_connection() as conn:
                conn.execute("SELECT 1")

        try:
            await asyncio.to_thread(_create)
        except sqlite3.Error as e:
            raise _wrap_error(e, f"Create keyspace {name}") from e
        logger.info("Keyspace ready", extra={"keyspace": name, "path": str(self._db_path())})

    async def ensure_table(self, spec: TableSpec) -> None:
        """Create the table if missing and verify its primary key layout.

        Raises:
            StorageError: If an existing table has a different primary key
        """

        def _create() -> list[str]:
            with self._get_connection() as conn:
                conn.execute(render_sqlite_ddl(spec))
                info = conn.execute(
                    f"PRAGMA table_info({quote_identifier(spec.name)})"
                ).fetchall()
            # table_info rows: (cid, name, type, notnull, dflt_value, pk)
            return [row[1] for row in sorted((r for r in info if r[5]), key=lambda r: r[5])]

        try:
            existing_pk = await asyncio.to_thread(_create)
        except sqlite3.Error as e:
            raise _wrap_error(e, f"Create table {spec.name}") from e

        if tuple(existing_pk) != spec.primary_key:
            raise StorageError(
                f"Table '{spec.name}' has primary key {existing_pk}, "
                f"expected {list(spec.primary_key)}"
            )
        logger.debug("Table ready", extra={"table": spec.name})

    async def apply_batch(self, writes: Sequence[RowWrite]) -> None:
        """Apply all writes in one IMMEDIATE transaction.

        Raises:
            StorageBatchError: If a row is invalid or rejected
            StorageTimeoutError: If the database stays locked
            StorageError: For other SQLite failures
        """
        statements: list[tuple[str, tuple[Any, ...]]] = []
        for write in writes:
            check_row(write.table, write.values)
            names = [c for c in write.table.column_names if c in write.values]
            sql = (
                f"INSERT OR REPLACE INTO {quote_identifier(write.table.name)} "
                f"({', '.join(quote_identifier(n) for n in names)}) "
                f"VALUES ({', '.join('?' for _ in names)})"
            )
            params = tuple(
                encode_value(write.table.column(n).type, write.values[n]) for n in names
            )
            statements.append((sql, params))

        def _apply() -> None:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for sql, params in statements:
                        conn.execute(sql, params)
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        try:
            await asyncio.to_thread(_apply)
        except sqlite3.Error as e:
            raise _wrap_error(e, "Batch") from e
        except StorageError:
            raise
        except (OverflowError, ValueError, TypeError) as e:
            # Parameter binding failures; the transaction was rolled back
            raise StorageBatchError(f"Batch rejected: {e}") from e

        logger.debug("Batch committed", extra={"rows": len(statements)})

    async def scan(
        self,
        table: TableSpec,
        partition: Row,
        clustering: Row | None = None,
    ) -> AsyncIterator[Row]:
        """Stream one partition in clustering order, fetch_size rows at a time."""
        filters = dict(partition)
        filters.update(clustering or {})
        where = " AND ".join(f"{quote_identifier(c)} = ?" for c in filters)
        params = tuple(encode_value(table.column(c).type, v) for c, v in filters.items())

        sql = f"SELECT * FROM {quote_identifier(table.name)} WHERE {where}"
        if table.clustering_key:
            sql += " ORDER BY " + ", ".join(
                f"{quote_identifier(c)} {table.order_of(c).value}" for c in table.clustering_key
            )

        fetch_size = self.config.fetch_size
        try:
            conn = await asyncio.to_thread(self._open_connection)
        except sqlite3.Error as e:
            raise _wrap_error(e, f"Scan of {table.name}") from e

        # aclose() from a consumer that stops early also runs the close
        try:
            cursor = await asyncio.to_thread(conn.execute, sql, params)
            names = [d[0] for d in cursor.description]
            types = [table.column(n).type for n in names]
            while True:
                batch = await asyncio.to_thread(cursor.fetchmany, fetch_size)
                if not batch:
                    break
                for raw in batch:
                    yield {n: decode_value(t, v) for n, t, v in zip(names, types, raw)}
        except sqlite3.Error as e:
            raise _wrap_error(e, f"Scan of {table.name}") from e
        finally:
            await asyncio.to_thread(conn.close)
