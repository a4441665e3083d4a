"""
Cassandra storage backend for DocService.

This module runs DocService against Apache Cassandra (or ScyllaDB) through
the DataStax cassandra-driver:
- Keyspace and tables are created with the CQL rendered in schema/tables.py
- A batch is a LOGGED batch, so rows spanning the documents, links and
  references partitions become visible together or not at all
- Scans use driver paging; the next page is requested only after the
  consumer drained the previous one

Invariants:
    - Driver callbacks run on driver threads; results are handed to the
      event loop with call_soon_threadsafe only
    - Prepared statements are cached per CQL text for the session lifetime
    - Timeouts come from the driver's request_timeout; none are added here

How to change safely:
    - Test against a real multi-node cluster before changing batch type
    - Keep the column set in sync with schema/tables.py
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from ..schema.tables import TableSpec, quote_identifier, render_cql, render_keyspace_cql
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

# Try to import cassandra-driver, provide helpful message if not installed
try:
    from cassandra import (
        DriverException,
        InvalidRequest,
        OperationTimedOut,
        ReadTimeout,
        Unavailable,
        WriteTimeout,
    )
    from cassandra.auth import PlainTextAuthProvider
    from cassandra.cluster import Cluster, NoHostAvailable
    from cassandra.query import BatchStatement, BatchType, dict_factory

    _DRIVER_ERRORS = (DriverException, NoHostAvailable)
    CASSANDRA_AVAILABLE = True
except ImportError:
    CASSANDRA_AVAILABLE = False
    Cluster = None


def _wrap_error(e: Exception, action: str) -> StorageError:
    if isinstance(e, NoHostAvailable):
        return StorageConnectionError(f"{action}: no host available: {e}")
    if isinstance(e, (OperationTimedOut, ReadTimeout, WriteTimeout)):
        return StorageTimeoutError(f"{action} timed out: {e}")
    if isinstance(e, (InvalidRequest, Unavailable)):
        return StorageBatchError(f"{action} rejected: {e}")
    return StorageError(f"{action} failed: {e}")


class CassandraBackend:
    """Cassandra implementation of StorageBackend.

    Attributes:
        config: CassandraConfig with contact points and credentials
        keyspace: Current keyspace, set by ensure_keyspace()

    Example:
        >>> backend = CassandraBackend(CassandraConfig(contact_points="localhost"))
        >>> await backend.connect()
        >>> await backend.ensure_keyspace("docservice", 3)
    """

    def __init__(self, config: Any) -> None:
        """Initialize the Cassandra backend.

        Args:
            config: CassandraConfig instance

        Raises:
            ImportError: If cassandra-driver is not installed
        """
        if not CASSANDRA_AVAILABLE:
            raise ImportError(
                "cassandra-driver is required for the Cassandra backend. "
                "Install with: pip install cassandra-driver"
            )

        self.config = config
        self.keyspace: str | None = None
        self._cluster: Cluster | None = None
        self._session: Any = None
        self._prepared: dict[str, Any] = {}

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.is_shutdown

    async def connect(self) -> None:
        """Connect to the cluster (no keyspace selected yet).

        Raises:
            StorageConnectionError: If no contact point is reachable
        """
        if self.is_connected:
            return

        auth_provider = None
        if self.config.username:
            auth_provider = PlainTextAuthProvider(
                username=self.config.username,
                password=self.config.password,
            )

        self._cluster = Cluster(
            contact_points=self.config.contact_point_list(),
            port=self.config.port,
            auth_provider=auth_provider,
        )
        try:
            self._session = await asyncio.to_thread(self._cluster.connect)
        except _DRIVER_ERRORS as e:
            self._cluster.shutdown()
            self._cluster = None
            raise StorageConnectionError(f"Failed to connect to Cassandra: {e}") from e

        self._session.row_factory = dict_factory
        self._session.default_timeout = self.config.request_timeout
        logger.info(
            "Connected to Cassandra",
            extra={"contact_points": self.config.contact_points, "port": self.config.port},
        )

    async def close(self) -> None:
        if self._cluster is not None:
            await asyncio.to_thread(self._cluster.shutdown)
        self._cluster = None
        self._session = None
        self._prepared.clear()
        logger.info("Cassandra connection closed")

    def _require_session(self) -> Any:
        if not self.is_connected:
            raise StorageConnectionError("Not connected")
        return self._session

    def _table_ref(self, name: str) -> str:
        if self.keyspace is None:
            raise StorageConnectionError("No keyspace selected; call ensure_keyspace() first")
        return f"{quote_identifier(self.keyspace)}.{quote_identifier(name)}"

    async def _prepare(self, cql: str) -> Any:
        prepared = self._prepared.get(cql)
        if prepared is None:
            prepared = await asyncio.to_thread(self._require_session().prepare, cql)
            self._prepared[cql] = prepared
        return prepared

    async def _execute(self, statement: Any, params: Any = None) -> list[Row]:
        """Run a statement and await its first page on the event loop."""
        session = self._require_session()
        loop = asyncio.get_running_loop()
        result: asyncio.Future[list[Row]] = loop.create_future()

        def on_success(rows: Any) -> None:
            loop.call_soon_threadsafe(_resolve, result, list(rows or []), None)

        def on_error(exc: Exception) -> None:
            loop.call_soon_threadsafe(_resolve, result, None, exc)

        future = session.execute_async(statement, params)
        future.add_callbacks(callback=on_success, errback=on_error)
        return await result

    async def ensure_keyspace(self, name: str, replication_factor: int) -> None:
        """Create the keyspace if missing and make it the session keyspace."""
        try:
            await self._execute(render_keyspace_cql(name, replication_factor))
            await asyncio.to_thread(self._require_session().set_keyspace, name)
        except _DRIVER_ERRORS as e:
            raise _wrap_error(e, f"Create keyspace {name}") from e
        self.keyspace = name
        logger.info("Keyspace ready", extra={"keyspace": name})

    async def ensure_table(self, spec: TableSpec) -> None:
        """Create the table if missing and verify its primary key layout."""
        if self.keyspace is None:
            raise StorageConnectionError("No keyspace selected; call ensure_keyspace() first")
        try:
            await self._execute(render_cql(spec, self.keyspace))
        except _DRIVER_ERRORS as e:
            raise _wrap_error(e, f"Create table {spec.name}") from e

        keyspace_meta = self._cluster.metadata.keyspaces.get(self.keyspace)
        if keyspace_meta is None:
            raise StorageError(f"Keyspace '{self.keyspace}' not visible in cluster metadata")
        meta = keyspace_meta.tables.get(spec.name)
        if meta is None:
            raise StorageError(f"Table '{spec.name}' not visible in cluster metadata")
        existing = tuple(c.name for c in meta.primary_key)
        if existing != spec.primary_key:
            raise StorageError(
                f"Table '{spec.name}' has primary key {list(existing)}, "
                f"expected {list(spec.primary_key)}"
            )
        logger.debug("Table ready", extra={"table": spec.name})

    async def apply_batch(self, writes: Sequence[RowWrite]) -> None:
        """Apply all writes as one LOGGED batch."""
        batch = BatchStatement(batch_type=BatchType.LOGGED)
        for write in writes:
            check_row(write.table, write.values)
            names = [c for c in write.table.column_names if c in write.values]
            cql = (
                f"INSERT INTO {self._table_ref(write.table.name)} "
                f"({', '.join(quote_identifier(n) for n in names)}) "
                f"VALUES ({', '.join('?' for _ in names)})"
            )
            try:
                prepared = await self._prepare(cql)
            except _DRIVER_ERRORS as e:
                raise _wrap_error(e, "Prepare insert") from e
            try:
                batch.add(prepared, tuple(write.values[n] for n in names))
            except (TypeError, ValueError, OverflowError) as e:
                raise StorageBatchError(f"Batch rejected: {e}") from e

        try:
            await self._execute(batch)
        except _DRIVER_ERRORS as e:
            raise _wrap_error(e, "Batch") from e
        logger.debug("Batch applied", extra={"rows": len(writes)})

    async def scan(
        self,
        table: TableSpec,
        partition: Row,
        clustering: Row | None = None,
    ) -> AsyncIterator[Row]:
        """Stream one partition page by page in clustering order."""
        filters = dict(partition)
        filters.update(clustering or {})
        where = " AND ".join(f"{quote_identifier(c)} = ?" for c in filters)
        cql = f"SELECT * FROM {self._table_ref(table.name)} WHERE {where}"

        try:
            prepared = await self._prepare(cql)
        except _DRIVER_ERRORS as e:
            raise _wrap_error(e, f"Prepare scan of {table.name}") from e

        bound = prepared.bind(tuple(filters.values()))
        bound.fetch_size = self.config.fetch_size

        loop = asyncio.get_running_loop()
        pages: asyncio.Queue[tuple[list[Row] | None, Exception | None]] = asyncio.Queue()

        def on_page(rows: Any) -> None:
            loop.call_soon_threadsafe(pages.put_nowait, (list(rows or []), None))

        def on_error(exc: Exception) -> None:
            loop.call_soon_threadsafe(pages.put_nowait, (None, exc))

        future = self._require_session().execute_async(bound)
        future.add_callbacks(callback=on_page, errback=on_error)

        while True:
            rows, exc = await pages.get()
            if exc is not None:
                raise _wrap_error(exc, f"Scan of {table.name}") from exc
            for row in rows or []:
                yield dict(row)
            if not future.has_more_pages:
                break
            future.start_fetching_next_page()


def _resolve(
    result: asyncio.Future[list[Row]],
    rows: list[Row] | None,
    exc: Exception | None,
) -> None:
    if result.done():
        return
    if exc is not None:
        result.set_exception(exc)
    else:
        result.set_result(rows or [])
