"""
Schema manager for DocService.

Ensures the keyspace and the documents, links and references tables exist
with the partition/cluster layout declared in tables.py.

Invariants:
    - ensure_schema() is idempotent and safe on every process start
    - Any backend failure becomes SchemaError, which is fatal to startup
    - The keyspace is ensured before any table

How to change safely:
    - Add tables to ALL_TABLES; never reorder key columns of existing ones
"""

from __future__ import annotations

import logging

from ..errors import SchemaError
from ..storage.base import StorageBackend, StorageError
from .tables import ALL_TABLES, DEFAULT_KEYSPACE, DEFAULT_REPLICATION_FACTOR, TableSpec

logger = logging.getLogger(__name__)


class SchemaManager:
    """Declares the DocService keyspace and tables on a storage backend.

    Example:
        >>> manager = SchemaManager(backend, keyspace="docservice")
        >>> await manager.ensure_schema()
    """

    def __init__(
        self,
        backend: StorageBackend,
        keyspace: str = DEFAULT_KEYSPACE,
        replication_factor: int = DEFAULT_REPLICATION_FACTOR,
        tables: tuple[TableSpec, ...] = ALL_TABLES,
    ) -> None:
        self.backend = backend
        self.keyspace = keyspace
        self.replication_factor = replication_factor
        self.tables = tables

    async def ensure_schema(self) -> None:
        """Create the keyspace and tables if they don't exist.

        Raises:
            SchemaError: If the backend is unreachable or rejects the DDL
        """
        logger.info(
            "Ensuring schema",
            extra={"keyspace": self.keyspace, "tables": [t.name for t in self.tables]},
        )

        try:
            await self.backend.ensure_keyspace(self.keyspace, self.replication_factor)
        except StorageError as e:
            logger.error(f"Keyspace creation failed: {e}")
            raise SchemaError(
                f"Could not confirm keyspace '{self.keyspace}': {e}", cause=e
            ) from e

        for spec in self.tables:
            try:
                await self.backend.ensure_table(spec)
            except StorageError as e:
                logger.error(f"Table creation failed: {e}", extra={"table": spec.name})
                raise SchemaError(
                    f"Could not confirm table '{spec.name}': {e}", table=spec.name, cause=e
                ) from e

        logger.info("Schema confirmed", extra={"keyspace": self.keyspace})
