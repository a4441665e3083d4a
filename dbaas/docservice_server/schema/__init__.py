"""
Schema module for DocService.

This module declares the storage layout and ensures it exists:
- TableSpec/Column/ColumnType: declarative partition + clustering layout
- DOCUMENTS, LINKS, REFERENCES: the three DocService tables
- manager.SchemaManager: idempotent keyspace/table creation at startup
- render_cql/render_keyspace_cql: CQL DDL for Cassandra and the schema CLI

Invariants:
    - Partition and clustering keys of a table never change once deployed
    - The server never serves requests before ensure_schema() succeeded
"""

from .tables import (
    ALL_TABLES,
    DEFAULT_KEYSPACE,
    DEFAULT_REPLICATION_FACTOR,
    DOCUMENTS,
    LINKS,
    REFERENCES,
    ClusteringOrder,
    Column,
    ColumnType,
    TableSpec,
    render_cql,
    render_keyspace_cql,
)

__all__ = [
    "TableSpec",
    "Column",
    "ColumnType",
    "ClusteringOrder",
    "DOCUMENTS",
    "LINKS",
    "REFERENCES",
    "ALL_TABLES",
    "DEFAULT_KEYSPACE",
    "DEFAULT_REPLICATION_FACTOR",
    "render_cql",
    "render_keyspace_cql",
]
