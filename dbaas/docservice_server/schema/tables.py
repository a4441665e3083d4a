"""
Declarative table layout for DocService.

Tables are described once here and rendered by each storage backend:
SQLite DDL in storage/sqlite.py, CQL DDL below (used by the Cassandra
backend and the schema CLI).

Table schema:
    documents:
        - key TEXT (partition)
        - version_id TIMEUUID (clustering, DESC)
        - html TEXT

    links:
        - key TEXT, version_id TIMEUUID (composite partition)
        - link_id INT (clustering, ASC)
        - title TEXT
        - uri TEXT

    references:
        - key TEXT, version_id TIMEUUID (composite partition)
        - link_id INT (clustering, ASC)
        - anchor TEXT
        - position INT

Design decisions:
    documents is partitioned by key alone so that all versions of a key are
    one pre-sorted partition scan, newest first. links and references are
    partitioned per version so one version's collection is a single
    partition; listing them across all versions of a key would fan out and
    is not supported.

How to change safely:
    - Never change partition or clustering keys of an existing table;
      create a new table and backfill instead
    - New columns must be nullable so old rows stay readable
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

DEFAULT_KEYSPACE = "docservice"
DEFAULT_REPLICATION_FACTOR = 3

# Range of INT columns (CQL int is a signed 32-bit integer)
INT_MIN = -(2**31)
INT_MAX = 2**31 - 1


class ColumnType(Enum):
    """Column value types understood by every backend."""

    TEXT = "text"
    INT = "int"
    TIMEUUID = "timeuuid"


class ClusteringOrder(Enum):
    """Sort direction of a clustering column within its partition."""

    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class Column:
    """A typed column.

    Attributes:
        name: Column name
        type: Value type
    """

    name: str
    type: ColumnType


@dataclass(frozen=True)
class TableSpec:
    """Partition/cluster layout of one table.

    Attributes:
        name: Table name
        columns: All columns, key columns included
        partition_key: Columns whose values select the partition
        clustering_key: Columns ordering rows inside a partition
        clustering_order: Sort direction per clustering column

    The primary key is partition_key + clustering_key. Writing a row whose
    primary key already exists replaces the stored row.
    """

    name: str
    columns: tuple[Column, ...]
    partition_key: tuple[str, ...]
    clustering_key: tuple[str, ...] = ()
    clustering_order: tuple[ClusteringOrder, ...] = ()

    def __post_init__(self) -> None:
        names = self.column_names
        for col in self.partition_key + self.clustering_key:
            if col not in names:
                raise ValueError(f"Key column '{col}' not declared in table '{self.name}'")
        if self.clustering_order and len(self.clustering_order) != len(self.clustering_key):
            raise ValueError(
                f"Table '{self.name}' needs one clustering order per clustering column"
            )

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    @property
    def primary_key(self) -> tuple[str, ...]:
        return self.partition_key + self.clustering_key

    @property
    def value_columns(self) -> tuple[str, ...]:
        """Columns that are not part of the primary key."""
        pk = set(self.primary_key)
        return tuple(c.name for c in self.columns if c.name not in pk)

    def column(self, name: str) -> Column:
        for c in self.columns:
            if c.name == name:
                return c
        raise KeyError(f"Unknown column '{name}' in table '{self.name}'")

    def order_of(self, name: str) -> ClusteringOrder:
        """Sort direction of a clustering column (ASC when undeclared)."""
        if not self.clustering_order:
            return ClusteringOrder.ASC
        return self.clustering_order[self.clustering_key.index(name)]


DOCUMENTS = TableSpec(
    name="documents",
    columns=(
        Column("key", ColumnType.TEXT),
        Column("version_id", ColumnType.TIMEUUID),
        Column("html", ColumnType.TEXT),
    ),
    partition_key=("key",),
    clustering_key=("version_id",),
    clustering_order=(ClusteringOrder.DESC,),
)

LINKS = TableSpec(
    name="links",
    columns=(
        Column("key", ColumnType.TEXT),
        Column("version_id", ColumnType.TIMEUUID),
        Column("link_id", ColumnType.INT),
        Column("title", ColumnType.TEXT),
        Column("uri", ColumnType.TEXT),
    ),
    partition_key=("key", "version_id"),
    clustering_key=("link_id",),
    clustering_order=(ClusteringOrder.ASC,),
)

REFERENCES = TableSpec(
    name="references",
    columns=(
        Column("key", ColumnType.TEXT),
        Column("version_id", ColumnType.TIMEUUID),
        Column("link_id", ColumnType.INT),
        Column("anchor", ColumnType.TEXT),
        Column("position", ColumnType.INT),
    ),
    partition_key=("key", "version_id"),
    clustering_key=("link_id",),
    clustering_order=(ClusteringOrder.ASC,),
)

ALL_TABLES: tuple[TableSpec, ...] = (DOCUMENTS, LINKS, REFERENCES)


_CQL_TYPES = {
    ColumnType.TEXT: "varchar",
    ColumnType.INT: "int",
    ColumnType.TIMEUUID: "timeuuid",
}


def quote_identifier(name: str) -> str:
    """Double-quote an identifier (``references`` and ``key`` are keywords)."""
    return '"' + name.replace('"', '""') + '"'


def render_keyspace_cql(
    keyspace: str = DEFAULT_KEYSPACE,
    replication_factor: int = DEFAULT_REPLICATION_FACTOR,
) -> str:
    """Render the CREATE KEYSPACE statement."""
    return (
        f"CREATE KEYSPACE IF NOT EXISTS {quote_identifier(keyspace)} "
        f"WITH replication = {{'class': 'SimpleStrategy', "
        f"'replication_factor': {replication_factor}}}"
    )


def render_cql(spec: TableSpec, keyspace: str = DEFAULT_KEYSPACE) -> str:
    """Render the CREATE TABLE statement for a table spec.

    Args:
        spec: Table layout
        keyspace: Keyspace the table lives in

    Returns:
        CQL DDL string
    """
    cols = ",\n".join(
        f"    {quote_identifier(c.name)} {_CQL_TYPES[c.type]}" for c in spec.columns
    )

    partition = ", ".join(quote_identifier(c) for c in spec.partition_key)
    if len(spec.partition_key) > 1:
        partition = f"({partition})"
    pk_parts = [partition] + [quote_identifier(c) for c in spec.clustering_key]

    ddl = (
        f"CREATE TABLE IF NOT EXISTS {quote_identifier(keyspace)}.{quote_identifier(spec.name)} (\n"
        f"{cols},\n"
        f"    PRIMARY KEY ({', '.join(pk_parts)})\n"
        f")"
    )
    if spec.clustering_key:
        order = ", ".join(
            f"{quote_identifier(c)} {spec.order_of(c).value}" for c in spec.clustering_key
        )
        ddl += f" WITH CLUSTERING ORDER BY ({order})"
    return ddl
