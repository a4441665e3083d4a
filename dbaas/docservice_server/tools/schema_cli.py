"""
Schema CLI tool for DocService.

This tool manages the storage layout:
- show: Print the CQL DDL for the keyspace and tables
- ensure: Connect with the configured backend and create missing tables

Usage:
    docservice-schema show > schema.cql
    docservice-schema show --format json
    docservice-schema ensure

Invariants:
    - ensure exits non-zero when the schema cannot be confirmed
    - show is deterministic and works offline

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..config import ServerConfig
from ..errors import SchemaError
from ..schema.manager import SchemaManager
from ..schema.tables import ALL_TABLES, TableSpec, render_cql, render_keyspace_cql
from ..storage import StorageError, create_storage_backend

logger = logging.getLogger(__name__)


class SchemaCLI:
    """CLI tool for schema management.

    Example:
        >>> cli = SchemaCLI()
        >>> print(cli.show("docservice", 3))
    """

    def __init__(self, tables: tuple[TableSpec, ...] = ALL_TABLES) -> None:
        self.tables = tables

    def show(self, keyspace: str, replication_factor: int) -> str:
        """Render CQL DDL for the keyspace and all tables."""
        statements = [render_keyspace_cql(keyspace, replication_factor)]
        statements.extend(render_cql(spec, keyspace) for spec in self.tables)
        return ";\n\n".join(statements) + ";\n"

    def describe(self) -> list[dict[str, Any]]:
        """Describe the table layouts as JSON-serializable dicts."""
        return [
            {
                "table": spec.name,
                "columns": {c.name: c.type.value for c in spec.columns},
                "partition_key": list(spec.partition_key),
                "clustering_key": [
                    {"column": c, "order": spec.order_of(c).value} for c in spec.clustering_key
                ],
            }
            for spec in self.tables
        ]

    async def ensure(self, config: ServerConfig) -> None:
        """Create keyspace and tables with the configured backend.

        Raises:
            SchemaError: If the schema cannot be confirmed
        """
        backend = create_storage_backend(config)
        try:
            await backend.connect()
        except StorageError as e:
            raise SchemaError(f"Storage unreachable: {e}", cause=e) from e
        try:
            await SchemaManager(
                backend,
                keyspace=config.schema.keyspace,
                replication_factor=config.schema.replication_factor,
                tables=self.tables,
            ).ensure_schema()
        finally:
            await backend.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for schema tool."""
    parser = argparse.ArgumentParser(description="DocService schema management tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # show command
    show_parser = subparsers.add_parser("show", help="Print keyspace and table DDL")
    show_parser.add_argument("--keyspace", help="Keyspace name (default: from environment)")
    show_parser.add_argument(
        "--format", choices=["cql", "json"], default="cql", help="Output format"
    )

    # ensure command
    subparsers.add_parser("ensure", help="Create keyspace and tables with the configured backend")

    args = parser.parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    cli = SchemaCLI()

    if args.command == "show":
        if args.format == "json":
            print(json.dumps(cli.describe(), indent=2, sort_keys=True))
        else:
            keyspace = args.keyspace or config.schema.keyspace
            print(cli.show(keyspace, config.schema.replication_factor), end="")

    elif args.command == "ensure":
        logging.basicConfig(level=logging.INFO)
        try:
            asyncio.run(cli.ensure(config))
        except SchemaError as e:
            print(f"Schema could not be confirmed: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Schema confirmed in keyspace '{config.schema.keyspace}'")


if __name__ == "__main__":
    main()
