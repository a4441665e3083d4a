"""
CLI tools for DocService administration.

This module provides command-line tools for:
- schema: Print and ensure the keyspace/table layout

Invariants:
    - Operations are idempotent
"""

from .schema_cli import SchemaCLI

__all__ = ["SchemaCLI"]
