"""
DocService Server - versioned HTML document storage.

This package stores versioned HTML documents with two collections attached
to every version: client-identified links and references pointing into
those links. It is built on:
- A time-ordered version id (TimeUUID) minted per submission
- Three partitioned tables: documents, links, references
- One atomic batch per submission across all three tables
- Streaming partition scans folded into JSON-shaped results

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────┐
    │   Client    │────▶│    HTTP     │────▶│    DocService    │
    │             │     │  (aiohttp)  │     │ writer / readers │
    └─────────────┘     └─────────────┘     └────────┬─────────┘
                                                     │
                                                     ▼
                        ┌─────────────────────────────────────────┐
                        │     StorageBackend (SQLite/Cassandra)   │
                        └─────────────────────────────────────────┘
                              │              │               │
                              ▼              ▼               ▼
                        ┌──────────┐   ┌──────────┐   ┌────────────┐
                        │documents │   │  links   │   │ references │
                        │  (key)   │   │(key, id) │   │ (key, id)  │
                        └──────────┘   └──────────┘   └────────────┘

Invariants:
    - Stored versions are immutable; there is no update or delete path
    - All rows of one submission become visible together or not at all
    - Version ids are globally unique and ordered by creation time
    - Links and references belong to exactly one (key, version_id)

How to change safely:
    - Partition and clustering keys are part of the on-disk contract
    - Response shapes are part of the client contract

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
