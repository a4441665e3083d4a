"""
Read aggregators for DocService.

Each read issues exactly one partition scan and folds the streamed rows
into an immutable result:
- get_version: point lookup of (key, version_id) in documents
- get_all_versions: whole documents partition of a key, newest first
- get_links: links partition of (key, version_id)
- get_references: references partition of (key, version_id)

Invariants:
    - Rows are folded in arrival order; clustering order is never redone here
    - The result is built only after the row stream ended
    - Any storage failure, including mid-stream, raises StorageReadError and
      the partial accumulation is dropped
    - Empty history/links/references are valid results; only the point
      lookup raises NotFound
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import TypeVar

from ..errors import NotFound, StorageReadError
from ..ids import parse_version_id
from ..schema.tables import DOCUMENTS, LINKS, REFERENCES, TableSpec
from ..storage.base import Row, StorageBackend, StorageError
from .models import (
    DocumentHistory,
    DocumentVersion,
    Link,
    LinkCollection,
    Reference,
    ReferenceCollection,
    VersionEntry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def fold_version_entry(acc: list[VersionEntry], row: Row) -> list[VersionEntry]:
    acc.append(VersionEntry(version_id=row["version_id"], html=row["html"]))
    return acc


def fold_link(acc: list[Link], row: Row) -> list[Link]:
    acc.append(Link(id=row["link_id"], title=row["title"], uri=row["uri"]))
    return acc


def fold_reference(acc: list[Reference], row: Row) -> list[Reference]:
    acc.append(Reference(anchor=row["anchor"], position=row["position"], link=row["link_id"]))
    return acc


class DocumentReader:
    """Answers the four DocService read queries.

    Attributes:
        backend: Shared storage backend handle

    Example:
        >>> reader = DocumentReader(backend)
        >>> history = await reader.get_all_versions("doc-42")
        >>> [d.version_id for d in history.docs]  # newest first
    """

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend

    async def _fold(
        self,
        table: TableSpec,
        partition: Row,
        fold: Callable[[T, Row], T],
        initial: T,
        clustering: Row | None = None,
    ) -> T:
        """Consume one scan with a fold function.

        Raises:
            StorageReadError: If the query or its stream fails
        """
        acc = initial
        rows = 0
        try:
            async for row in self.backend.scan(table, partition, clustering):
                acc = fold(acc, row)
                rows += 1
        except StorageError as e:
            logger.error(
                f"Scan of {table.name} failed after {rows} rows: {e}",
                extra={"table": table.name},
            )
            raise StorageReadError(
                f"Failed to read {table.name}: {e}", table=table.name, cause=e
            ) from e

        logger.debug("Scan complete", extra={"table": table.name, "rows": rows})
        return acc

    async def get_version(self, key: str, version_id: str | uuid.UUID) -> DocumentVersion:
        """Get the HTML of one document version.

        Raises:
            InvalidVersionId: If version_id is not a TimeUUID
            NotFound: If no such version exists
            StorageReadError: On storage failure
        """
        vid = parse_version_id(version_id)

        def take_html(acc: str | None, row: Row) -> str | None:
            return row["html"] if acc is None else acc

        html: str | None = await self._fold(
            DOCUMENTS,
            {"key": key},
            take_html,
            None,
            clustering={"version_id": vid},
        )
        if not html:
            raise NotFound(key, str(vid))
        return DocumentVersion(key=key, version_id=vid, html=html)

    async def get_all_versions(self, key: str) -> DocumentHistory:
        """Get every version of a key, newest first (empty if none).

        Raises:
            StorageReadError: On storage failure
        """
        docs: list[VersionEntry] = await self._fold(
            DOCUMENTS, {"key": key}, fold_version_entry, []
        )
        return DocumentHistory(key=key, docs=tuple(docs))

    async def get_links(self, key: str, version_id: str | uuid.UUID) -> LinkCollection:
        """Get all links of one version (empty if none).

        Raises:
            InvalidVersionId: If version_id is not a TimeUUID
            StorageReadError: On storage failure
        """
        vid = parse_version_id(version_id)
        links: list[Link] = await self._fold(
            LINKS, {"key": key, "version_id": vid}, fold_link, []
        )
        return LinkCollection(key=key, version_id=vid, links=tuple(links))

    async def get_references(self, key: str, version_id: str | uuid.UUID) -> ReferenceCollection:
        """Get all references of one version (empty if none).

        Raises:
            InvalidVersionId: If version_id is not a TimeUUID
            StorageReadError: On storage failure
        """
        vid = parse_version_id(version_id)
        refs: list[Reference] = await self._fold(
            REFERENCES, {"key": key, "version_id": vid}, fold_reference, []
        )
        return ReferenceCollection(key=key, version_id=vid, references=tuple(refs))
