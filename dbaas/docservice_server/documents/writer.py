"""
Write coordinator for DocService.

Turns one document submission into one atomic batch spanning the
documents, links and references tables.

Invariants:
    - Validation happens before the version id is minted and before any
      storage call; an invalid submission leaves no trace
    - One submission is exactly one apply_batch() call
    - A failed batch surfaces as StorageWriteError; no row of it is visible
    - Duplicate link ids in one submission are not rejected; the last row
      with a given (key, version_id, link_id) wins at the storage layer
    - References are stored without checking their link against the links

How to change safely:
    - Never split the batch; readers rely on all-or-nothing visibility
    - Keep row column names in sync with schema/tables.py
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Any

from ..errors import InvalidDocument, StorageWriteError
from ..ids import VersionIdGenerator
from ..schema.tables import DOCUMENTS, LINKS, REFERENCES
from ..storage.base import RowWrite, StorageBackend, StorageError
from .models import (
    DocumentSubmission,
    SubmitResult,
    coerce_links,
    coerce_references,
    require_html,
)

logger = logging.getLogger(__name__)


def build_batch(
    key: str,
    version_id: uuid.UUID,
    submission: DocumentSubmission,
) -> list[RowWrite]:
    """Build the row writes for one submission.

    Returns:
        The document row followed by one row per link and per reference,
        in submission order
    """
    writes = [
        RowWrite(DOCUMENTS, {"key": key, "version_id": version_id, "html": submission.html})
    ]
    for link in submission.links:
        writes.append(
            RowWrite(
                LINKS,
                {
                    "key": key,
                    "version_id": version_id,
                    "link_id": link.id,
                    "title": link.title,
                    "uri": link.uri,
                },
            )
        )
    for ref in submission.references:
        writes.append(
            RowWrite(
                REFERENCES,
                {
                    "key": key,
                    "version_id": version_id,
                    "link_id": ref.link,
                    "anchor": ref.anchor,
                    "position": ref.position,
                },
            )
        )
    return writes


class WriteCoordinator:
    """Stores new document versions.

    Attributes:
        backend: Shared storage backend handle
        generator: Version id generator

    Example:
        >>> writer = WriteCoordinator(backend)
        >>> result = await writer.submit("doc-42", "<p>hi</p>",
        ...     links=[{"id": 1, "title": "A", "uri": "http://a"}])
        >>> result.to_dict()
        {'key': 'doc-42', 'id': '...'}
    """

    def __init__(
        self,
        backend: StorageBackend,
        generator: VersionIdGenerator | None = None,
    ) -> None:
        self.backend = backend
        self.generator = generator or VersionIdGenerator()

    async def submit(
        self,
        key: str,
        html: Any,
        links: Sequence[Any] | None = None,
        references: Sequence[Any] | None = None,
    ) -> SubmitResult:
        """Validate, mint a version id, and write the version atomically.

        Args:
            key: Document key
            html: Document HTML (required, non-empty)
            links: Optional LinkInput objects or ``{id, title, uri}`` dicts
            references: Optional ReferenceInput objects or
                ``{anchor, position, link}`` dicts

        Returns:
            SubmitResult with the key and the new version id

        Raises:
            InvalidDocument: If the submission is malformed (storage untouched)
            StorageWriteError: If the batch could not be applied
        """
        submission = DocumentSubmission(
            html=require_html(html),
            links=coerce_links(links),
            references=coerce_references(references),
        )
        return await self.submit_document(key, submission)

    async def submit_document(self, key: str, submission: DocumentSubmission) -> SubmitResult:
        """Write an already parsed submission. See submit()."""
        if not isinstance(key, str) or not key:
            raise InvalidDocument("key must be a non-empty string", field_name="key")
        require_html(submission.html)

        version_id = self.generator.mint()
        writes = build_batch(key, version_id, submission)

        try:
            await self.backend.apply_batch(writes)
        except StorageError as e:
            logger.error(
                f"Document batch failed: {e}",
                extra={"key": key, "version_id": str(version_id), "rows": len(writes)},
            )
            raise StorageWriteError(
                f"Failed to store document '{key}': {e}", key=key, cause=e
            ) from e

        logger.info(
            "Stored document version",
            extra={
                "key": key,
                "version_id": str(version_id),
                "links": len(submission.links),
                "references": len(submission.references),
            },
        )
        return SubmitResult(key=key, version_id=version_id)
