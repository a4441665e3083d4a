"""
DocService facade.

Wires one WriteCoordinator and one DocumentReader to a shared storage
backend handle. The handle is passed in explicitly; its lifecycle
(connect, ensure_schema, close) belongs to the server.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Any

from ..ids import VersionIdGenerator
from ..storage.base import StorageBackend
from .models import (
    DocumentHistory,
    DocumentSubmission,
    DocumentVersion,
    LinkCollection,
    ReferenceCollection,
    SubmitResult,
)
from .readers import DocumentReader
from .writer import WriteCoordinator

logger = logging.getLogger(__name__)


class DocService:
    """Versioned document storage with links and references.

    Example:
        >>> service = DocService(backend)
        >>> result = await service.submit("doc-42", "<p>hi</p>")
        >>> (await service.get_version("doc-42", result.version_id)).html
        '<p>hi</p>'
    """

    def __init__(
        self,
        backend: StorageBackend,
        generator: VersionIdGenerator | None = None,
    ) -> None:
        self.backend = backend
        self.writer = WriteCoordinator(backend, generator)
        self.reader = DocumentReader(backend)

    async def submit(
        self,
        key: str,
        html: Any,
        links: Sequence[Any] | None = None,
        references: Sequence[Any] | None = None,
    ) -> SubmitResult:
        return await self.writer.submit(key, html, links, references)

    async def submit_document(self, key: str, submission: DocumentSubmission) -> SubmitResult:
        return await self.writer.submit_document(key, submission)

    async def get_version(self, key: str, version_id: str | uuid.UUID) -> DocumentVersion:
        return await self.reader.get_version(key, version_id)

    async def get_all_versions(self, key: str) -> DocumentHistory:
        return await self.reader.get_all_versions(key)

    async def get_links(self, key: str, version_id: str | uuid.UUID) -> LinkCollection:
        return await self.reader.get_links(key, version_id)

    async def get_references(self, key: str, version_id: str | uuid.UUID) -> ReferenceCollection:
        return await self.reader.get_references(key, version_id)

    async def health(self) -> dict[str, Any]:
        """Report whether the storage backend is connected."""
        return {
            "healthy": self.backend.is_connected,
            "backend": type(self.backend).__name__,
        }
