"""
Documents module for DocService - the write and read protocol.

This module handles:
- Submission parsing and validation (models)
- Atomic multi-table writes of one version (writer)
- Streaming read aggregation into JSON-shaped results (readers)
- The DocService facade used by the HTTP layer (service)

Invariants:
    - A submission is one atomic batch across documents, links, references
    - Version ids are minted only after validation succeeded
    - Reads never return partially folded results
"""

from .models import (
    DocumentHistory,
    DocumentSubmission,
    DocumentVersion,
    Link,
    LinkCollection,
    LinkInput,
    Reference,
    ReferenceCollection,
    ReferenceInput,
    SubmitResult,
    VersionEntry,
)
from .readers import DocumentReader
from .service import DocService
from .writer import WriteCoordinator, build_batch

__all__ = [
    "DocService",
    "DocumentReader",
    "WriteCoordinator",
    "build_batch",
    "DocumentSubmission",
    "LinkInput",
    "ReferenceInput",
    "SubmitResult",
    "DocumentVersion",
    "DocumentHistory",
    "VersionEntry",
    "Link",
    "LinkCollection",
    "Reference",
    "ReferenceCollection",
]
