"""
Error types for DocService.

This module defines every exception the core surfaces to its callers:
- DocServiceError: Base exception
- InvalidDocument: Submission failed local validation
- InvalidVersionId: Client supplied a malformed version identifier
- NotFound: Point lookup matched no row
- StorageWriteError: Atomic batch could not be applied
- StorageReadError: Query or its row stream failed mid-flight
- SchemaError: Keyspace/tables could not be confirmed at startup

Invariants:
    - All errors inherit from DocServiceError
    - Storage errors carry the backend exception as ``cause`` and ``__cause__``
    - The core never swallows these; the HTTP layer maps them to statuses
"""

from __future__ import annotations

from typing import Any


class DocServiceError(Exception):
    """Base exception for all DocService errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCSERVICE_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe error body."""
        body: dict[str, Any] = {"error": self.message, "error_code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class InvalidDocument(DocServiceError):
    """Document submission failed validation.

    Raised when:
    - html is missing, not a string, or empty
    - key is empty
    - A link or reference entry has the wrong shape
    """

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(
            message,
            code="INVALID_DOCUMENT",
            details={"field": field_name} if field_name else None,
        )
        self.field_name = field_name


class InvalidVersionId(DocServiceError):
    """Version identifier is not a time-based UUID."""

    def __init__(self, value: str) -> None:
        super().__init__(
            f"Invalid version id: {value!r}",
            code="INVALID_VERSION_ID",
            details={"version_id": value},
        )
        self.value = value


class NotFound(DocServiceError):
    """No document version matches (key, version_id)."""

    def __init__(self, key: str, version_id: str) -> None:
        super().__init__(
            f"Document version not found: {key}/{version_id}",
            code="NOT_FOUND",
            details={"key": key, "version_id": version_id},
        )
        self.key = key
        self.version_id = version_id


class StorageWriteError(DocServiceError):
    """The write batch was rejected or could not be delivered.

    No row from the failed batch is visible to readers.
    """

    def __init__(self, message: str, key: str, cause: BaseException | None = None) -> None:
        super().__init__(
            message,
            code="STORAGE_WRITE",
            details={"key": key},
        )
        self.key = key
        self.cause = cause


class StorageReadError(DocServiceError):
    """A read query failed before or during row streaming.

    Partially folded results are discarded, never returned.
    """

    def __init__(
        self,
        message: str,
        table: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            code="STORAGE_READ",
            details={"table": table},
        )
        self.table = table
        self.cause = cause


class SchemaError(DocServiceError):
    """Keyspace or table creation could not be confirmed.

    Fatal at startup: the server must not serve against an unconfirmed schema.
    """

    def __init__(
        self,
        message: str,
        table: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            code="SCHEMA_ERROR",
            details={"table": table} if table else None,
        )
        self.table = table
        self.cause = cause
