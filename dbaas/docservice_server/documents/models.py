"""
Data types for DocService submissions and read results.

Inputs (LinkInput, ReferenceInput, DocumentSubmission) are parsed from the
JSON write body and validated before any storage call. Results are frozen
dataclasses built by the read aggregators; to_dict() renders the external
JSON shapes, with version ids as canonical UUID strings under "id".
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..errors import InvalidDocument
from ..schema.tables import INT_MAX, INT_MIN


def _require_int(entry: Mapping[str, Any], name: str, where: str) -> int:
    value = entry.get(name)
    # bool is an int subclass; true/false are not identifiers
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidDocument(f"{where}.{name} must be an integer", field_name=f"{where}.{name}")
    if not INT_MIN <= value <= INT_MAX:
        raise InvalidDocument(
            f"{where}.{name} must be a 32-bit integer ({INT_MIN}..{INT_MAX})",
            field_name=f"{where}.{name}",
        )
    return value


def _require_str(entry: Mapping[str, Any], name: str, where: str) -> str:
    value = entry.get(name)
    if not isinstance(value, str):
        raise InvalidDocument(f"{where}.{name} must be a string", field_name=f"{where}.{name}")
    return value


@dataclass(frozen=True)
class LinkInput:
    """A client-identified link submitted with a document version.

    Attributes:
        id: Client-defined link id, unique within one submission by contract
        title: Link title
        uri: Link target
    """

    id: int
    title: str
    uri: str

    @classmethod
    def from_dict(cls, entry: Any, index: int = 0) -> LinkInput:
        """Parse one element of the ``links`` array.

        Raises:
            InvalidDocument: If the entry is not an object of the right shape
        """
        where = f"links[{index}]"
        if not isinstance(entry, Mapping):
            raise InvalidDocument(f"{where} must be an object", field_name=where)
        return cls(
            id=_require_int(entry, "id", where),
            title=_require_str(entry, "title", where),
            uri=_require_str(entry, "uri", where),
        )


@dataclass(frozen=True)
class ReferenceInput:
    """An anchored reference to a link of the same version.

    Attributes:
        anchor: Anchor text
        position: Position of the anchor in the document
        link: Id of the targeted link (not checked against submitted links)
    """

    anchor: str
    position: int
    link: int

    @classmethod
    def from_dict(cls, entry: Any, index: int = 0) -> ReferenceInput:
        """Parse one element of the ``references`` array.

        Raises:
            InvalidDocument: If the entry is not an object of the right shape
        """
        where = f"references[{index}]"
        if not isinstance(entry, Mapping):
            raise InvalidDocument(f"{where} must be an object", field_name=where)
        return cls(
            anchor=_require_str(entry, "anchor", where),
            position=_require_int(entry, "position", where),
            link=_require_int(entry, "link", where),
        )


def coerce_links(links: Sequence[Any] | None) -> tuple[LinkInput, ...]:
    """Normalize links given as LinkInput objects or JSON dicts."""
    if links is None:
        return ()
    if isinstance(links, (str, bytes, Mapping)) or not isinstance(links, Sequence):
        raise InvalidDocument("links must be an array", field_name="links")
    return tuple(
        item if isinstance(item, LinkInput) else LinkInput.from_dict(item, i)
        for i, item in enumerate(links)
    )


def coerce_references(references: Sequence[Any] | None) -> tuple[ReferenceInput, ...]:
    """Normalize references given as ReferenceInput objects or JSON dicts."""
    if references is None:
        return ()
    if isinstance(references, (str, bytes, Mapping)) or not isinstance(references, Sequence):
        raise InvalidDocument("references must be an array", field_name="references")
    return tuple(
        item if isinstance(item, ReferenceInput) else ReferenceInput.from_dict(item, i)
        for i, item in enumerate(references)
    )


def require_html(html: Any) -> str:
    """Return html if it is a non-empty string.

    Raises:
        InvalidDocument: If html is missing, not a string, or empty
    """
    if not isinstance(html, str) or html == "":
        raise InvalidDocument("html is required and must be a non-empty string", field_name="html")
    return html


@dataclass(frozen=True)
class DocumentSubmission:
    """A validated write request body.

    Attributes:
        html: Document HTML (non-empty)
        links: Links of this version, in submission order
        references: References of this version, in submission order
    """

    html: str
    links: tuple[LinkInput, ...] = ()
    references: tuple[ReferenceInput, ...] = ()

    @classmethod
    def from_dict(cls, payload: Any) -> DocumentSubmission:
        """Parse ``{html, links?, references?}``.

        Absent or null ``links``/``references`` mean zero rows of that kind.

        Raises:
            InvalidDocument: If any part of the payload is malformed
        """
        if not isinstance(payload, Mapping):
            raise InvalidDocument("Document body must be a JSON object")
        return cls(
            html=require_html(payload.get("html")),
            links=coerce_links(payload.get("links")),
            references=coerce_references(payload.get("references")),
        )


@dataclass(frozen=True)
class SubmitResult:
    """Key and newly minted version id of a stored submission."""

    key: str
    version_id: uuid.UUID

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "id": str(self.version_id)}


@dataclass(frozen=True)
class DocumentVersion:
    """One stored version of a document."""

    key: str
    version_id: uuid.UUID
    html: str

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "id": str(self.version_id), "html": self.html}


@dataclass(frozen=True)
class VersionEntry:
    """A version in a document's history."""

    version_id: uuid.UUID
    html: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": str(self.version_id), "html": self.html}


@dataclass(frozen=True)
class DocumentHistory:
    """All versions of a key, newest first."""

    key: str
    docs: tuple[VersionEntry, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "docs": [d.to_dict() for d in self.docs]}


@dataclass(frozen=True)
class Link:
    """A stored link."""

    id: int
    title: str
    uri: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "uri": self.uri}


@dataclass(frozen=True)
class LinkCollection:
    """All links of one version, ordered by link id."""

    key: str
    version_id: uuid.UUID
    links: tuple[Link, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "id": str(self.version_id),
            "links": [link.to_dict() for link in self.links],
        }


@dataclass(frozen=True)
class Reference:
    """A stored reference."""

    anchor: str
    position: int
    link: int

    def to_dict(self) -> dict[str, Any]:
        return {"anchor": self.anchor, "position": self.position, "link": self.link}


@dataclass(frozen=True)
class ReferenceCollection:
    """All references of one version, ordered by target link id."""

    key: str
    version_id: uuid.UUID
    references: tuple[Reference, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "id": str(self.version_id),
            "references": [r.to_dict() for r in self.references],
        }
