"""Backing store abstraction for process documents."""

from __future__ import annotations

from typing import Any, Iterator, Optional, Protocol, runtime_checkable

from ..errors import CouchflowError, SerializationError


class Row:
    """A single result row streamed from a query or enumeration.

    ``error`` is set when the store reported a failure for this row only;
    it is raised by :meth:`scan_doc`.
    """

    __slots__ = ("id", "key", "value", "doc", "error")

    def __init__(
        self,
        id: Optional[str],
        key: Any = None,
        value: Any = None,
        doc: Any = None,
        error: Optional[CouchflowError] = None,
    ) -> None:
        self.id = id
        self.key = key
        self.value = value
        self.doc = doc
        self.error = error

    def scan_doc(self) -> dict[str, Any]:
        """Return the row's document body."""
        if self.error is not None:
            raise self.error
        if self.doc is None:
            raise SerializationError(f"row {self.id!r} carries no document body")
        if not isinstance(self.doc, dict):
            raise SerializationError(
                f"row {self.id!r} body is {type(self.doc).__name__}, not an object"
            )
        return self.doc

    def __repr__(self) -> str:
        return f"Row(id={self.id!r}, error={self.error!r})"


@runtime_checkable
class BackingStore(Protocol):
    """Protocol for document database backends bound to one database."""

    def get(self, doc_id: str) -> dict[str, Any]:
        """Fetch a document body. Raises NotFoundError when absent."""

    def put(self, doc_id: str, body: dict[str, Any]) -> str:
        """Write a document and return its new revision.

        A body whose ``_rev`` is stale (or set for a missing document) is
        rejected with ConflictError.
        """

    def delete(self, doc_id: str, rev: str) -> str:
        """Delete the revision ``rev`` of a document."""

    def bulk_save(self, docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Write many documents at once.

        Returns one reply per document, in order: ``{"ok", "id", "rev"}`` on
        success or ``{"id", "error", "reason"}`` when that document was
        rejected. Per-document failures never raise.
        """

    def bulk_delete(self, docs: list[tuple[str, str]]) -> list[dict[str, Any]]:
        """Delete many ``(id, rev)`` pairs; replies as for :meth:`bulk_save`."""

    def bulk_get(self, ids: list[str]) -> list[Row]:
        """Fetch many documents, one row per id; missing ids carry an error."""

    def query(
        self,
        selector: dict[str, Any],
        fields: Optional[list[str]] = None,
        sort: Optional[list[dict[str, str]]] = None,
        limit: Optional[int] = None,
        skip: Optional[int] = None,
        use_index: Optional[str] = None,
    ) -> Iterator[Row]:
        """Stream the documents matching a Mango selector.

        ``limit`` of None or 0 returns every match.
        """

    def enumerate_all(self, include_docs: bool = True) -> Iterator[Row]:
        """Stream every document, design documents included, in id order."""

    def create_index(self, definition: dict[str, Any]) -> dict[str, Any]:
        """Create an index; the result reports ``created`` or ``exists``."""

    def list_indexes(self) -> list[dict[str, Any]]:
        """Return the raw index definitions of the database."""

    def delete_index(self, design_doc: str, name: str, index_type: str = "json") -> None:
        """Delete an index by design document and name."""

    def info(self) -> dict[str, Any]:
        """Return database statistics."""

    def close(self) -> None:
        """Release the underlying connection."""
