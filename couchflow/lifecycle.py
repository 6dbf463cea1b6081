"""Save, fetch and delete process documents with revision and history handling."""

from __future__ import annotations

import logging
from contextlib import closing
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from .errors import (
    CouchflowError,
    NotFoundError,
    RequestValidationError,
    SerializationError,
    StoreError,
)
from .models import BulkResult, ProcessDocument, SaveResult, StateChange
from .store.base import BackingStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _not_before(now: datetime, floor: Optional[datetime]) -> datetime:
    # clocks of different writers may disagree; history must stay ordered
    if floor is None or (floor.tzinfo is None) != (now.tzinfo is None):
        return now
    return max(now, floor)


def _with_id(doc: ProcessDocument, operation: str) -> ProcessDocument:
    doc = doc.model_copy(deep=True)
    if not doc.id:
        doc.id = doc.process_id
    if not doc.id:
        raise RequestValidationError(operation, "document requires an id or process_id")
    return doc


class DocumentLifecycleManager:
    """Write path for process documents.

    Saves without a revision fetch the current document first, adopt its
    revision and creation time, and append one state change to its history
    before writing. The store's revision check at write time is what keeps
    concurrent writers safe; nothing here retries.
    """

    def __init__(
        self, store: BackingStore, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> BackingStore:
        return self._store

    def save(self, doc: ProcessDocument) -> SaveResult:
        """Persist ``doc`` and return the new revision.

        The caller's object is left untouched. A stale explicit revision
        raises ConflictError from the store.
        """

        doc = _with_id(doc, "save")
        now = self._clock()
        if not doc.revision:
            try:
                existing: Optional[ProcessDocument] = self.get(doc.id)
            except NotFoundError:
                existing = None

            if existing is not None:
                latest = existing.history[-1].timestamp if existing.history else existing.created_at
                now = _not_before(now, latest)
                doc.revision = existing.revision
                doc.created_at = existing.created_at
                doc.history = existing.history + [
                    StateChange(state=doc.state, timestamp=now, error_message=doc.error_message)
                ]
                logger.debug(
                    f"Appending state {doc.state.value} to {doc.id} "
                    f"(history length {len(doc.history)})"
                )
            else:
                doc.created_at = now
                doc.history = [
                    StateChange(state=doc.state, timestamp=now, error_message=doc.error_message)
                ]
                logger.debug(f"Creating process document {doc.id}")
        doc.updated_at = now

        rev = self._store.put(doc.id, doc.to_store())
        logger.info(f"Saved process document {doc.id} at revision {rev}")
        return SaveResult(ok=True, id=doc.id, rev=rev)

    def get(self, doc_id: str) -> ProcessDocument:
        """Fetch a process document.

        Raises NotFoundError when the document does not exist and StoreError
        for every other rejected request.
        """
        body = self._store.get(doc_id)
        return ProcessDocument.from_store(body)

    def delete(self, doc_id: str, revision: str) -> None:
        """Delete a document at the given revision."""
        if not doc_id or not revision:
            raise RequestValidationError("delete", "both id and revision are required")
        self._store.delete(doc_id, revision)
        logger.info(f"Deleted process document {doc_id}")

    def close(self) -> None:
        self._store.close()

    # bulk operations
    def bulk_save(self, docs: Sequence[ProcessDocument]) -> list[BulkResult]:
        """Write many documents in one request.

        Documents are written as given: a supplied revision is used as-is and
        existing history is not merged. A document with no history gets its
        first entry. Rejected documents are reported in the results, not
        raised; check ``BulkResult.ok``.
        """

        now = self._clock()
        prepared = [_with_id(doc, "bulk_save") for doc in docs]
        for doc in prepared:
            if doc.created_at is None:
                doc.created_at = now
            if not doc.history:
                doc.history = [
                    StateChange(state=doc.state, timestamp=now, error_message=doc.error_message)
                ]
            doc.updated_at = now

        replies = self._store.bulk_save([doc.to_store() for doc in prepared])
        results = [BulkResult.from_store(reply) for reply in replies]
        failed = sum(1 for result in results if not result.ok)
        logger.info(f"Bulk saved {len(results) - failed} process documents ({failed} rejected)")
        return results

    def bulk_upsert(self, docs: Sequence[ProcessDocument]) -> list[BulkResult]:
        """Insert or overwrite many documents.

        Documents without a revision adopt the current revision of the stored
        document, so they replace it instead of conflicting.
        """

        prepared = [_with_id(doc, "bulk_upsert") for doc in docs]
        current: dict[str, str] = {}
        for row in self._store.bulk_get([doc.id for doc in prepared if not doc.revision]):
            if row.error is None and row.id and isinstance(row.value, dict):
                current[row.id] = row.value.get("rev", "")
        for doc in prepared:
            if not doc.revision and current.get(doc.id):
                doc.revision = current[doc.id]
        return self.bulk_save(prepared)

    def bulk_update(
        self, selector: dict[str, Any], update: Callable[[ProcessDocument], None]
    ) -> int:
        """Apply ``update`` to every document matching ``selector`` and write them back.

        Each document keeps the revision it was read at, so one changed by
        another writer in between is rejected rather than overwritten. A
        state change made by ``update`` is appended to the history. Returns
        the number of documents written.
        """

        with closing(self._store.query(selector)) as rows:
            docs = [ProcessDocument.from_store(row.scan_doc()) for row in rows]
        if not docs:
            return 0
        now = self._clock()
        for doc in docs:
            before = doc.state
            update(doc)
            if doc.state != before:
                latest = doc.history[-1].timestamp if doc.history else doc.created_at
                doc.history.append(
                    StateChange(
                        state=doc.state,
                        timestamp=_not_before(now, latest),
                        error_message=doc.error_message,
                    )
                )
        return sum(1 for result in self.bulk_save(docs) if result.ok)

    def bulk_delete(self, docs: Sequence[tuple[str, str]]) -> list[BulkResult]:
        """Delete many ``(id, revision)`` pairs."""
        for doc_id, revision in docs:
            if not doc_id or not revision:
                raise RequestValidationError("bulk_delete", "both id and revision are required")
        replies = self._store.bulk_delete(list(docs))
        return [BulkResult.from_store(reply) for reply in replies]

    def bulk_get(
        self, ids: Sequence[str]
    ) -> tuple[dict[str, ProcessDocument], dict[str, CouchflowError]]:
        """Fetch many documents.

        Returns the documents found by id and, separately, the error for
        every id that is missing or unreadable.
        """

        found: dict[str, ProcessDocument] = {}
        errors: dict[str, CouchflowError] = {}
        for row in self._store.bulk_get(list(ids)):
            key = row.id or str(row.key)
            try:
                found[key] = ProcessDocument.from_store(row.scan_doc())
            except (StoreError, SerializationError) as exc:
                errors[key] = exc
        return found, errors
