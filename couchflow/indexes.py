"""Index lifecycle management on top of the store's index primitives."""

from __future__ import annotations

import logging

from .constants import DEFAULT_INDEX_TYPE, DESIGN_DOC_PREFIX, INDEX_TYPES
from .errors import RequestValidationError
from .models import IndexDescriptor, IndexInfo
from .store.base import BackingStore

logger = logging.getLogger(__name__)


def _validate(descriptor: IndexDescriptor, operation: str) -> None:
    if not descriptor.fields or any(not field for field in descriptor.fields):
        raise RequestValidationError(operation, "index requires a non-empty list of field names")
    if descriptor.effective_type not in INDEX_TYPES:
        raise RequestValidationError(
            operation, f"unsupported index type {descriptor.type!r}"
        )


class IndexManager:
    """Create, list and delete Mango indexes.

    ``ensure`` reads the existing indexes before creating one, which is not
    atomic. Two concurrent callers may both create; the store answers
    ``exists`` for an identical definition, and that answer is reported as
    "already existed" as well.
    """

    def __init__(self, store: BackingStore) -> None:
        self._store = store

    def create(self, descriptor: IndexDescriptor) -> dict:
        _validate(descriptor, "create_index")
        definition = descriptor.to_store()
        result = self._store.create_index(definition)
        logger.info(
            f"Index {result.get('name', descriptor.name)} on {descriptor.fields}: "
            f"{result.get('result', 'created')}"
        )
        return result

    def list(self) -> list[IndexInfo]:
        return [IndexInfo.from_store(raw) for raw in self._store.list_indexes()]

    def delete(self, design_doc: str, name: str) -> None:
        if not design_doc or not name:
            raise RequestValidationError(
                "delete_index", "both design document and index name are required"
            )
        ddoc = design_doc if design_doc.startswith(DESIGN_DOC_PREFIX) else DESIGN_DOC_PREFIX + design_doc
        index_type = DEFAULT_INDEX_TYPE
        for info in self.list():
            if info.name == name and info.design_doc == ddoc:
                index_type = info.type if info.type in INDEX_TYPES else DEFAULT_INDEX_TYPE
                break
        self._store.delete_index(design_doc, name, index_type)
        logger.info(f"Deleted index {name} from {design_doc}")

    def ensure(self, descriptor: IndexDescriptor) -> bool:
        """Create the index unless an identical one exists.

        Returns True when the index was created, False when it already
        existed.
        """
        _validate(descriptor, "ensure_index")
        wanted_type = descriptor.effective_type
        for existing in self.list():
            if existing.type == wanted_type and existing.fields == list(descriptor.fields):
                logger.debug(f"Index on {descriptor.fields} already exists as {existing.name}")
                return False

        result = self.create(descriptor)
        return result.get("result", "created") != "exists"
