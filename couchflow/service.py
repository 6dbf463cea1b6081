"""Process registry: the public surface over one backing store."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from .config import CouchflowConfig, load_config
from .errors import CouchflowError
from .export import BulkExporter
from .indexes import IndexManager
from .lifecycle import DocumentLifecycleManager
from .models import (
    BulkResult,
    DatabaseInfo,
    ExportResult,
    IndexDescriptor,
    IndexInfo,
    MangoQuery,
    ProcessDocument,
    ProcessState,
    SaveResult,
)
from .query import StateQueryEngine
from .store import get_store, store_connector
from .store.base import BackingStore

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Audit-tracked workflow state registry.

    Combines the lifecycle manager, query engine and index manager over a
    single store, plus bulk export through ``connect``.
    """

    def __init__(
        self,
        store: BackingStore,
        connect: Optional[Callable[[str], BackingStore]] = None,
        progress_interval: Optional[int] = None,
    ) -> None:
        self.store = store
        self.lifecycle = DocumentLifecycleManager(store)
        self.queries = StateQueryEngine(store)
        self.indexes = IndexManager(store)
        self._connect = connect
        self._progress_interval = progress_interval

    @classmethod
    def from_config(
        cls, config: Optional[CouchflowConfig] = None, backend: Optional[str] = None
    ) -> "ProcessRegistry":
        config = config or load_config()
        store = get_store(backend, config=config)
        return cls(
            store,
            connect=store_connector(backend, config=config, stores=[store]),
            progress_interval=config.export.progress_interval,
        )

    def __enter__(self) -> "ProcessRegistry":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # documents
    def save(self, doc: ProcessDocument) -> SaveResult:
        return self.lifecycle.save(doc)

    def get(self, doc_id: str) -> ProcessDocument:
        return self.lifecycle.get(doc_id)

    def delete(self, doc_id: str, revision: str) -> None:
        self.lifecycle.delete(doc_id, revision)

    def bulk_save(self, docs: Sequence[ProcessDocument]) -> list[BulkResult]:
        return self.lifecycle.bulk_save(docs)

    def bulk_upsert(self, docs: Sequence[ProcessDocument]) -> list[BulkResult]:
        return self.lifecycle.bulk_upsert(docs)

    def bulk_update(
        self, selector: dict[str, Any], update: Callable[[ProcessDocument], None]
    ) -> int:
        return self.lifecycle.bulk_update(selector, update)

    def bulk_delete(self, docs: Sequence[tuple[str, str]]) -> list[BulkResult]:
        return self.lifecycle.bulk_delete(docs)

    def bulk_get(
        self, ids: Sequence[str]
    ) -> tuple[dict[str, ProcessDocument], dict[str, CouchflowError]]:
        return self.lifecycle.bulk_get(ids)

    def close(self) -> None:
        self.lifecycle.close()

    # queries
    def list_by_state(self, state: ProcessState | str) -> list[ProcessDocument]:
        return self.queries.list_by_state(state)

    def list_all(self) -> list[ProcessDocument]:
        return self.queries.list_all()

    def find(self, query: MangoQuery) -> list[dict[str, Any]]:
        return self.queries.find(query)

    def count(self, selector: dict[str, Any]) -> int:
        return self.queries.count(selector)

    # indexes
    def ensure_index(self, descriptor: IndexDescriptor) -> bool:
        return self.indexes.ensure(descriptor)

    def create_index(self, descriptor: IndexDescriptor) -> dict[str, Any]:
        return self.indexes.create(descriptor)

    def list_indexes(self) -> list[IndexInfo]:
        return self.indexes.list()

    def delete_index(self, design_doc: str, name: str) -> None:
        self.indexes.delete(design_doc, name)

    # database
    def database_info(self) -> DatabaseInfo:
        return DatabaseInfo.from_store(self.store.info())

    def export(self, database: str, output_dir: str | Path) -> ExportResult:
        """Export ``database`` into ``output_dir/database``."""
        if self._connect is None:
            raise RuntimeError("ProcessRegistry was created without a store connector")
        exporter = (
            BulkExporter(self._connect, progress_interval=self._progress_interval)
            if self._progress_interval is not None
            else BulkExporter(self._connect)
        )
        return exporter.export(database, output_dir)
