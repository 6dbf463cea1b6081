"""Bulk export of a database into one JSON file per document."""

from __future__ import annotations

import json
import logging
from contextlib import closing
from pathlib import Path
from typing import Any, Callable, Optional

from .config import CouchDBConfig
from .constants import (
    DEFAULT_PROGRESS_INTERVAL,
    DESIGN_DOC_PREFIX,
    INVALID_FILENAME_CHARS,
    MAX_FILENAME_LENGTH,
)
from .errors import CouchflowError
from .models import ExportResult
from .store.base import BackingStore
from .store.couchdb import CouchDBBackingStore

logger = logging.getLogger(__name__)


def sanitize_filename(name: str) -> str:
    """Map a document id onto a filesystem-safe file stem."""
    result = name
    for char in INVALID_FILENAME_CHARS:
        result = result.replace(char, "_")
    return result[:MAX_FILENAME_LENGTH]


def save_document_to_file(doc: dict[str, Any], path: Path) -> None:
    """Write ``doc`` as 2-space indented UTF-8 JSON, replacing ``path``."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2, ensure_ascii=False)
        f.write("\n")


class BulkExporter:
    """Dump every document of a database to disk.

    A document that cannot be read or written is logged and skipped; only a
    failure to connect or of the enumeration cursor itself aborts the run.
    """

    def __init__(
        self,
        connect: Callable[[str], BackingStore],
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> None:
        self._connect = connect
        self.progress_interval = progress_interval
        self.on_progress = on_progress

    def export(self, database: str, output_dir: str | Path) -> ExportResult:
        store = self._connect(database)
        try:
            return self._export(store, database, Path(output_dir))
        finally:
            store.close()

    def _export(self, store: BackingStore, database: str, output_dir: Path) -> ExportResult:
        db_dir = output_dir / database
        db_dir.mkdir(parents=True, exist_ok=True)
        result = ExportResult(database=database, output_dir=db_dir)
        logger.info(f"Processing database: {database}")

        with closing(store.enumerate_all(include_docs=True)) as rows:
            for row in rows:
                doc_id = row.id
                if not doc_id:
                    logger.error(f"Failed to get ID for row in {database}: {row!r}")
                    result.failed += 1
                    continue
                if doc_id.startswith(DESIGN_DOC_PREFIX):
                    result.skipped += 1
                    continue

                try:
                    doc = row.scan_doc()
                except CouchflowError as exc:
                    logger.error(f"Error scanning document {doc_id}: {exc}")
                    result.failed += 1
                    continue

                path = db_dir / f"{sanitize_filename(doc_id)}.json"
                try:
                    save_document_to_file(doc, path)
                except (OSError, TypeError, ValueError) as exc:
                    logger.error(f"Error saving document {doc_id}: {exc}")
                    result.failed += 1
                    continue

                result.exported += 1
                if self.progress_interval and result.exported % self.progress_interval == 0:
                    logger.info(f"  Downloaded {result.exported} documents from {database}")
                    if self.on_progress is not None:
                        self.on_progress(result.exported)

        logger.info(
            f"  Completed {database}: {result.exported} documents downloaded"
            f" ({result.failed} failed, {result.skipped} skipped)"
        )
        return result


def download_all_documents(
    url: str,
    database: str,
    output_dir: str | Path,
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
) -> ExportResult:
    """Export every document of a CouchDB database at ``url``."""
    config = CouchDBConfig(url=url, database=database, create_if_missing=False)

    def connect(name: str) -> BackingStore:
        return CouchDBBackingStore.from_config(config, database=name)

    return BulkExporter(connect, progress_interval=progress_interval).export(database, output_dir)
