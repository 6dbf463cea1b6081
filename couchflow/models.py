"""Data models for process documents and store metadata."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .constants import DEFAULT_INDEX_TYPE
from .errors import SerializationError, StoreError, error_from_reply


class ProcessState(str, Enum):
    """Lifecycle state of a tracked process."""

    STARTED = "started"
    RUNNING = "running"
    SUCCESSFUL = "successful"
    FAILED = "failed"


class StateChange(BaseModel):
    """One entry of a document's append-only history."""

    state: ProcessState
    timestamp: datetime
    error_message: str = ""


class ProcessDocument(BaseModel):
    """Stored state of a single workflow process.

    Field names follow Python conventions; the aliases are the names used in
    the stored JSON body (``_id``, ``_rev``).
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default="", alias="_id")
    revision: str = Field(default="", alias="_rev")
    process_id: str = ""
    state: ProcessState
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    history: list[StateChange] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_message: str = ""
    description: str = ""

    def to_store(self) -> dict[str, Any]:
        """Return the JSON body written to the store."""
        try:
            body = self.model_dump(mode="json", by_alias=True)
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"cannot encode document {self.id!r}: {exc}") from exc

        if not body.get("_rev"):
            body.pop("_rev", None)
        for key in ("metadata", "error_message", "description"):
            if not body.get(key):
                body.pop(key, None)
        for change in body["history"]:
            if not change.get("error_message"):
                change.pop("error_message", None)
        return body

    @classmethod
    def from_store(cls, body: Any) -> "ProcessDocument":
        """Build a document from a stored JSON body."""
        if not isinstance(body, dict):
            raise SerializationError(
                f"expected a JSON object, got {type(body).__name__}"
            )
        try:
            return cls.model_validate(body)
        except PydanticValidationError as exc:
            raise SerializationError(
                f"malformed process document {body.get('_id')!r}: {exc}"
            ) from exc


class SaveResult(BaseModel):
    """Outcome of a successful write."""

    ok: bool = True
    id: str
    rev: str


class BulkResult(BaseModel):
    """Per-document outcome of a bulk write."""

    id: str = ""
    ok: bool = False
    rev: str = ""
    error: str = ""
    reason: str = ""

    @classmethod
    def from_store(cls, reply: dict[str, Any]) -> "BulkResult":
        failed = bool(reply.get("error"))
        return cls(
            id=str(reply.get("id") or ""),
            ok=not failed,
            rev="" if failed else str(reply.get("rev") or ""),
            error=str(reply.get("error") or ""),
            reason=str(reply.get("reason") or ""),
        )

    def exception(self, operation: str = "bulk_save") -> Optional[StoreError]:
        """Return the error for a rejected document, or None when it was written."""
        if self.ok:
            return None
        return error_from_reply(operation, self.error, self.reason)


class IndexDescriptor(BaseModel):
    """Definition of a Mango index. Field order is significant."""

    fields: list[str]
    name: Optional[str] = None
    type: str = DEFAULT_INDEX_TYPE

    @property
    def effective_type(self) -> str:
        return self.type or DEFAULT_INDEX_TYPE

    def to_store(self) -> dict[str, Any]:
        definition: dict[str, Any] = {
            "index": {"fields": list(self.fields)},
            "type": self.effective_type,
        }
        if self.name:
            definition["name"] = self.name
        return definition


class IndexInfo(BaseModel):
    """An index as reported by the store."""

    name: str
    type: str
    fields: list[str] = Field(default_factory=list)
    design_doc: Optional[str] = None

    @classmethod
    def from_store(cls, raw: dict[str, Any]) -> "IndexInfo":
        fields: list[str] = []
        for entry in (raw.get("def") or {}).get("fields", []):
            if isinstance(entry, dict):
                fields.extend(entry.keys())
            else:
                fields.append(str(entry))
        return cls(
            name=raw.get("name", ""),
            type=raw.get("type", ""),
            fields=fields,
            design_doc=raw.get("ddoc"),
        )


class DatabaseInfo(BaseModel):
    """Statistics about a database."""

    db_name: str
    doc_count: int = 0
    doc_del_count: int = 0
    update_seq: str = ""
    disk_size: int = 0
    data_size: int = 0
    compact_running: bool = False

    @classmethod
    def from_store(cls, raw: dict[str, Any]) -> "DatabaseInfo":
        sizes = raw.get("sizes") or {}
        return cls(
            db_name=raw.get("db_name", ""),
            doc_count=raw.get("doc_count", 0),
            doc_del_count=raw.get("doc_del_count", 0),
            update_seq=str(raw.get("update_seq", "")),
            disk_size=sizes.get("file", raw.get("disk_size", 0)),
            data_size=sizes.get("active", raw.get("data_size", 0)),
            compact_running=raw.get("compact_running", False),
        )


class MangoQuery(BaseModel):
    """A selector query with optional projection, sorting and paging."""

    selector: dict[str, Any] = Field(default_factory=dict)
    fields: Optional[list[str]] = None
    sort: Optional[list[dict[str, str]]] = None
    limit: Optional[int] = None
    skip: Optional[int] = None
    use_index: Optional[str] = None


class ExportResult(BaseModel):
    """Counters reported at the end of a bulk export."""

    database: str
    output_dir: Path
    exported: int = 0
    failed: int = 0
    skipped: int = 0
