"""In-memory implementation of the backing store."""

from __future__ import annotations

import copy
import hashlib
import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple

from ..constants import DEFAULT_INDEX_TYPE, DESIGN_DOC_PREFIX, INDEX_TYPES
from ..errors import (
    ConflictError,
    ConnectivityError,
    NotFoundError,
    RequestValidationError,
    SerializationError,
    StoreError,
)
from .base import BackingStore, Row

_MISSING = object()

_ALL_DOCS_INDEX = {
    "ddoc": None,
    "name": "_all_docs",
    "type": "special",
    "def": {"fields": [{"_id": "asc"}]},
}


@dataclass
class _Database:
    docs: Dict[str, dict[str, Any]] = field(default_factory=dict)
    indexes: Dict[Tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    deleted: int = 0
    seq: int = 0


class InMemoryBackingStore(BackingStore):
    """Keep documents in local memory with CouchDB revision semantics.

    Useful for tests or when no database server is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self, name: str = "inmemory", database: Optional[_Database] = None) -> None:
        self.name = name
        self._db = database if database is not None else _Database()
        self._closed = False

    def open_handle(self) -> "InMemoryBackingStore":
        """Return another store on the same documents.

        Closing the handle leaves this store open.
        """
        self._check_open("open_handle")
        return InMemoryBackingStore(self.name, database=self._db)

    # ------------------------------------------------------------------
    # Helpers
    def _check_open(self, operation: str) -> None:
        if self._closed:
            raise ConnectivityError(operation, RuntimeError("store is closed"))

    @staticmethod
    def _next_rev(current: Optional[str]) -> str:
        generation = int(current.split("-", 1)[0]) + 1 if current else 1
        return f"{generation}-{uuid.uuid4().hex}"

    def _write(self, doc_id: str, body: dict[str, Any]) -> str:
        try:
            stored = json.loads(json.dumps(body))
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"cannot encode document {doc_id!r}: {exc}") from exc
        existing = self._db.docs.get(doc_id)
        rev = self._next_rev(existing["_rev"] if existing else None)
        stored["_id"] = doc_id
        stored["_rev"] = rev
        self._db.docs[doc_id] = stored
        self._db.seq += 1
        return rev

    # ------------------------------------------------------------------
    # Documents
    def get(self, doc_id: str) -> dict[str, Any]:
        self._check_open("get")
        doc = self._db.docs.get(doc_id)
        if doc is None:
            raise NotFoundError("get")
        return copy.deepcopy(doc)

    def put(self, doc_id: str, body: dict[str, Any]) -> str:
        self._check_open("put")
        if not doc_id:
            raise RequestValidationError("put", "Document id must not be empty")
        existing = self._db.docs.get(doc_id)
        supplied = body.get("_rev")
        if existing is not None and supplied != existing["_rev"]:
            raise ConflictError("put")
        if existing is None and supplied:
            raise ConflictError("put")
        return self._write(doc_id, body)

    def delete(self, doc_id: str, rev: str) -> str:
        self._check_open("delete")
        existing = self._db.docs.get(doc_id)
        if existing is None:
            raise NotFoundError("delete", reason="deleted")
        if existing["_rev"] != rev:
            raise ConflictError("delete")
        del self._db.docs[doc_id]
        self._db.deleted += 1
        self._db.seq += 1
        return self._next_rev(rev)

    # ------------------------------------------------------------------
    # Bulk operations
    def bulk_save(self, docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self._check_open("bulk_save")
        try:
            bodies = json.loads(json.dumps(docs))
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"cannot encode bulk request: {exc}") from exc
        return [self._bulk_write(body) for body in bodies]

    def bulk_delete(self, docs: list[tuple[str, str]]) -> list[dict[str, Any]]:
        self._check_open("bulk_delete")
        return [
            self._bulk_write({"_id": doc_id, "_rev": rev, "_deleted": True})
            for doc_id, rev in docs
        ]

    def _bulk_write(self, body: dict[str, Any]) -> dict[str, Any]:
        doc_id = body.get("_id") or uuid.uuid4().hex
        try:
            if body.get("_deleted"):
                rev = self.delete(doc_id, body.get("_rev", ""))
            else:
                rev = self.put(doc_id, body)
        except StoreError as exc:
            return {"id": doc_id, "error": exc.error, "reason": exc.reason}
        return {"ok": True, "id": doc_id, "rev": rev}

    def bulk_get(self, ids: list[str]) -> list[Row]:
        self._check_open("bulk_get")
        rows = []
        for doc_id in ids:
            doc = self._db.docs.get(doc_id)
            if doc is None:
                rows.append(Row(id=None, key=doc_id, error=NotFoundError("bulk_get")))
            else:
                rows.append(
                    Row(id=doc_id, key=doc_id, value={"rev": doc["_rev"]}, doc=copy.deepcopy(doc))
                )
        return rows

    # ------------------------------------------------------------------
    # Streaming reads
    def query(
        self,
        selector: dict[str, Any],
        fields: Optional[list[str]] = None,
        sort: Optional[list[dict[str, str]]] = None,
        limit: Optional[int] = None,
        skip: Optional[int] = None,
        use_index: Optional[str] = None,
    ) -> Iterator[Row]:
        self._check_open("query")
        if not isinstance(selector, dict):
            raise RequestValidationError("query", "selector must be an object")
        matched = [
            copy.deepcopy(doc)
            for doc_id, doc in sorted(self._db.docs.items())
            if not doc_id.startswith(DESIGN_DOC_PREFIX) and matches_selector(doc, selector)
        ]
        for entry in reversed(sort or []):
            for field, direction in entry.items():
                matched.sort(
                    key=lambda d, f=field: _collation_key(_lookup(d, f)),
                    reverse=direction == "desc",
                )
        start = skip or 0
        end = start + limit if limit else None
        return self._stream_query(matched[start:end], fields)

    @staticmethod
    def _stream_query(docs: list[dict[str, Any]], fields: Optional[list[str]]) -> Iterator[Row]:
        for doc in docs:
            if fields:
                projected = {}
                for field in fields:
                    value = _lookup(doc, field)
                    if value is not _MISSING:
                        projected[field] = value
                doc = projected
            yield Row(id=doc.get("_id"), doc=doc)

    def enumerate_all(self, include_docs: bool = True) -> Iterator[Row]:
        self._check_open("enumerate_all")
        snapshot = [copy.deepcopy(self._db.docs[doc_id]) for doc_id in sorted(self._db.docs)]
        return self._stream_all(snapshot, include_docs)

    @staticmethod
    def _stream_all(docs: list[dict[str, Any]], include_docs: bool) -> Iterator[Row]:
        for doc in docs:
            yield Row(
                id=doc["_id"],
                key=doc["_id"],
                value={"rev": doc["_rev"]},
                doc=doc if include_docs else None,
            )

    # ------------------------------------------------------------------
    # Indexes
    def create_index(self, definition: dict[str, Any]) -> dict[str, Any]:
        self._check_open("create_index")
        index = definition.get("index") or {}
        fields = index.get("fields")
        if not fields or not isinstance(fields, list):
            raise RequestValidationError("create_index", "Index must specify a non-empty fields list")
        index_type = definition.get("type") or DEFAULT_INDEX_TYPE
        if index_type not in INDEX_TYPES:
            raise RequestValidationError("create_index", f"Unsupported index type: {index_type}")

        normalized = [f if isinstance(f, dict) else {f: "asc"} for f in fields]
        digest = hashlib.sha1(json.dumps([index_type, normalized]).encode()).hexdigest()
        ddoc = definition.get("ddoc") or digest
        if not ddoc.startswith(DESIGN_DOC_PREFIX):
            ddoc = DESIGN_DOC_PREFIX + ddoc
        name = definition.get("name") or digest

        existing = self._db.indexes.get((ddoc, name))
        if existing is not None and existing["type"] == index_type and existing["def"]["fields"] == normalized:
            return {"result": "exists", "id": ddoc, "name": name}

        self._db.indexes[(ddoc, name)] = {
            "ddoc": ddoc,
            "name": name,
            "type": index_type,
            "def": {"fields": normalized},
        }
        self._sync_design_doc(ddoc)
        return {"result": "created", "id": ddoc, "name": name}

    def list_indexes(self) -> list[dict[str, Any]]:
        self._check_open("list_indexes")
        indexes = [copy.deepcopy(_ALL_DOCS_INDEX)]
        indexes.extend(copy.deepcopy(self._db.indexes[key]) for key in sorted(self._db.indexes))
        return indexes

    def delete_index(self, design_doc: str, name: str, index_type: str = "json") -> None:
        self._check_open("delete_index")
        if not design_doc or name == _ALL_DOCS_INDEX["name"]:
            raise RequestValidationError("delete_index", "Cannot delete the special _all_docs index")
        ddoc = design_doc if design_doc.startswith(DESIGN_DOC_PREFIX) else DESIGN_DOC_PREFIX + design_doc
        if self._db.indexes.pop((ddoc, name), None) is None:
            raise NotFoundError("delete_index", reason="Index not found")
        self._sync_design_doc(ddoc)

    def _sync_design_doc(self, ddoc: str) -> None:
        views = {
            name: {"map": {"fields": dict(kv for f in idx["def"]["fields"] for kv in f.items())}, "options": {"def": idx["def"]}}
            for (doc_ddoc, name), idx in self._db.indexes.items()
            if doc_ddoc == ddoc
        }
        if views:
            self._write(ddoc, {"language": "query", "views": views})
        elif ddoc in self._db.docs:
            del self._db.docs[ddoc]
            self._db.seq += 1

    # ------------------------------------------------------------------
    def info(self) -> dict[str, Any]:
        self._check_open("info")
        size = len(json.dumps(self._db.docs))
        return {
            "db_name": self.name,
            "doc_count": len(self._db.docs),
            "doc_del_count": self._db.deleted,
            "update_seq": str(self._db.seq),
            "sizes": {"file": size, "active": size},
            "compact_running": False,
        }

    def close(self) -> None:
        self._closed = True


# ----------------------------------------------------------------------
# Mango selector evaluation
def _lookup(doc: Any, path: str) -> Any:
    current = doc
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _collation_key(value: Any) -> tuple:
    # CouchDB collation: null < false < true < numbers < strings < arrays < objects
    if value is _MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    if isinstance(value, list):
        return (4, json.dumps(value, sort_keys=True))
    return (5, json.dumps(value, sort_keys=True))


def matches_selector(doc: dict[str, Any], selector: dict[str, Any]) -> bool:
    """Return True when ``doc`` satisfies a Mango ``selector``."""
    for key, condition in selector.items():
        if key == "$and":
            if not all(matches_selector(doc, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches_selector(doc, sub) for sub in condition):
                return False
        elif key == "$nor":
            if any(matches_selector(doc, sub) for sub in condition):
                return False
        elif key == "$not":
            if matches_selector(doc, condition):
                return False
        elif not _match_condition(_lookup(doc, key), condition):
            return False
    return True


def _match_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        return all(_apply_operator(value, op, arg) for op, arg in condition.items())
    if isinstance(condition, dict):
        return isinstance(value, dict) and matches_selector(value, condition)
    return value is not _MISSING and value == condition


def _apply_operator(value: Any, op: str, arg: Any) -> bool:
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if value is _MISSING:
        return False
    if op == "$eq":
        return value == arg
    if op == "$ne":
        return value != arg
    if op == "$in":
        return value in arg
    if op == "$nin":
        return value not in arg
    if op == "$regex":
        try:
            pattern = re.compile(arg)
        except (re.error, TypeError) as exc:
            raise RequestValidationError("query", f"Invalid $regex pattern {arg!r}: {exc}") from exc
        return isinstance(value, str) and pattern.search(value) is not None
    if op == "$not":
        return not _match_condition(value, arg)
    if op == "$size":
        return isinstance(value, list) and len(value) == arg
    if op == "$all":
        return isinstance(value, list) and all(item in value for item in arg)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        left, right = _collation_key(value), _collation_key(arg)
        if op == "$gt":
            return left > right
        if op == "$gte":
            return left >= right
        if op == "$lt":
            return left < right
        return left <= right
    raise RequestValidationError("query", f"Unsupported selector operator: {op}")
