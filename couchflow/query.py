"""State-filtered and full reads over the backing store."""

from __future__ import annotations

import logging
from contextlib import closing
from typing import Any, Dict, List, Optional

from .constants import DESIGN_DOC_PREFIX
from .errors import SerializationError
from .models import MangoQuery, ProcessDocument, ProcessState
from .store.base import BackingStore

logger = logging.getLogger(__name__)

_OPERATORS = {
    "eq": None,
    "=": None,
    "==": None,
    "ne": "$ne",
    "!=": "$ne",
    "gt": "$gt",
    ">": "$gt",
    "gte": "$gte",
    ">=": "$gte",
    "lt": "$lt",
    "<": "$lt",
    "lte": "$lte",
    "<=": "$lte",
    "regex": "$regex",
    "~=": "$regex",
    "in": "$in",
    "nin": "$nin",
    "exists": "$exists",
}


class StateQueryEngine:
    """Read process documents back out of the store.

    Unlike the bulk exporter, these reads abort on the first row that cannot
    be scanned: callers rely on getting the complete set.
    """

    def __init__(self, store: BackingStore) -> None:
        self._store = store

    def list_by_state(self, state: ProcessState | str) -> list[ProcessDocument]:
        """Return every document currently in ``state``, in store order."""
        value = state.value if isinstance(state, ProcessState) else str(state)
        docs = []
        with closing(self._store.query({"state": value})) as rows:
            for row in rows:
                docs.append(ProcessDocument.from_store(row.scan_doc()))
        logger.debug(f"Found {len(docs)} documents in state {value}")
        return docs

    def list_all(self) -> list[ProcessDocument]:
        """Return every process document, skipping design documents."""
        docs = []
        with closing(self._store.enumerate_all(include_docs=True)) as rows:
            for row in rows:
                if row.id is None:
                    raise SerializationError("row without an id in document enumeration")
                if row.id.startswith(DESIGN_DOC_PREFIX):
                    continue
                docs.append(ProcessDocument.from_store(row.scan_doc()))
        return docs

    def find(self, query: MangoQuery) -> list[dict[str, Any]]:
        """Run a Mango query and return the raw document bodies."""
        with closing(
            self._store.query(
                query.selector,
                fields=query.fields,
                sort=query.sort,
                limit=query.limit,
                skip=query.skip,
                use_index=query.use_index,
            )
        ) as rows:
            return [row.scan_doc() for row in rows]

    def find_documents(self, query: MangoQuery) -> list[ProcessDocument]:
        return [ProcessDocument.from_store(body) for body in self.find(query)]

    def count(self, selector: dict[str, Any]) -> int:
        """Count the documents matching ``selector``."""
        total = 0
        with closing(self._store.query(selector, fields=["_id"])) as rows:
            for _ in rows:
                total += 1
        return total


class QueryBuilder:
    """Fluent construction of Mango queries.

    Example:
        query = (
            QueryBuilder()
            .where("state", "eq", "failed")
            .where("metadata.retries", ">", 3)
            .sort("updated_at", "desc")
            .limit(50)
            .build()
        )
    """

    def __init__(self) -> None:
        self._conditions: List[Dict[str, Any]] = []
        self._current: List[Dict[str, Any]] = []
        self._logical_op = "and"
        self._fields: Optional[List[str]] = None
        self._sort: List[Dict[str, str]] = []
        self._limit: Optional[int] = None
        self._skip: Optional[int] = None
        self._use_index: Optional[str] = None

    def where(self, field: str, operator: str, value: Any) -> "QueryBuilder":
        """Add a condition. Unknown operators fall back to equality."""
        mango_op = _OPERATORS.get(operator)
        if mango_op is None:
            condition = {field: value}
        else:
            condition = {field: {mango_op: value}}
        self._current.append(condition)
        return self

    def _flush(self) -> None:
        if self._current:
            self._conditions.extend(self._current)
            self._current = []

    def and_(self) -> "QueryBuilder":
        self._flush()
        self._logical_op = "and"
        return self

    def or_(self) -> "QueryBuilder":
        self._flush()
        self._logical_op = "or"
        return self

    def select(self, *fields: str) -> "QueryBuilder":
        self._fields = list(fields)
        return self

    def sort(self, field: str, direction: str = "asc") -> "QueryBuilder":
        self._sort.append({field: direction})
        return self

    def limit(self, n: int) -> "QueryBuilder":
        self._limit = n
        return self

    def skip(self, n: int) -> "QueryBuilder":
        self._skip = n
        return self

    def use_index(self, index_name: str) -> "QueryBuilder":
        self._use_index = index_name
        return self

    def build(self) -> MangoQuery:
        self._flush()
        if not self._conditions:
            selector: Dict[str, Any] = {}
        elif len(self._conditions) == 1:
            selector = dict(self._conditions[0])
        else:
            selector = {f"${self._logical_op}": list(self._conditions)}

        return MangoQuery(
            selector=selector,
            fields=self._fields,
            sort=self._sort or None,
            limit=self._limit,
            skip=self._skip,
            use_index=self._use_index,
        )
