"""CouchDB implementation of the backing store."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator, Optional, Tuple, Union
from urllib.parse import quote

import requests

from ..config import CouchDBConfig
from ..constants import DEFAULT_PAGE_SIZE, DESIGN_DOC_PREFIX
from ..errors import (
    ConnectivityError,
    NotFoundError,
    SerializationError,
    error_from_reply,
    error_from_status,
)
from .base import BackingStore, Row

logger = logging.getLogger(__name__)


def _doc_path(doc_id: str) -> str:
    if doc_id.startswith(DESIGN_DOC_PREFIX):
        return DESIGN_DOC_PREFIX + quote(doc_id[len(DESIGN_DOC_PREFIX):], safe="")
    return quote(doc_id, safe="")


def _session_from_config(config: CouchDBConfig) -> requests.Session:
    session = requests.Session()
    if config.username and config.password:
        session.auth = (config.username, config.password)
    tls = config.tls
    if tls is not None and tls.enabled:
        if tls.insecure_skip_verify:
            session.verify = False
        elif tls.ca_file:
            session.verify = tls.ca_file
        if tls.cert_file and tls.key_file:
            session.cert = (tls.cert_file, tls.key_file)
        elif tls.cert_file:
            session.cert = tls.cert_file
    return session


class CouchDBBackingStore(BackingStore):
    """Persist process documents in a CouchDB database over HTTP."""

    def __init__(
        self,
        url: str,
        database: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = 30.0,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.url = url.rstrip("/")
        self.database = database
        self.timeout = timeout
        self.page_size = page_size
        self._session = session or requests.Session()

    @classmethod
    def from_config(
        cls,
        config: CouchDBConfig,
        database: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> "CouchDBBackingStore":
        """Connect to the configured database, creating it when allowed."""

        store = cls(
            config.url,
            database or config.database,
            session=session or _session_from_config(config),
            timeout=config.timeout_ms / 1000 if config.timeout_ms > 0 else None,
            page_size=config.page_size,
        )
        try:
            if not store.exists():
                if not config.create_if_missing:
                    raise NotFoundError(
                        "connect", reason=f"database {store.database} does not exist"
                    )
                logger.info(f"Creating missing database {store.database}")
                store.create()
        except Exception:
            store.close()
            raise
        return store

    # ------------------------------------------------------------------
    # Helper methods
    @property
    def _db_url(self) -> str:
        return f"{self.url}/{quote(self.database, safe='')}"

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        expect_json: bool = True,
        **kwargs: Any,
    ) -> Any:
        url = f"{self._db_url}/{path}" if path else self._db_url
        try:
            resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ConnectivityError(operation, exc) from exc

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {"reason": resp.text}
            raise error_from_status(resp.status_code, operation, body)

        if not expect_json:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise SerializationError(f"{operation}: invalid JSON in response: {exc}") from exc

    # ------------------------------------------------------------------
    # Database management
    def exists(self) -> bool:
        try:
            self._request("HEAD", "", "database_exists", expect_json=False)
        except NotFoundError:
            return False
        return True

    def create(self) -> None:
        self._request("PUT", "", "create_database")

    def destroy(self) -> None:
        self._request("DELETE", "", "delete_database")

    def info(self) -> dict[str, Any]:
        return self._request("GET", "", "info")

    def compact(self) -> None:
        self._request(
            "POST",
            "_compact",
            "compact",
            headers={"Content-Type": "application/json"},
        )

    # ------------------------------------------------------------------
    # Documents
    def get(self, doc_id: str) -> dict[str, Any]:
        return self._request("GET", _doc_path(doc_id), "get")

    def put(self, doc_id: str, body: dict[str, Any]) -> str:
        try:
            payload = json.dumps(body)
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"cannot encode document {doc_id!r}: {exc}") from exc
        result = self._request(
            "PUT",
            _doc_path(doc_id),
            "put",
            data=payload,
            headers={"Content-Type": "application/json"},
        )
        return result["rev"]

    def delete(self, doc_id: str, rev: str) -> str:
        result = self._request("DELETE", _doc_path(doc_id), "delete", params={"rev": rev})
        return result.get("rev", "")

    # ------------------------------------------------------------------
    # Bulk operations
    def bulk_save(self, docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Write many documents through ``_bulk_docs``.

        Each reply entry carries either ``rev`` or ``error``/``reason``; a
        conflict on one document does not stop the others.
        """
        if not docs:
            return []
        try:
            payload = json.dumps({"docs": docs})
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"cannot encode bulk request: {exc}") from exc
        return self._request(
            "POST",
            "_bulk_docs",
            "bulk_save",
            data=payload,
            headers={"Content-Type": "application/json"},
        )

    def bulk_delete(self, docs: list[tuple[str, str]]) -> list[dict[str, Any]]:
        if not docs:
            return []
        tombstones = [{"_id": doc_id, "_rev": rev, "_deleted": True} for doc_id, rev in docs]
        return self._request("POST", "_bulk_docs", "bulk_delete", json={"docs": tombstones})

    def bulk_get(self, ids: list[str]) -> list[Row]:
        """Fetch many documents in one ``_all_docs`` request, in ``ids`` order."""
        if not ids:
            return []
        result = self._request(
            "POST",
            "_all_docs",
            "bulk_get",
            params={"include_docs": "true"},
            json={"keys": ids},
        )
        return [self._row(raw, "bulk_get") for raw in result.get("rows", [])]

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
        """Stream ``_find`` results, following bookmarks page by page."""

        request: dict[str, Any] = {"selector": selector}
        if fields:
            request["fields"] = fields
        if sort:
            request["sort"] = sort
        if skip:
            request["skip"] = skip
        if use_index:
            request["use_index"] = use_index

        # 0 means no limit
        remaining = limit or None
        bookmark = None
        while True:
            page_size = self.page_size if remaining is None else min(self.page_size, remaining)
            body = dict(request, limit=page_size)
            if bookmark:
                body.pop("skip", None)
                body["bookmark"] = bookmark
            result = self._request("POST", "_find", "query", json=body)
            if result.get("warning"):
                logger.debug(f"_find warning: {result['warning']}")
            docs = result.get("docs", [])
            for doc in docs:
                yield Row(id=doc.get("_id") if isinstance(doc, dict) else None, doc=doc)
            if remaining is not None:
                remaining -= len(docs)
                if remaining <= 0:
                    return
            bookmark = result.get("bookmark")
            if len(docs) < page_size or not bookmark:
                return

    def enumerate_all(self, include_docs: bool = True) -> Iterator[Row]:
        """Stream ``_all_docs`` in key order, one page at a time."""

        startkey: Optional[str] = None
        while True:
            params: dict[str, Any] = {
                "include_docs": "true" if include_docs else "false",
                "limit": self.page_size,
            }
            if startkey is not None:
                params["startkey"] = json.dumps(startkey)
                params["skip"] = 1
            result = self._request("GET", "_all_docs", "enumerate_all", params=params)
            rows = result.get("rows", [])
            for raw in rows:
                yield self._row(raw, "enumerate_all")
            if len(rows) < self.page_size:
                return
            startkey = rows[-1].get("key")

    @staticmethod
    def _row(raw: dict[str, Any], operation: str) -> Row:
        error = None
        value = raw.get("value")
        if raw.get("error"):
            error = error_from_reply(
                operation, str(raw["error"]), str(raw.get("reason", raw.get("key", "")))
            )
        elif isinstance(value, dict) and value.get("deleted"):
            error = NotFoundError(operation, reason="deleted")
        return Row(
            id=raw.get("id"),
            key=raw.get("key"),
            value=value,
            doc=raw.get("doc"),
            error=error,
        )

    # ------------------------------------------------------------------
    # Indexes
    def create_index(self, definition: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "_index", "create_index", json=definition)

    def list_indexes(self) -> list[dict[str, Any]]:
        return self._request("GET", "_index", "list_indexes").get("indexes", [])

    def delete_index(self, design_doc: str, name: str, index_type: str = "json") -> None:
        ddoc = design_doc[len(DESIGN_DOC_PREFIX):] if design_doc.startswith(DESIGN_DOC_PREFIX) else design_doc
        path = f"_index/{quote(ddoc, safe='')}/{index_type}/{quote(name, safe='')}"
        self._request("DELETE", path, "delete_index")

    def close(self) -> None:
        self._session.close()


# ----------------------------------------------------------------------
# Server-level helpers
def _server_session(url: str) -> Tuple[str, requests.Session]:
    return url.rstrip("/"), requests.Session()


def create_database(url: str, name: str, timeout: Union[float, None] = 30.0) -> None:
    """Create a database on the server at ``url``."""
    base, session = _server_session(url)
    with session:
        CouchDBBackingStore(base, name, session=session, timeout=timeout).create()


def delete_database(url: str, name: str, timeout: Union[float, None] = 30.0) -> None:
    """Delete a database and all of its documents."""
    base, session = _server_session(url)
    with session:
        CouchDBBackingStore(base, name, session=session, timeout=timeout).destroy()


def database_exists(url: str, name: str, timeout: Union[float, None] = 30.0) -> bool:
    """Return True when the database exists on the server."""
    base, session = _server_session(url)
    with session:
        return CouchDBBackingStore(base, name, session=session, timeout=timeout).exists()
