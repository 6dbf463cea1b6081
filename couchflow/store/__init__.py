"""Backing store implementations for couchflow."""

from __future__ import annotations

import os
from typing import Callable, Iterable, Optional

from ..config import CouchflowConfig, load_config
from .base import BackingStore, Row
from .couchdb import (
    CouchDBBackingStore,
    create_database,
    database_exists,
    delete_database,
)
from .inmemory import InMemoryBackingStore, matches_selector


def get_store(
    backend: Optional[str] = None,
    config: Optional[CouchflowConfig] = None,
    database: Optional[str] = None,
) -> BackingStore:
    """Factory function to obtain a backing store bound to one database.

    The backend is selected from ``backend``, the ``COUCHFLOW_STORE``
    environment variable, or the loaded configuration. Every call returns a
    new store; callers own it and must close it.
    """

    config = config or load_config()
    backend = (backend or os.getenv("COUCHFLOW_STORE") or config.store.backend).lower()

    if backend == "inmemory":
        return InMemoryBackingStore(database or config.couchdb.database)
    elif backend == "couchdb":
        return CouchDBBackingStore.from_config(config.couchdb, database=database)
    else:
        raise ValueError(f"Unsupported store backend: {backend}")


def store_connector(
    backend: Optional[str] = None,
    config: Optional[CouchflowConfig] = None,
    stores: Iterable[BackingStore] = (),
) -> Callable[[str], BackingStore]:
    """Return a callable opening a store for a named database.

    Connections made through it never create a missing database. In-memory
    databases passed in ``stores`` are reached through a new handle on the
    same documents, so closing what ``connect`` returns leaves them open.
    """

    config = config or load_config()
    existing_only = config.model_copy(
        update={"couchdb": config.couchdb.model_copy(update={"create_if_missing": False})}
    )
    shared = {store.name: store for store in stores if isinstance(store, InMemoryBackingStore)}

    def connect(database: str) -> BackingStore:
        if database in shared:
            return shared[database].open_handle()
        return get_store(backend, config=existing_only, database=database)

    return connect


__all__ = [
    "BackingStore",
    "CouchDBBackingStore",
    "InMemoryBackingStore",
    "Row",
    "create_database",
    "database_exists",
    "delete_database",
    "get_store",
    "matches_selector",
    "store_connector",
]
