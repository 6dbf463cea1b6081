"""couchflow: audit-tracked workflow state on top of CouchDB."""

from .errors import (
    ConflictError,
    ConnectivityError,
    CouchflowError,
    NotFoundError,
    RequestValidationError,
    SerializationError,
    StoreError,
    StorePermissionError,
)
from .export import BulkExporter, download_all_documents, sanitize_filename
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
    StateChange,
)
from .query import QueryBuilder, StateQueryEngine
from .service import ProcessRegistry
from .store import get_store

__version__ = "0.1.0"
__all__ = [
    "BulkExporter",
    "BulkResult",
    "ConflictError",
    "ConnectivityError",
    "CouchflowError",
    "DatabaseInfo",
    "DocumentLifecycleManager",
    "ExportResult",
    "IndexDescriptor",
    "IndexInfo",
    "IndexManager",
    "MangoQuery",
    "NotFoundError",
    "ProcessDocument",
    "ProcessRegistry",
    "ProcessState",
    "QueryBuilder",
    "RequestValidationError",
    "SaveResult",
    "SerializationError",
    "StateChange",
    "StateQueryEngine",
    "StoreError",
    "StorePermissionError",
    "download_all_documents",
    "get_store",
    "sanitize_filename",
]
