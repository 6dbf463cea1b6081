"""Exception hierarchy for couchflow.

Store failures carry the operation that failed together with the HTTP
status and CouchDB error body, so callers can tell a revision conflict from
a missing document from a connectivity problem.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class CouchflowError(Exception):
    """Base exception for all couchflow errors."""


class StoreError(CouchflowError):
    """A backing store operation was rejected."""

    def __init__(
        self,
        operation: str,
        status_code: int = 0,
        error: str = "",
        reason: str = "",
    ) -> None:
        self.operation = operation
        self.status_code = status_code
        self.error = error
        self.reason = reason
        super().__init__(str(self))

    def __str__(self) -> str:
        return (
            f"{self.operation} failed (status {self.status_code}): "
            f"{self.error} - {self.reason}"
        )

    @property
    def is_conflict(self) -> bool:
        return self.status_code in (409, 412)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code in (401, 403)


class NotFoundError(StoreError):
    """The document, index or database does not exist."""

    def __init__(self, operation: str, status_code: int = 404, error: str = "not_found", reason: str = "missing") -> None:
        super().__init__(operation, status_code, error, reason)


class ConflictError(StoreError):
    """Revision mismatch or duplicate create."""

    def __init__(self, operation: str, status_code: int = 409, error: str = "conflict", reason: str = "Document update conflict.") -> None:
        super().__init__(operation, status_code, error, reason)


class StorePermissionError(StoreError):
    """The store refused the request for lack of authorization."""


class RequestValidationError(StoreError):
    """Malformed request: bad descriptor, missing field or a 400 from the store."""

    def __init__(self, operation: str, reason: str, status_code: int = 400, error: str = "bad_request") -> None:
        super().__init__(operation, status_code, error, reason)


class ConnectivityError(CouchflowError):
    """The store could not be reached."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: cannot reach store ({cause})")


class SerializationError(CouchflowError):
    """A document body could not be encoded or decoded."""


def error_from_status(
    status_code: int, operation: str, body: Optional[Mapping[str, Any]] = None
) -> StoreError:
    """Map an HTTP status and CouchDB error body onto the error taxonomy."""

    body = body or {}
    error = str(body.get("error", ""))
    reason = str(body.get("reason", ""))

    if status_code == 404:
        return NotFoundError(operation, status_code, error or "not_found", reason or "missing")
    if status_code in (409, 412):
        return ConflictError(operation, status_code, error or "conflict", reason or "conflict")
    if status_code in (401, 403):
        return StorePermissionError(operation, status_code, error, reason)
    if status_code == 400:
        return RequestValidationError(operation, reason, status_code, error or "bad_request")
    return StoreError(operation, status_code, error, reason)


def error_from_reply(operation: str, error: str, reason: str = "") -> StoreError:
    """Map a per-row error from a bulk or ``_all_docs`` reply onto the taxonomy."""

    if error == "not_found":
        return NotFoundError(operation, 404, error, reason or "missing")
    if error == "conflict":
        return ConflictError(operation, 409, error, reason or "conflict")
    if error in ("forbidden", "unauthorized"):
        return StorePermissionError(operation, 403 if error == "forbidden" else 401, error, reason)
    return StoreError(operation, 0, error, reason)
