"""Domain exceptions raised by the bulk filtering and bulk operation services.

Each exception carries the HTTP status code the API layer should answer
with.  Storage failures are always wrapped in a ``StorageError`` subclass
whose message is safe to show to callers; the original driver error is
chained as ``__cause__`` and logged where it is caught.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List


class BulkOperationError(Exception):
    """Base class for all bulk filter / bulk operation errors."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(BulkOperationError):
    """Filter, update or export input has an invalid shape or range."""

    def __init__(self, errors: Iterable[Dict[str, str]] | str) -> None:
        if isinstance(errors, str):
            errors = [{"field": "", "message": errors}]
        self.errors: List[Dict[str, str]] = list(errors)
        message = "; ".join(
            f"{e['field']}: {e['message']}" if e.get("field") else e["message"]
            for e in self.errors
        )
        super().__init__(message or "Invalid input")

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "details": self.errors}


class BatchSizeError(BulkOperationError):
    """The receipt id list is empty or over the batch ceiling."""


class InvalidIdentifierError(BulkOperationError):
    """One or more ids do not resolve to a receipt owned by the caller.

    "Does not exist" and "belongs to someone else" are reported the same
    way.
    """

    def __init__(self, invalid_ids: Iterable[str]) -> None:
        self.invalid_ids = list(invalid_ids)
        super().__init__(f"Invalid receipt IDs: {', '.join(self.invalid_ids)}")

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "invalid_ids": self.invalid_ids}


class StorageError(BulkOperationError):
    """The data store failed while serving a bulk request."""

    status_code = 500


class FilterError(StorageError):
    pass


class StatsError(StorageError):
    pass


class ExportError(StorageError):
    pass


__all__ = [
    "BulkOperationError",
    "ValidationError",
    "BatchSizeError",
    "InvalidIdentifierError",
    "StorageError",
    "FilterError",
    "StatsError",
    "ExportError",
]
