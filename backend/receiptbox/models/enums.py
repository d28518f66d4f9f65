"""Enumeration types used throughout the receipt API.

When modifying these enums you should update any corresponding
database columns or request validators so that new values are
accepted where appropriate.
"""

from enum import Enum


class ReceiptStatus(str, Enum):
    """Processing states for a receipt."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExportFormat(str, Enum):
    """Output formats supported by the export formatter."""

    CSV = "csv"
    JSON = "json"
    PDF = "pdf"


class BulkOperationType(str, Enum):
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
