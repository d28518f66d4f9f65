"""Pydantic schemas for the bulk API request and response bodies.

Pydantic models are used only at the HTTP boundary.  Request bodies use
the camelCase keys the web client sends (``receiptIds``) while accepting
snake_case too; responses are built from the service dataclasses in
``receiptbox.models.filters`` via ``from_attributes``.

The services never see these models: routes convert them into plain
ids / mappings / ``BulkFilter`` before calling in, so validation of
filter contents stays in ``receiptbox.services.filter_compiler``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import ExportFormat


# ---------------------------------------------------------------------------
# Requests


class BulkIdsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    receipt_ids: List[str] = Field(default_factory=list, alias="receiptIds")


class BulkUpdateRequest(BulkIdsRequest):
    # Sparse; checked field by field in mutation_service.validate_update
    updates: Dict[str, Any] = Field(default_factory=dict)


class BulkDeleteRequest(BulkIdsRequest):
    pass


class BulkExportRequest(BulkIdsRequest):
    format: str = ExportFormat.CSV.value
    include_analytics: bool = Field(default=False, alias="includeAnalytics")

    @field_validator("format", mode="before")
    @classmethod
    def _lower_format(cls, v):
        return v.lower() if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Responses


class ReceiptProjectionRead(BaseModel):
    id: str
    merchant: str
    total: float
    purchase_date: datetime
    image_url: str
    category: Optional[str] = None
    subcategory: Optional[str] = None
    confidence_score: Optional[float] = None
    summary: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BulkFilterResultRead(BaseModel):
    receipts: List[ReceiptProjectionRead]
    total_count: int
    filtered_count: int
    applied_filters: Dict[str, Any]

    model_config = ConfigDict(from_attributes=True)


class BulkItemErrorRead(BaseModel):
    receipt_id: str
    error: str

    model_config = ConfigDict(from_attributes=True)


class BulkOperationResultRead(BaseModel):
    success: bool
    processed_count: int
    success_count: int
    error_count: int
    errors: List[BulkItemErrorRead] = Field(default_factory=list)
    operation_id: str
    duration_ms: int

    model_config = ConfigDict(from_attributes=True)


class FilterOptionsRead(BaseModel):
    categories: List[str]
    merchants: List[str]
    date_range: Dict[str, datetime]
    amount_range: Dict[str, float]

    model_config = ConfigDict(from_attributes=True)


class CategoryStatRead(BaseModel):
    category: str
    count: int
    total: float

    model_config = ConfigDict(from_attributes=True)


class MonthlyStatRead(BaseModel):
    month: str
    count: int
    total: float

    model_config = ConfigDict(from_attributes=True)


class ReceiptStatsRead(BaseModel):
    total_receipts: int
    total_amount: float
    average_amount: float
    category_breakdown: List[CategoryStatRead] = Field(default_factory=list)
    monthly_breakdown: List[MonthlyStatRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)
