"""Domain types for bulk filtering and bulk operations.

These are plain dataclasses rather than Pydantic models: they are built
by the HTTP layer (from ``receiptbox.models.schemas``), by tests, or by
other services, and validated by
``receiptbox.services.filter_compiler.validate_filter``.  Keeping them
free of any validation library means the compiler can be exercised
purely on inputs and outputs.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

Number = Union[int, float, Decimal]


@dataclass(frozen=True)
class DateRange:
    start: Optional[dt.datetime] = None
    end: Optional[dt.datetime] = None

    def is_empty(self) -> bool:
        return self.start is None and self.end is None


@dataclass(frozen=True)
class NumericRange:
    min: Optional[Number] = None
    max: Optional[Number] = None

    def is_empty(self) -> bool:
        return self.min is None and self.max is None


@dataclass(frozen=True)
class BulkFilter:
    """A user-supplied description of a subset of one owner's receipts.

    Every field is optional; ``None`` (or an empty tuple) means "no
    constraint on this dimension".
    """

    date_range: Optional[DateRange] = None
    amount_range: Optional[NumericRange] = None
    categories: Tuple[str, ...] = ()
    merchants: Tuple[str, ...] = ()
    confidence_score: Optional[NumericRange] = None
    has_summary: Optional[bool] = None
    search_query: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly dict holding only the constrained dimensions."""
        out: Dict[str, Any] = {}
        if self.date_range is not None and not self.date_range.is_empty():
            out["date_range"] = {
                "start": self.date_range.start.isoformat() if self.date_range.start else None,
                "end": self.date_range.end.isoformat() if self.date_range.end else None,
            }
        for name in ("amount_range", "confidence_score"):
            rng: Optional[NumericRange] = getattr(self, name)
            if rng is not None and not rng.is_empty():
                out[name] = {
                    "min": float(rng.min) if rng.min is not None else None,
                    "max": float(rng.max) if rng.max is not None else None,
                }
        if self.categories:
            out["categories"] = list(self.categories)
        if self.merchants:
            out["merchants"] = list(self.merchants)
        if self.has_summary is not None:
            out["has_summary"] = self.has_summary
        if self.search_query is not None and self.search_query.strip():
            out["search_query"] = self.search_query
        return out


@dataclass(frozen=True)
class BulkUpdate:
    """Sparse partial update; ``None`` fields are left untouched."""

    category: Optional[str] = None
    subcategory: Optional[str] = None
    merchant: Optional[str] = None
    summary: Optional[str] = None

    def values(self) -> Dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ReceiptProjection:
    id: str
    merchant: str
    total: float
    purchase_date: dt.datetime
    image_url: str
    category: Optional[str] = None
    subcategory: Optional[str] = None
    confidence_score: Optional[float] = None
    summary: Optional[str] = None


@dataclass
class BulkFilterResult:
    receipts: List[ReceiptProjection]
    total_count: int
    filtered_count: int
    applied_filters: Dict[str, Any]


@dataclass
class BulkItemError:
    receipt_id: str
    error: str


@dataclass
class BulkOperationResult:
    success: bool
    processed_count: int
    success_count: int
    error_count: int
    operation_id: str
    duration_ms: int
    errors: List[BulkItemError] = field(default_factory=list)


@dataclass
class FilterOptions:
    categories: List[str]
    merchants: List[str]
    date_range: Dict[str, dt.datetime]
    amount_range: Dict[str, float]


@dataclass
class CategoryStat:
    category: str
    count: int
    total: float


@dataclass
class MonthlyStat:
    month: str  # YYYY-MM
    count: int
    total: float


@dataclass
class ReceiptStats:
    total_receipts: int
    total_amount: float
    average_amount: float
    category_breakdown: List[CategoryStat] = field(default_factory=list)
    monthly_breakdown: List[MonthlyStat] = field(default_factory=list)
