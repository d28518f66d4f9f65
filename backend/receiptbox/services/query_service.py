"""Read-side bulk operations: filtering, id selection, options and statistics.

Every statement issued here is scoped by ``Receipt.user_id == owner_id``
in addition to whatever the compiled filter contributes.  Filtering is
advisory only: mutations never act on "whatever the filter matches" but
on an explicit id list (see ``mutation_service``).

Storage failures are logged and re-raised as ``FilterError`` /
``StatsError`` with a generic message; validation errors from the
filter compiler propagate unchanged.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from receiptbox.core.config import settings
from receiptbox.core.exceptions import FilterError, StatsError
from receiptbox.models.filters import (
    BulkFilter,
    BulkFilterResult,
    CategoryStat,
    FilterOptions,
    MonthlyStat,
    ReceiptProjection,
    ReceiptStats,
)
from receiptbox.models.tables import Receipt
from receiptbox.services.cache import FilterCache, NullFilterCache, cache_key
from receiptbox.services.filter_compiler import compile_filter, to_sqlalchemy, validate_filter
from receiptbox.utils.helpers import utcnow

logger = logging.getLogger(__name__)

FilterInput = Union[BulkFilter, Mapping[str, Any], None]

PROJECTION_COLUMNS = (
    Receipt.id,
    Receipt.merchant,
    Receipt.total,
    Receipt.purchase_date,
    Receipt.category,
    Receipt.subcategory,
    Receipt.confidence_score,
    Receipt.summary,
    Receipt.image_url,
)

UNCATEGORIZED = "Uncategorized"
MONTHLY_BREAKDOWN_MONTHS = 12


def projection_from_row(row: Any) -> ReceiptProjection:
    return ReceiptProjection(
        id=row.id,
        merchant=row.merchant,
        total=float(row.total) if row.total is not None else 0.0,
        purchase_date=row.purchase_date,
        image_url=row.image_url,
        category=row.category,
        subcategory=row.subcategory,
        confidence_score=float(row.confidence_score) if row.confidence_score is not None else None,
        summary=row.summary,
    )


def month_bucket(dialect_name: str, column: Any = Receipt.purchase_date):
    """Return a ``YYYY-MM`` string expression for ``column`` on the given dialect."""
    if dialect_name == "sqlite":
        return func.strftime("%Y-%m", column)
    if dialect_name in ("mysql", "mariadb"):
        return func.date_format(column, "%Y-%m")
    return func.to_char(column, "YYYY-MM")


# ---------------------------------------------------------------------------
# Cache (de)serialisation


def _encode_filter_result(result: BulkFilterResult) -> Dict[str, Any]:
    data = asdict(result)
    for receipt in data["receipts"]:
        receipt["purchase_date"] = receipt["purchase_date"].isoformat()
    return data


def _decode_filter_result(data: Dict[str, Any]) -> BulkFilterResult:
    receipts = []
    for item in data["receipts"]:
        item = dict(item)
        item["purchase_date"] = dt.datetime.fromisoformat(item["purchase_date"])
        receipts.append(ReceiptProjection(**item))
    return BulkFilterResult(
        receipts=receipts,
        total_count=data["total_count"],
        filtered_count=data["filtered_count"],
        applied_filters=data["applied_filters"],
    )


def _encode_options(options: FilterOptions) -> Dict[str, Any]:
    data = asdict(options)
    data["date_range"] = {k: v.isoformat() for k, v in options.date_range.items()}
    return data


def _decode_options(data: Dict[str, Any]) -> FilterOptions:
    return FilterOptions(
        categories=list(data["categories"]),
        merchants=list(data["merchants"]),
        date_range={k: dt.datetime.fromisoformat(v) for k, v in data["date_range"].items()},
        amount_range=dict(data["amount_range"]),
    )


class BulkQueryService:
    """Execute compiled filters against the receipts table for one owner at a time."""

    def __init__(self, db: AsyncSession, cache: Optional[FilterCache] = None, cache_ttl: Optional[int] = None) -> None:
        self.db = db
        self.cache: FilterCache = cache if cache is not None else NullFilterCache()
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.FILTER_CACHE_TTL_SECONDS

    def _dialect_name(self) -> str:
        return self.db.get_bind().dialect.name

    async def filter_receipts(self, owner_id: str, filters: FilterInput = None) -> BulkFilterResult:
        """Return the owner's receipts matching ``filters``, newest purchase first."""
        validated = validate_filter(filters)
        predicate = compile_filter(validated)
        applied = validated.to_dict()

        key = cache_key(owner_id, "filter", applied)
        cached = await self.cache.get(key)
        if cached is not None:
            return _decode_filter_result(cached)

        try:
            total_count = (
                await self.db.execute(select(func.count(Receipt.id)).where(Receipt.user_id == owner_id))
            ).scalar_one()
            query = (
                select(*PROJECTION_COLUMNS)
                .where(Receipt.user_id == owner_id, to_sqlalchemy(predicate))
                .order_by(Receipt.purchase_date.desc(), Receipt.id)
            )
            rows = (await self.db.execute(query)).all()
        except Exception as exc:
            logger.exception("Error filtering receipts for owner %s", owner_id)
            raise FilterError("Failed to filter receipts") from exc

        receipts = [projection_from_row(row) for row in rows]
        result = BulkFilterResult(
            receipts=receipts,
            total_count=int(total_count or 0),
            filtered_count=len(receipts),
            applied_filters=applied,
        )
        await self.cache.set(key, _encode_filter_result(result), self.cache_ttl)
        return result

    async def get_filtered_receipt_ids(self, owner_id: str, filters: FilterInput = None) -> List[str]:
        """Return only the ids matching ``filters`` (used to materialise a selection)."""
        predicate = compile_filter(filters)
        try:
            query = (
                select(Receipt.id)
                .where(Receipt.user_id == owner_id, to_sqlalchemy(predicate))
                .order_by(Receipt.purchase_date.desc(), Receipt.id)
            )
            result = await self.db.execute(query)
            return list(result.scalars().all())
        except Exception as exc:
            logger.exception("Error getting filtered receipt IDs for owner %s", owner_id)
            raise FilterError("Failed to get filtered receipt IDs") from exc

    async def get_filter_options(self, owner_id: str) -> FilterOptions:
        """Distinct categories / merchants and the date and amount bounds of the owner's receipts.

        With no receipts the ranges are degenerate: both dates are "now"
        and both amounts are 0.
        """
        key = cache_key(owner_id, "options")
        cached = await self.cache.get(key)
        if cached is not None:
            return _decode_options(cached)

        owned = Receipt.user_id == owner_id
        try:
            categories = (
                await self.db.execute(
                    select(Receipt.category)
                    .where(owned, Receipt.category.is_not(None))
                    .distinct()
                    .order_by(Receipt.category)
                )
            ).scalars().all()
            merchants = (
                await self.db.execute(
                    select(Receipt.merchant).where(owned).distinct().order_by(Receipt.merchant)
                )
            ).scalars().all()
            bounds = (
                await self.db.execute(
                    select(
                        func.min(Receipt.purchase_date),
                        func.max(Receipt.purchase_date),
                        func.min(Receipt.total),
                        func.max(Receipt.total),
                    ).where(owned)
                )
            ).one()
        except Exception as exc:
            logger.exception("Error getting filter options for owner %s", owner_id)
            raise FilterError("Failed to get filter options") from exc

        min_date, max_date, min_total, max_total = bounds
        now = utcnow()
        options = FilterOptions(
            categories=[c for c in categories if c],
            merchants=[m for m in merchants if m],
            date_range={"min": min_date or now, "max": max_date or now},
            amount_range={
                "min": float(min_total) if min_total is not None else 0.0,
                "max": float(max_total) if max_total is not None else 0.0,
            },
        )
        await self.cache.set(key, _encode_options(options), self.cache_ttl)
        return options

    async def get_receipt_stats(self, owner_id: str, filters: FilterInput = None) -> ReceiptStats:
        """Totals plus per-category and per-month (last 12, newest first) breakdowns."""
        predicate = compile_filter(filters)
        where = (Receipt.user_id == owner_id, to_sqlalchemy(predicate))
        try:
            count, total, average = (
                await self.db.execute(
                    select(func.count(Receipt.id), func.sum(Receipt.total), func.avg(Receipt.total)).where(*where)
                )
            ).one()

            receipt_count = func.count(Receipt.id)
            category_rows = (
                await self.db.execute(
                    select(Receipt.category, receipt_count, func.sum(Receipt.total))
                    .where(*where)
                    .group_by(Receipt.category)
                    .order_by(receipt_count.desc(), Receipt.category)
                )
            ).all()

            month = month_bucket(self._dialect_name()).label("month")
            monthly_rows = (
                await self.db.execute(
                    select(month, receipt_count, func.sum(Receipt.total))
                    .where(*where)
                    .group_by(month)
                    .order_by(month.desc())
                    .limit(MONTHLY_BREAKDOWN_MONTHS)
                )
            ).all()
        except Exception as exc:
            logger.exception("Error getting receipt stats for owner %s", owner_id)
            raise StatsError("Failed to get receipt statistics") from exc

        return ReceiptStats(
            total_receipts=int(count or 0),
            total_amount=float(total or 0),
            average_amount=float(average or 0),
            category_breakdown=[
                CategoryStat(category=cat or UNCATEGORIZED, count=int(n), total=float(s or 0))
                for cat, n, s in category_rows
            ],
            monthly_breakdown=[
                MonthlyStat(month=str(m), count=int(n), total=float(s or 0))
                for m, n, s in monthly_rows
            ],
        )


__all__ = ["BulkQueryService", "PROJECTION_COLUMNS", "projection_from_row", "month_bucket"]
