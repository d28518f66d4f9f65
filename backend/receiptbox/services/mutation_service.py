"""Write-side bulk operations on an explicit list of receipt ids.

Mutations never take a filter.  The caller must first materialise a
concrete id list (typically via ``BulkQueryService.get_filtered_receipt_ids``)
and every call re-validates ownership of that list before touching any
row:

1. reject an empty list or one longer than ``MAX_BULK_RECEIPTS``;
2. look up ``{id in ids, user_id = owner}``; any id missing from that
   result is invalid (unknown or owned by someone else, deliberately
   indistinguishable) and the whole batch is rejected;
3. run one UPDATE / DELETE scoped by the id list *and* the owner again.

There is no transaction spanning steps 2 and 3.  A row removed in between
simply lowers ``success_count``.

Preflight errors are raised.  Any other failure during update / delete is
converted into a ``BulkOperationResult`` with ``success=False`` and one
error entry per requested id, because the storage call is a single batch
statement and cannot report per-row causes.
"""

from __future__ import annotations

import logging
import time
from typing import Any, List, Mapping, Optional, Sequence, Union

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from receiptbox.core.config import settings
from receiptbox.core.exceptions import (
    BatchSizeError,
    BulkOperationError,
    ExportError,
    InvalidIdentifierError,
    ValidationError,
)
from receiptbox.core.observability import sentry_breadcrumb, sentry_capture, sentry_metric_inc
from receiptbox.models.enums import BulkOperationType
from receiptbox.models.filters import (
    BulkFilterResult,
    BulkItemError,
    BulkOperationResult,
    BulkUpdate,
)
from receiptbox.models.tables import Receipt
from receiptbox.services.cache import FilterCache, NullFilterCache
from receiptbox.services.query_service import PROJECTION_COLUMNS, projection_from_row
from receiptbox.utils.helpers import generate_operation_id, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("category", "subcategory", "merchant", "summary")


def validate_update(updates: Union[BulkUpdate, Mapping[str, Any], None]) -> BulkUpdate:
    """Return a ``BulkUpdate`` holding at least one field, or raise ``ValidationError``."""
    if isinstance(updates, BulkUpdate):
        values: Mapping[str, Any] = updates.values()
    elif isinstance(updates, Mapping):
        values = updates
    else:
        raise ValidationError([{"field": "updates", "message": "must be an object"}])

    problems = []
    for key, value in values.items():
        if key not in UPDATABLE_FIELDS:
            problems.append({"field": str(key), "message": "field cannot be bulk updated"})
        elif value is not None and not isinstance(value, str):
            problems.append({"field": key, "message": "must be a string"})
    if isinstance(values.get("merchant"), str) and not values["merchant"].strip():
        problems.append({"field": "merchant", "message": "must not be blank"})
    if problems:
        raise ValidationError(problems)

    cleaned = BulkUpdate(**{k: v for k, v in values.items() if v is not None})
    if not cleaned.values():
        raise ValidationError([{"field": "updates", "message": "at least one field is required"}])
    return cleaned


class BulkMutationService:
    """Update, delete and export-preparation over caller-selected receipt ids."""

    def __init__(self, db: AsyncSession, cache: Optional[FilterCache] = None, max_batch: Optional[int] = None) -> None:
        self.db = db
        self.cache: FilterCache = cache if cache is not None else NullFilterCache()
        self.max_batch = max_batch if max_batch is not None else settings.MAX_BULK_RECEIPTS

    # --- Preflight -----------------------------------------------------

    def _check_batch_size(self, receipt_ids: Sequence[str], verb: str) -> None:
        if not receipt_ids:
            raise BatchSizeError("No receipt IDs provided")
        if len(receipt_ids) > self.max_batch:
            raise BatchSizeError(f"Cannot {verb} more than {self.max_batch} receipts at once")
        if any(not isinstance(rid, str) for rid in receipt_ids):
            raise ValidationError([{"field": "receipt_ids", "message": "must be a list of strings"}])

    async def _validate_ownership(self, owner_id: str, receipt_ids: Sequence[str]) -> List[str]:
        """Return the distinct requested ids, all verified to belong to ``owner_id``."""
        requested = list(dict.fromkeys(receipt_ids))
        result = await self.db.execute(
            select(Receipt.id).where(Receipt.id.in_(requested), Receipt.user_id == owner_id)
        )
        found = set(result.scalars().all())
        invalid = [rid for rid in requested if rid not in found]
        if invalid:
            raise InvalidIdentifierError(invalid)
        return requested

    def _failure(self, receipt_ids: Sequence[str], operation_id: str, started: float, exc: Exception) -> BulkOperationResult:
        message = str(exc) or exc.__class__.__name__
        # counted like the success path: each distinct id once
        distinct = list(dict.fromkeys(receipt_ids))
        return BulkOperationResult(
            success=False,
            processed_count=len(distinct),
            success_count=0,
            error_count=len(distinct),
            errors=[BulkItemError(receipt_id=rid, error=message) for rid in distinct],
            operation_id=operation_id,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )

    def _record(self, op: BulkOperationType, operation_id: str, result: BulkOperationResult) -> None:
        logger.info(
            "%s finished: processed=%d success=%d errors=%d duration_ms=%d",
            operation_id,
            result.processed_count,
            result.success_count,
            result.error_count,
            result.duration_ms,
        )
        sentry_breadcrumb(
            category="bulk",
            message=f"bulk_{op.value}",
            data={"operation_id": operation_id, "processed": result.processed_count, "success": result.success},
        )
        sentry_metric_inc("bulk.operations", tags={"op": op.value, "success": result.success})

    # --- Operations ----------------------------------------------------

    async def bulk_update(
        self,
        owner_id: str,
        receipt_ids: Sequence[str],
        updates: Union[BulkUpdate, Mapping[str, Any]],
    ) -> BulkOperationResult:
        """Apply the sparse ``updates`` to every id, stamping ``updated_at``."""
        started = time.perf_counter()
        operation_id = generate_operation_id(BulkOperationType.UPDATE.value)
        receipt_ids = list(receipt_ids or [])
        logger.info("%s started for owner %s (%d ids)", operation_id, owner_id, len(receipt_ids))

        try:
            values = validate_update(updates).values()
            self._check_batch_size(receipt_ids, "update")
            valid_ids = await self._validate_ownership(owner_id, receipt_ids)

            result = await self.db.execute(
                update(Receipt)
                .where(Receipt.id.in_(valid_ids), Receipt.user_id == owner_id)
                .values(**values, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except BulkOperationError:
            raise
        except Exception as exc:
            logger.exception("%s failed", operation_id)
            sentry_capture(exc)
            await self.db.rollback()
            outcome = self._failure(receipt_ids, operation_id, started, exc)
            self._record(BulkOperationType.UPDATE, operation_id, outcome)
            return outcome

        await self.cache.invalidate_owner(owner_id)
        outcome = BulkOperationResult(
            success=True,
            processed_count=len(valid_ids),
            success_count=int(result.rowcount or 0),
            error_count=0,
            operation_id=operation_id,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        self._record(BulkOperationType.UPDATE, operation_id, outcome)
        return outcome

    async def bulk_delete(self, owner_id: str, receipt_ids: Sequence[str]) -> BulkOperationResult:
        """Delete the receipt rows.

        Stored image files referenced by ``image_url`` are left in place.
        """
        started = time.perf_counter()
        operation_id = generate_operation_id(BulkOperationType.DELETE.value)
        receipt_ids = list(receipt_ids or [])
        logger.info("%s started for owner %s (%d ids)", operation_id, owner_id, len(receipt_ids))

        try:
            self._check_batch_size(receipt_ids, "delete")
            valid_ids = await self._validate_ownership(owner_id, receipt_ids)

            # TODO: remove the stored images once a storage client is wired into this service
            result = await self.db.execute(
                delete(Receipt)
                .where(Receipt.id.in_(valid_ids), Receipt.user_id == owner_id)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except BulkOperationError:
            raise
        except Exception as exc:
            logger.exception("%s failed", operation_id)
            sentry_capture(exc)
            await self.db.rollback()
            outcome = self._failure(receipt_ids, operation_id, started, exc)
            self._record(BulkOperationType.DELETE, operation_id, outcome)
            return outcome

        await self.cache.invalidate_owner(owner_id)
        outcome = BulkOperationResult(
            success=True,
            processed_count=len(valid_ids),
            success_count=int(result.rowcount or 0),
            error_count=0,
            operation_id=operation_id,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        self._record(BulkOperationType.DELETE, operation_id, outcome)
        return outcome

    async def prepare_bulk_export(self, owner_id: str, receipt_ids: Sequence[str]) -> BulkFilterResult:
        """Fetch the validated receipts for export; read-only."""
        receipt_ids = list(receipt_ids or [])
        self._check_batch_size(receipt_ids, "export")
        try:
            valid_ids = await self._validate_ownership(owner_id, receipt_ids)
            rows = (
                await self.db.execute(
                    select(*PROJECTION_COLUMNS)
                    .where(Receipt.id.in_(valid_ids), Receipt.user_id == owner_id)
                    .order_by(Receipt.purchase_date.desc(), Receipt.id)
                )
            ).all()
        except BulkOperationError:
            raise
        except Exception as exc:
            logger.exception("Bulk export preparation failed for owner %s", owner_id)
            raise ExportError("Failed to prepare bulk export") from exc

        receipts = [projection_from_row(row) for row in rows]
        return BulkFilterResult(
            receipts=receipts,
            total_count=len(receipts),
            filtered_count=len(receipts),
            applied_filters={"receipt_ids": receipt_ids},
        )


__all__ = ["BulkMutationService", "validate_update", "UPDATABLE_FIELDS"]
