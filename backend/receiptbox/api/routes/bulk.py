"""API routes for bulk filtering and bulk receipt operations.

Reads (``/filter``, ``/ids``, ``/stats``, ``/options``) take the filter
as query parameters.  Mutations (``/update``, ``/delete``) and ``/export``
take an explicit list of receipt ids in the body; a client materialises
that list from ``/ids`` first.  Domain errors raised by the services are
turned into ``{"error": ...}`` responses by the handlers registered in
``receiptbox.api.main``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from receiptbox.api.dependencies import (
    enforce_bulk_rate_limit,
    get_mutation_service,
    get_query_service,
    get_user,
)
from receiptbox.core.observability import sentry_breadcrumb
from receiptbox.models.filters import BulkItemError, BulkOperationResult
from receiptbox.models.schemas import (
    BulkDeleteRequest,
    BulkExportRequest,
    BulkFilterResultRead,
    BulkOperationResultRead,
    BulkUpdateRequest,
    FilterOptionsRead,
    ReceiptStatsRead,
)
from receiptbox.models.tables import User
from receiptbox.services.export_service import format_export, parse_export_format
from receiptbox.services.mutation_service import BulkMutationService
from receiptbox.services.query_service import BulkQueryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/receipts/bulk", tags=["bulk"])


def _split_list(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    items = [v.strip() for v in value.split(",") if v.strip()]
    return items or None


def _range(lo: Any, hi: Any, lo_key: str = "min", hi_key: str = "max") -> Optional[Dict[str, Any]]:
    if lo is None and hi is None:
        return None
    return {lo_key: lo, hi_key: hi}


async def bulk_filter_params(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    min_amount: Optional[float] = Query(None, alias="minAmount"),
    max_amount: Optional[float] = Query(None, alias="maxAmount"),
    categories: Optional[str] = Query(None, description="Comma separated"),
    merchants: Optional[str] = Query(None, description="Comma separated"),
    min_confidence: Optional[float] = Query(None, alias="minConfidence"),
    max_confidence: Optional[float] = Query(None, alias="maxConfidence"),
    has_summary: Optional[bool] = Query(None, alias="hasSummary"),
    search_query: Optional[str] = Query(None, alias="searchQuery"),
) -> Dict[str, Any]:
    """Collect the filter query parameters into a mapping for ``validate_filter``.

    Dates stay strings here so that malformed values are reported by the
    filter compiler (400) alongside any other filter problem.
    """
    raw = {
        "date_range": _range(start_date, end_date, "start", "end"),
        "amount_range": _range(min_amount, max_amount),
        "categories": _split_list(categories),
        "merchants": _split_list(merchants),
        "confidence_score": _range(min_confidence, max_confidence),
        "has_summary": has_summary,
        "search_query": search_query,
    }
    return {k: v for k, v in raw.items() if v is not None}


def _sanitized(result: BulkOperationResult, message: str) -> BulkOperationResult:
    """Replace driver error text in a failed result with a generic message."""
    result.errors = [BulkItemError(receipt_id=e.receipt_id, error=message) for e in result.errors]
    return result


def _operation_response(result: BulkOperationResult, failure_message: str) -> JSONResponse:
    if result.success:
        body = {"success": True, "result": BulkOperationResultRead.model_validate(result).model_dump(mode="json")}
        return JSONResponse(status_code=200, content=body)
    result = _sanitized(result, failure_message)
    body = {
        "success": False,
        "error": failure_message,
        "result": BulkOperationResultRead.model_validate(result).model_dump(mode="json"),
    }
    return JSONResponse(status_code=500, content=body)


# ---------------------------------------------------------------------------
# Reads


@router.get("/filter")
async def filter_receipts(
    filters: Dict[str, Any] = Depends(bulk_filter_params),
    user: User = Depends(get_user),
    service: BulkQueryService = Depends(get_query_service),
):
    result = await service.filter_receipts(user.id, filters)
    return {"success": True, **BulkFilterResultRead.model_validate(result).model_dump(mode="json")}


@router.get("/ids")
async def filtered_receipt_ids(
    filters: Dict[str, Any] = Depends(bulk_filter_params),
    user: User = Depends(get_user),
    service: BulkQueryService = Depends(get_query_service),
):
    ids = await service.get_filtered_receipt_ids(user.id, filters)
    return {"success": True, "receipt_ids": ids, "count": len(ids)}


@router.get("/options")
async def filter_options(
    user: User = Depends(get_user),
    service: BulkQueryService = Depends(get_query_service),
):
    options = await service.get_filter_options(user.id)
    return {"success": True, "options": FilterOptionsRead.model_validate(options).model_dump(mode="json")}


@router.get("/stats")
async def receipt_stats(
    filters: Dict[str, Any] = Depends(bulk_filter_params),
    user: User = Depends(get_user),
    service: BulkQueryService = Depends(get_query_service),
):
    stats = await service.get_receipt_stats(user.id, filters or None)
    return {"success": True, "stats": ReceiptStatsRead.model_validate(stats).model_dump(mode="json")}


# ---------------------------------------------------------------------------
# Mutations


@router.post("/update", dependencies=[Depends(enforce_bulk_rate_limit)])
async def bulk_update(
    body: BulkUpdateRequest,
    user: User = Depends(get_user),
    service: BulkMutationService = Depends(get_mutation_service),
):
    result = await service.bulk_update(user.id, body.receipt_ids, body.updates)
    return _operation_response(result, "Failed to update receipts")


@router.post("/delete", dependencies=[Depends(enforce_bulk_rate_limit)])
async def bulk_delete(
    body: BulkDeleteRequest,
    user: User = Depends(get_user),
    service: BulkMutationService = Depends(get_mutation_service),
):
    result = await service.bulk_delete(user.id, body.receipt_ids)
    return _operation_response(result, "Failed to delete receipts")


@router.post("/export", dependencies=[Depends(enforce_bulk_rate_limit)])
async def bulk_export(
    body: BulkExportRequest,
    user: User = Depends(get_user),
    service: BulkMutationService = Depends(get_mutation_service),
):
    fmt = parse_export_format(body.format)
    prepared = await service.prepare_bulk_export(user.id, body.receipt_ids)
    # PDF layout is CPU bound
    export = await run_in_threadpool(format_export, prepared.receipts, fmt, body.include_analytics)
    logger.info("Exported %d receipts for owner %s as %s (%d bytes)", prepared.filtered_count, user.id, fmt.value, export.size)
    sentry_breadcrumb(category="bulk", message="bulk_export", data={"count": prepared.filtered_count, "format": fmt.value})
    return Response(
        content=export.data,
        media_type=export.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{export.filename}"',
            "X-Receipt-Count": str(prepared.filtered_count),
        },
    )
