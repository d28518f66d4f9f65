"""Render a prepared receipt set as CSV, JSON or PDF bytes.

The input is the ``receipts`` list of a ``BulkFilterResult`` (normally
from ``BulkMutationService.prepare_bulk_export``); ownership has already
been checked by then, so this module only serialises.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import json
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Union

from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from receiptbox.core.exceptions import ValidationError
from receiptbox.models.enums import ExportFormat
from receiptbox.models.filters import ReceiptProjection

CSV_HEADERS = [
    "ID",
    "Merchant",
    "Amount",
    "Date",
    "Category",
    "Subcategory",
    "Confidence Score",
    "Summary",
]

CONTENT_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
    ExportFormat.PDF: "application/pdf",
}


@dataclass
class ExportResult:
    data: bytes
    filename: str
    content_type: str
    size: int


def summarize(receipts: Sequence[ReceiptProjection]) -> Dict[str, Any]:
    """Count, total, average and per-category totals for the export set."""
    total = round(sum(r.total for r in receipts), 2)
    by_category: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"count": 0, "total": 0.0})
    for r in receipts:
        bucket = by_category[r.category or "Uncategorized"]
        bucket["count"] += 1
        bucket["total"] = round(bucket["total"] + r.total, 2)
    return {
        "count": len(receipts),
        "total_amount": total,
        "average_amount": round(total / len(receipts), 2) if receipts else 0.0,
        "categories": [
            {"category": name, **values} for name, values in sorted(by_category.items())
        ],
    }


def _row(r: ReceiptProjection) -> List[str]:
    return [
        r.id,
        r.merchant,
        f"{r.total:.2f}",
        r.purchase_date.date().isoformat(),
        r.category or "",
        r.subcategory or "",
        "" if r.confidence_score is None else f"{r.confidence_score:.2f}",
        r.summary or "",
    ]


def _to_csv(receipts: Sequence[ReceiptProjection], include_analytics: bool) -> bytes:
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for r in receipts:
        writer.writerow(_row(r))
    if include_analytics:
        stats = summarize(receipts)
        writer.writerow([])
        writer.writerow(["Receipts", stats["count"]])
        writer.writerow(["Total Amount", f"{stats['total_amount']:.2f}"])
        writer.writerow(["Average Amount", f"{stats['average_amount']:.2f}"])
        writer.writerow(["Category", "Count", "Total"])
        for cat in stats["categories"]:
            writer.writerow([cat["category"], cat["count"], f"{cat['total']:.2f}"])
    return output.getvalue().encode("utf-8")


def _to_json(receipts: Sequence[ReceiptProjection], include_analytics: bool) -> bytes:
    payload: Dict[str, Any] = {
        "exported_at": dt.datetime.now(dt.timezone.utc).isoformat(),
        "count": len(receipts),
        "receipts": [
            {
                "id": r.id,
                "merchant": r.merchant,
                "total": r.total,
                "purchase_date": r.purchase_date.isoformat(),
                "category": r.category,
                "subcategory": r.subcategory,
                "confidence_score": r.confidence_score,
                "summary": r.summary,
                "image_url": r.image_url,
            }
            for r in receipts
        ],
    }
    if include_analytics:
        payload["analytics"] = summarize(receipts)
    return json.dumps(payload, indent=2).encode("utf-8")


def _to_pdf(receipts: Sequence[ReceiptProjection], include_analytics: bool) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=landscape(letter), rightMargin=36, leftMargin=36, topMargin=36, bottomMargin=36)
    styles = getSampleStyleSheet()
    story: List[Any] = [
        Paragraph("Receipts Export", styles["Title"]),
        Paragraph(f"Generated {dt.date.today().isoformat()} - {len(receipts)} receipts", styles["Normal"]),
        Spacer(1, 12),
    ]

    # Summary text is long; keep the table to the columns that fit a page
    data = [["Date", "Merchant", "Category", "Subcategory", "Confidence", "Amount"]]
    for r in receipts:
        cells = _row(r)
        data.append([cells[3], cells[1][:40], cells[4][:30], cells[5][:30], cells[6], f"${cells[2]}"])
    table = Table(data, repeatRows=1, colWidths=[70, 200, 130, 130, 70, 80])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
    ]))
    story.append(table)

    if include_analytics:
        stats = summarize(receipts)
        story += [Spacer(1, 12), Paragraph("Summary by Category", styles["Heading3"]), Spacer(1, 6)]
        cdata = [["Category", "Count", "Total"]]
        for cat in stats["categories"]:
            cdata.append([cat["category"][:40], str(cat["count"]), f"${cat['total']:.2f}"])
        cdata.append(["Grand Total", str(stats["count"]), f"${stats['total_amount']:.2f}"])
        ctable = Table(cdata, colWidths=[200, 60, 100])
        ctable.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
            ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
        ]))
        story.append(ctable)

    doc.build(story)
    return buf.getvalue()


_RENDERERS = {
    ExportFormat.CSV: _to_csv,
    ExportFormat.JSON: _to_json,
    ExportFormat.PDF: _to_pdf,
}


def parse_export_format(fmt: Union[ExportFormat, str]) -> ExportFormat:
    try:
        return ExportFormat(fmt)
    except ValueError:
        raise ValidationError([{"field": "format", "message": "must be one of csv, json, pdf"}]) from None


def format_export(
    receipts: Sequence[ReceiptProjection],
    fmt: Union[ExportFormat, str] = ExportFormat.CSV,
    include_analytics: bool = False,
) -> ExportResult:
    """Serialise ``receipts`` into ``fmt`` and describe the resulting file."""
    export_format = parse_export_format(fmt)
    data = _RENDERERS[export_format](receipts, include_analytics)
    filename = f"receipts_{dt.date.today().isoformat()}.{export_format.value}"
    return ExportResult(
        data=data,
        filename=filename,
        content_type=CONTENT_TYPES[export_format],
        size=len(data),
    )


__all__ = ["ExportResult", "format_export", "parse_export_format", "summarize", "CSV_HEADERS"]
