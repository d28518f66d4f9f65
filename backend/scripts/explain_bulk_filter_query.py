"""Run EXPLAIN (ANALYZE, BUFFERS) on the bulk filter query for one owner.

Usage:
  python scripts/explain_bulk_filter_query.py [OWNER_ID] ['{"categories": ["Dining"]}']

If OWNER_ID is not supplied, picks the owner of the most recent receipt.
The optional second argument is a filter object as the API accepts it.
Outputs the plan and whether the (user_id, purchase_date) index is used.
"""
from __future__ import annotations

import json
import os
import sys
from typing import Any, Mapping, Optional

from sqlalchemy import create_engine, select, text
from sqlalchemy.dialects import postgresql

from receiptbox.models.tables import Receipt
from receiptbox.services.filter_compiler import compile_filter, to_sqlalchemy
from receiptbox.services.query_service import PROJECTION_COLUMNS


def build_filter_query(owner_id: str, filters: Optional[Mapping[str, Any]] = None):
    """The same statement ``BulkQueryService.filter_receipts`` issues."""
    return (
        select(*PROJECTION_COLUMNS)
        .where(Receipt.user_id == owner_id, to_sqlalchemy(compile_filter(filters)))
        .order_by(Receipt.purchase_date.desc(), Receipt.id)
    )


def render_sql(stmt, dialect=None) -> str:
    """Inline the bound values so the statement can be prefixed with EXPLAIN."""
    dialect = dialect or postgresql.dialect()
    return str(stmt.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))


def main() -> int:
    url = os.environ.get("DATABASE_URL")
    if not url:
        print("DATABASE_URL required", file=sys.stderr)
        return 2
    url = url.replace("+asyncpg", "+psycopg")
    if url.startswith("postgres://"):
        url = "postgresql+psycopg://" + url[len("postgres://"):]
    engine = create_engine(url, pool_pre_ping=True)
    owner_id = sys.argv[1] if len(sys.argv) > 1 else None
    filters = json.loads(sys.argv[2]) if len(sys.argv) > 2 else None
    with engine.begin() as conn:
        if owner_id is None:
            row = conn.execute(text("SELECT user_id FROM receipts ORDER BY created_at DESC LIMIT 1")).fetchone()
            if not row:
                print("No receipts present; cannot run explain.")
                return 0
            owner_id = row[0]
        sql = render_sql(build_filter_query(owner_id, filters), engine.dialect)
        print(f"Using user_id={owner_id} filters={filters or {}}")
        print(sql)
        plan_rows = conn.exec_driver_sql(f"EXPLAIN (ANALYZE, BUFFERS, COSTS, VERBOSE, SUMMARY) {sql}").fetchall()
        print("--- QUERY PLAN ---")
        for (line,) in plan_rows:
            print(line)
        if not any("ix_receipts_user_id_purchase_date" in line for (line,) in plan_rows):
            print("NOTE: Planner did not use ix_receipts_user_id_purchase_date (table likely small or low selectivity).")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
