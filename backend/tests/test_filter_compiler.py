from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest
from sqlalchemy.dialects import sqlite

from receiptbox.core.exceptions import ValidationError
from receiptbox.models.filters import BulkFilter, DateRange, NumericRange
from receiptbox.services.filter_compiler import (
    SEARCH_FIELDS,
    AllOf,
    AnyOf,
    Clause,
    Op,
    compile_filter,
    to_sqlalchemy,
    validate_filter,
)


def _fields(e: ValidationError):
    return {item["field"] for item in e.errors}


def test_empty_filter_compiles_to_empty_conjunction():
    assert compile_filter(None) == AllOf(())
    assert compile_filter({}) == AllOf(())
    assert compile_filter(BulkFilter()) == AllOf(())


def test_blank_search_query_adds_no_clause():
    assert compile_filter({"searchQuery": "   "}) == AllOf(())


def test_each_dimension_contributes_one_clause_group():
    predicate = compile_filter(
        {
            "dateRange": {"start": "2024-01-01", "end": "2024-01-31"},
            "amountRange": {"min": 10, "max": 50},
            "categories": ["Groceries", "Dining"],
            "merchants": ["Walmart"],
            "confidenceScore": {"min": 0.8},
            "hasSummary": True,
        }
    )
    assert predicate.children == (
        Clause("purchase_date", Op.GTE, dt.datetime(2024, 1, 1)),
        Clause("purchase_date", Op.LTE, dt.datetime(2024, 1, 31, 23, 59, 59, 999999)),
        Clause("total", Op.GTE, Decimal("10")),
        Clause("total", Op.LTE, Decimal("50")),
        Clause("category", Op.IN, ("Groceries", "Dining")),
        Clause("merchant", Op.IN, ("Walmart",)),
        Clause("confidence_score", Op.GTE, 0.8),
        Clause("summary", Op.NOT_NULL),
    )


def test_has_summary_false_is_null_check():
    assert compile_filter({"has_summary": False}).children == (Clause("summary", Op.IS_NULL),)


def test_search_query_is_trimmed_or_group_over_text_fields():
    predicate = compile_filter({"search_query": "  coffee "})
    assert len(predicate.children) == 1
    group = predicate.children[0]
    assert isinstance(group, AnyOf)
    assert [c.field for c in group.children] == list(SEARCH_FIELDS)
    assert all(c.op is Op.ICONTAINS and c.value == "coffee" for c in group.children)


def test_aware_datetimes_normalised_to_naive_utc():
    start = dt.datetime(2024, 1, 1, 5, 0, tzinfo=dt.timezone(dt.timedelta(hours=5)))
    f = validate_filter(BulkFilter(date_range=DateRange(start=start)))
    assert f.date_range.start == dt.datetime(2024, 1, 1, 0, 0)
    assert f.date_range.end is None


def test_datetime_string_end_is_not_widened():
    f = validate_filter({"date_range": {"end": "2024-01-31T12:00:00Z"}})
    assert f.date_range.end == dt.datetime(2024, 1, 31, 12, 0)


def test_duplicate_categories_are_collapsed():
    f = validate_filter({"categories": ["A", "B", "A"]})
    assert f.categories == ("A", "B")


@pytest.mark.parametrize(
    "value, field",
    [
        ({"amountRange": {"min": -1}}, "amount_range.min"),
        ({"confidenceScore": {"max": 1.5}}, "confidence_score.max"),
        ({"confidenceScore": {"min": -0.1}}, "confidence_score.min"),
        ({"amountRange": {"min": 50, "max": 10}}, "amount_range"),
        ({"dateRange": {"start": "2024-02-01", "end": "2024-01-01"}}, "date_range"),
        ({"dateRange": {"start": "yesterday"}}, "date_range.start"),
        ({"amountRange": {"min": "10"}}, "amount_range.min"),
        ({"amountRange": {"min": True}}, "amount_range.min"),
        ({"amountRange": {"max": float("inf")}}, "amount_range.max"),
        ({"categories": "Groceries"}, "categories"),
        ({"hasSummary": "yes"}, "has_summary"),
        ({"ownerId": "someone-else"}, "ownerId"),
    ],
)
def test_invalid_filters_raise_validation_error(value, field):
    with pytest.raises(ValidationError) as exc:
        validate_filter(value)
    assert field in _fields(exc.value)
    assert exc.value.status_code == 400


def test_all_problems_reported_together():
    with pytest.raises(ValidationError) as exc:
        validate_filter({"amountRange": {"min": -5}, "confidenceScore": {"max": 2}})
    assert {"amount_range.min", "confidence_score.max"} <= _fields(exc.value)


def test_boundary_values_are_accepted():
    f = validate_filter(
        BulkFilter(amount_range=NumericRange(min=0), confidence_score=NumericRange(min=0, max=1))
    )
    assert f.amount_range.min == Decimal("0")
    assert f.confidence_score == NumericRange(min=0.0, max=1.0)


def _sql(predicate) -> str:
    return str(to_sqlalchemy(predicate).compile(dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True}))


def test_to_sqlalchemy_empty_groups():
    assert _sql(AllOf(())) in ("1", "true")
    assert _sql(AnyOf(())) in ("0", "false")


def test_to_sqlalchemy_search_escapes_like_wildcards():
    sql = _sql(compile_filter({"search_query": "50%_off"}))
    assert "lower(receipts.merchant)" in sql
    assert "LIKE" in sql
    assert "OR" in sql
    assert "50/%/_off" in sql


def test_to_sqlalchemy_in_and_range():
    sql = _sql(compile_filter({"categories": ["Dining"], "amount_range": {"max": 20}}))
    assert "receipts.category IN ('Dining')" in sql
    assert "receipts.total <=" in sql
