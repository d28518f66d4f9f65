"""Compile a ``BulkFilter`` into a storage-agnostic predicate tree.

The compiler has two halves:

1. **Validation** – ``validate_filter`` accepts a ``BulkFilter`` or a
   plain mapping (camelCase or snake_case keys, as produced by JSON
   bodies) and checks field types and ranges.  Range bounds are driven
   by the ``RANGE_RULES`` table.  Cross-field ordering (``min <= max``,
   ``start <= end``) is enforced here as well so that every caller gets
   the same answer.  All problems are collected and raised together as a
   single ``ValidationError``.
2. **Compilation** – ``compile_filter`` turns a valid filter into an
   ``AllOf`` conjunction of ``Clause`` leaves.  A non-blank search query
   adds one ``AnyOf`` group over the free-text columns.

Neither half performs I/O.  ``to_sqlalchemy`` is the storage-side
translation used by the query and mutation services.
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql.elements import ColumnElement

from receiptbox.core.exceptions import ValidationError
from receiptbox.models.filters import BulkFilter, DateRange, NumericRange
from receiptbox.utils.helpers import parse_iso_datetime, to_naive_utc

# Columns searched by ``search_query`` (OR semantics)
SEARCH_FIELDS: Tuple[str, ...] = ("merchant", "category", "subcategory", "summary", "raw_text")


class Op(str, Enum):
    EQ = "eq"
    IN = "in"
    GTE = "gte"
    LTE = "lte"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"
    ICONTAINS = "icontains"


@dataclass(frozen=True)
class Clause:
    field: str
    op: Op
    value: Any = None


@dataclass(frozen=True)
class AllOf:
    children: Tuple["Predicate", ...] = ()


@dataclass(frozen=True)
class AnyOf:
    children: Tuple["Predicate", ...] = ()


Predicate = Union[Clause, AllOf, AnyOf]


@dataclass(frozen=True)
class RangeRule:
    """Bounds for a numeric range dimension of the filter."""

    column: str
    lower: Optional[float] = None
    upper: Optional[float] = None
    as_decimal: bool = False


RANGE_RULES: Dict[str, RangeRule] = {
    "amount_range": RangeRule(column="total", lower=0, as_decimal=True),
    "confidence_score": RangeRule(column="confidence_score", lower=0, upper=1),
}

# Accepted spellings for mapping input -> BulkFilter attribute
_KEY_ALIASES: Dict[str, str] = {
    "date_range": "date_range",
    "dateRange": "date_range",
    "amount_range": "amount_range",
    "amountRange": "amount_range",
    "categories": "categories",
    "merchants": "merchants",
    "confidence_score": "confidence_score",
    "confidenceScore": "confidence_score",
    "has_summary": "has_summary",
    "hasSummary": "has_summary",
    "search_query": "search_query",
    "searchQuery": "search_query",
}


# ---------------------------------------------------------------------------
# Validation


class _Problems:
    def __init__(self) -> None:
        self.items: List[Dict[str, str]] = []

    def add(self, field: str, message: str) -> None:
        self.items.append({"field": field, "message": message})


def _coerce_datetime(value: Any, field: str, problems: _Problems, end_of_day: bool = False) -> Optional[dt.datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        parsed = parse_iso_datetime(value)
        if parsed is None:
            problems.add(field, "must be an ISO 8601 date or datetime")
            return None
        if end_of_day and len(value.strip()) == 10:
            parsed = parsed.replace(hour=23, minute=59, second=59, microsecond=999999)
        return to_naive_utc(parsed)
    if isinstance(value, dt.datetime):
        return to_naive_utc(value)
    if isinstance(value, dt.date):
        # A bare date as an upper bound covers the whole day
        t = dt.time.max if end_of_day else dt.time.min
        return dt.datetime.combine(value, t)
    problems.add(field, "must be a date or datetime")
    return None


def _coerce_number(value: Any, field: str, problems: _Problems) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        problems.add(field, "must be a number")
        return None
    if isinstance(value, float) and not math.isfinite(value):
        problems.add(field, "must be a finite number")
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        problems.add(field, "must be a number")
        return None
    if not number.is_finite():
        problems.add(field, "must be a finite number")
        return None
    return number


def _coerce_strings(value: Any, field: str, problems: _Problems) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
        problems.add(field, "must be a list of strings")
        return ()
    items = list(value)
    if any(not isinstance(v, str) for v in items):
        problems.add(field, "must be a list of strings")
        return ()
    # de-duplicate while preserving order
    return tuple(dict.fromkeys(items))


def _range_parts(value: Any, keys: Tuple[str, str], field: str, problems: _Problems) -> Tuple[Any, Any]:
    if value is None:
        return None, None
    if isinstance(value, (DateRange, NumericRange)):
        return getattr(value, keys[0]), getattr(value, keys[1])
    if isinstance(value, Mapping):
        unknown = set(value) - set(keys)
        if unknown:
            problems.add(field, f"unexpected keys: {', '.join(sorted(unknown))}")
        return value.get(keys[0]), value.get(keys[1])
    problems.add(field, f"must be an object with '{keys[0]}' and/or '{keys[1]}'")
    return None, None


def _check_range(name: str, value: Any, problems: _Problems) -> Optional[NumericRange]:
    rule = RANGE_RULES[name]
    raw_min, raw_max = _range_parts(value, ("min", "max"), name, problems)
    lo = _coerce_number(raw_min, f"{name}.min", problems)
    hi = _coerce_number(raw_max, f"{name}.max", problems)
    for bound_name, bound in (("min", lo), ("max", hi)):
        if bound is None:
            continue
        if rule.lower is not None and bound < Decimal(str(rule.lower)):
            problems.add(f"{name}.{bound_name}", f"must be greater than or equal to {rule.lower}")
        if rule.upper is not None and bound > Decimal(str(rule.upper)):
            problems.add(f"{name}.{bound_name}", f"must be less than or equal to {rule.upper}")
    if lo is not None and hi is not None and lo > hi:
        problems.add(name, "min must be less than or equal to max")
    if lo is None and hi is None:
        return None
    if rule.as_decimal:
        return NumericRange(min=lo, max=hi)
    return NumericRange(
        min=float(lo) if lo is not None else None,
        max=float(hi) if hi is not None else None,
    )


def _check_date_range(value: Any, problems: _Problems) -> Optional[DateRange]:
    raw_start, raw_end = _range_parts(value, ("start", "end"), "date_range", problems)
    start = _coerce_datetime(raw_start, "date_range.start", problems)
    end = _coerce_datetime(raw_end, "date_range.end", problems, end_of_day=True)
    if start is not None and end is not None and start > end:
        problems.add("date_range", "start must be on or before end")
    if start is None and end is None:
        return None
    return DateRange(start=start, end=end)


def _as_fields(value: Union[BulkFilter, Mapping[str, Any], None], problems: _Problems) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BulkFilter):
        return {name: getattr(value, name) for name in set(_KEY_ALIASES.values())}
    if not isinstance(value, Mapping):
        problems.add("", "filter must be an object")
        return {}
    fields: Dict[str, Any] = {}
    for key, item in value.items():
        name = _KEY_ALIASES.get(key)
        if name is None:
            problems.add(str(key), "unknown filter field")
            continue
        fields[name] = item
    return fields


def validate_filter(value: Union[BulkFilter, Mapping[str, Any], None]) -> BulkFilter:
    """Return a normalised ``BulkFilter`` or raise ``ValidationError``.

    Normalisation converts amount bounds to ``Decimal``, confidence bounds
    to ``float`` and datetimes to naive UTC.
    """
    problems = _Problems()
    fields = _as_fields(value, problems)

    date_range = _check_date_range(fields.get("date_range"), problems)
    amount_range = _check_range("amount_range", fields.get("amount_range"), problems)
    confidence = _check_range("confidence_score", fields.get("confidence_score"), problems)
    categories = _coerce_strings(fields.get("categories"), "categories", problems)
    merchants = _coerce_strings(fields.get("merchants"), "merchants", problems)

    has_summary = fields.get("has_summary")
    if has_summary is not None and not isinstance(has_summary, bool):
        problems.add("has_summary", "must be a boolean")
        has_summary = None

    search_query = fields.get("search_query")
    if search_query is not None and not isinstance(search_query, str):
        problems.add("search_query", "must be a string")
        search_query = None

    if problems.items:
        raise ValidationError(problems.items)

    return BulkFilter(
        date_range=date_range,
        amount_range=amount_range,
        categories=categories,
        merchants=merchants,
        confidence_score=confidence,
        has_summary=has_summary,
        search_query=search_query,
    )


# ---------------------------------------------------------------------------
# Compilation


def _range_clauses(column: str, lo: Any, hi: Any) -> List[Clause]:
    clauses = []
    if lo is not None:
        clauses.append(Clause(column, Op.GTE, lo))
    if hi is not None:
        clauses.append(Clause(column, Op.LTE, hi))
    return clauses


def compile_filter(value: Union[BulkFilter, Mapping[str, Any], None]) -> AllOf:
    """Validate ``value`` and compile it into an ``AllOf`` predicate.

    An empty filter compiles to ``AllOf(())``, which matches every row
    the caller's own owner predicate lets through.
    """
    f = validate_filter(value)
    clauses: List[Predicate] = []

    if f.date_range is not None:
        clauses += _range_clauses("purchase_date", f.date_range.start, f.date_range.end)
    if f.amount_range is not None:
        clauses += _range_clauses(RANGE_RULES["amount_range"].column, f.amount_range.min, f.amount_range.max)
    if f.categories:
        clauses.append(Clause("category", Op.IN, f.categories))
    if f.merchants:
        clauses.append(Clause("merchant", Op.IN, f.merchants))
    if f.confidence_score is not None:
        clauses += _range_clauses(
            RANGE_RULES["confidence_score"].column, f.confidence_score.min, f.confidence_score.max
        )
    if f.has_summary is not None:
        clauses.append(Clause("summary", Op.NOT_NULL if f.has_summary else Op.IS_NULL))

    term = (f.search_query or "").strip()
    if term:
        clauses.append(AnyOf(tuple(Clause(name, Op.ICONTAINS, term) for name in SEARCH_FIELDS)))

    return AllOf(tuple(clauses))


# ---------------------------------------------------------------------------
# Storage translation


def to_sqlalchemy(predicate: Predicate, model: Any = None) -> ColumnElement:
    """Translate a predicate tree into a SQLAlchemy boolean expression."""
    if model is None:
        from receiptbox.models.tables import Receipt

        model = Receipt

    if isinstance(predicate, AllOf):
        if not predicate.children:
            return true()
        return and_(*(to_sqlalchemy(child, model) for child in predicate.children))
    if isinstance(predicate, AnyOf):
        if not predicate.children:
            return false()
        return or_(*(to_sqlalchemy(child, model) for child in predicate.children))

    column = getattr(model, predicate.field)
    op = predicate.op
    if op is Op.EQ:
        return column == predicate.value
    if op is Op.IN:
        return column.in_(list(predicate.value))
    if op is Op.GTE:
        return column >= predicate.value
    if op is Op.LTE:
        return column <= predicate.value
    if op is Op.IS_NULL:
        return column.is_(None)
    if op is Op.NOT_NULL:
        return column.is_not(None)
    if op is Op.ICONTAINS:
        return column.icontains(predicate.value, autoescape=True)
    raise ValueError(f"Unsupported predicate operator: {op!r}")


__all__ = [
    "Op",
    "Clause",
    "AllOf",
    "AnyOf",
    "Predicate",
    "RangeRule",
    "RANGE_RULES",
    "SEARCH_FIELDS",
    "validate_filter",
    "compile_filter",
    "to_sqlalchemy",
]
