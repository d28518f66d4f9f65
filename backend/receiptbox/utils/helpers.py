"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
import random
import string
import time
from typing import Optional

_BASE36 = string.digits + string.ascii_lowercase


def parse_iso_datetime(value: str | None) -> Optional[dt.datetime]:
    """Parse an ISO8601 datetime string into a :class:`datetime` object.

    The standard ``datetime.fromisoformat`` helper does not accept a lowercase
    ``z`` as the UTC designator. Some data sources provide timestamps that end
    with ``z`` instead of the canonical ``Z``. This function normalises that
    case and returns ``None`` if the value cannot be parsed.
    """
    if not value:
        return None
    try:
        if value.endswith("z"):
            value = value[:-1] + "Z"
        return dt.datetime.fromisoformat(value)
    except ValueError:
        return None


def to_naive_utc(value: dt.datetime) -> dt.datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc).replace(tzinfo=None)


def utcnow() -> dt.datetime:
    """Naive UTC "now", matching how timestamps are stored."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def generate_operation_id(operation: str) -> str:
    """Return an id like ``bulk_update_1718000000000_k3j9x0q2a`` for log correlation."""
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"bulk_{operation}_{int(time.time() * 1000)}_{suffix}"
