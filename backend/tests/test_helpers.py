import datetime as dt
import re

from receiptbox.utils.helpers import generate_operation_id, parse_iso_datetime, to_naive_utc, utcnow


def test_parse_iso_datetime_lowercase_z():
    value = "2023-05-06T12:00:00z"
    result = parse_iso_datetime(value)
    assert result == dt.datetime(2023, 5, 6, 12, 0, 0, tzinfo=dt.timezone.utc)


def test_parse_iso_datetime_invalid_returns_none():
    assert parse_iso_datetime("not-a-date") is None


def test_to_naive_utc():
    aware = dt.datetime(2024, 1, 1, 1, 0, tzinfo=dt.timezone(dt.timedelta(hours=-5)))
    assert to_naive_utc(aware) == dt.datetime(2024, 1, 1, 6, 0)
    naive = dt.datetime(2024, 1, 1)
    assert to_naive_utc(naive) is naive


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None


def test_generate_operation_id_format():
    op_id = generate_operation_id("export")
    assert re.match(r"^bulk_export_\d{13}_[0-9a-z]{9}$", op_id)
    assert generate_operation_id("export") != op_id
