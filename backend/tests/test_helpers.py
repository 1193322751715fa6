import datetime as dt

from receipt_intake.utils.helpers import parse_amount, parse_iso_datetime, parse_purchase_date


def test_parse_iso_datetime_lowercase_z():
    value = "2023-05-06T12:00:00z"
    result = parse_iso_datetime(value)
    assert result == dt.datetime(2023, 5, 6, 12, 0, 0, tzinfo=dt.timezone.utc)


def test_parse_iso_datetime_invalid_returns_none():
    assert parse_iso_datetime("not-a-date") is None


def test_parse_purchase_date_variants():
    assert parse_purchase_date("2024-03-01") == dt.date(2024, 3, 1)
    assert parse_purchase_date("2024-03-01T10:15:00Z") == dt.date(2024, 3, 1)
    assert parse_purchase_date(dt.datetime(2024, 3, 1, 9, 0)) == dt.date(2024, 3, 1)
    assert parse_purchase_date("null") is None
    assert parse_purchase_date("March-ish") is None


def test_parse_amount_tolerates_currency_noise():
    assert parse_amount("$1,234.50") == 1234.5
    assert parse_amount(3) == 3.0
    assert parse_amount("") is None
    assert parse_amount("n/a") is None
    assert parse_amount(True) is None
