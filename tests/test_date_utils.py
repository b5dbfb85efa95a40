from datetime import UTC, date, datetime, timedelta, timezone

from date_utils import (
    ensure_utc,
    get_current_utc_time,
    normalize_to_utc_datetime,
    parse_timestamp,
    seconds_between,
)


def test_parse_timestamp_handles_empty_and_invalid() -> None:
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp("not-a-date") is None


def test_parse_timestamp_normalizes_to_utc() -> None:
    parsed = parse_timestamp("2024-01-01T00:00:00-05:00")
    assert parsed is not None
    assert parsed.tzinfo == UTC
    assert parsed.hour == 5


def test_parse_timestamp_converts_aware_datetime_to_utc() -> None:
    dt = datetime(2025, 1, 17, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    result = parse_timestamp(dt)
    assert result is not None
    assert result.tzinfo == UTC
    assert result.hour == 10


def test_ensure_utc_handles_naive_datetime() -> None:
    normalized = ensure_utc(datetime(2024, 1, 1, 12, 0, 0))
    assert normalized is not None
    assert normalized.tzinfo == UTC
    assert normalized.hour == 12
    assert ensure_utc(None) is None


def test_normalize_to_utc_datetime_accepts_date_and_string() -> None:
    normalized = normalize_to_utc_datetime(date(2024, 2, 3))
    assert normalized is not None
    assert normalized.isoformat().startswith("2024-02-03T00:00:00")

    parsed = normalize_to_utc_datetime("2024-02-03")
    assert parsed is not None
    assert parsed.tzinfo == UTC
    assert parsed.isoformat().startswith("2024-02-03T00:00:00")


def test_normalize_to_utc_datetime_returns_none_for_unsupported_type() -> None:
    assert normalize_to_utc_datetime(None) is None
    assert normalize_to_utc_datetime(12345) is None  # type: ignore[arg-type]


def test_get_current_utc_time_returns_utc() -> None:
    now = get_current_utc_time()
    assert now.tzinfo == UTC


def test_seconds_between_mixes_naive_and_aware() -> None:
    start = datetime(2025, 1, 1, 10, 0, 0)
    end = datetime(2025, 1, 1, 10, 0, 30, tzinfo=UTC)
    assert seconds_between(start, end) == 30.0
    assert seconds_between(None, end) is None
