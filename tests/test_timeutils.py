from datetime import datetime, timedelta, timezone

import pytest

from app.core.timeutils import elapsed_ms, parse_timestamp


@pytest.mark.parametrize("value,microsecond", [
    ("2024-05-01T12:34:56.12345+00:00", 123450),
    ("2024-05-01T12:34:56.1+00:00", 100000),
    ("2024-05-01T12:34:56.1234+00:00", 123400),
    ("2024-05-01T12:34:56+00:00", 0),
    ("2024-05-01T12:34:56.123456Z", 123456),
])
def test_parses_postgres_timestamps_with_trimmed_fractions(value, microsecond):
    parsed = parse_timestamp(value)
    assert parsed.tzinfo is not None
    assert parsed.microsecond == microsecond


def test_naive_values_are_taken_as_utc():
    assert parse_timestamp("2024-05-01 12:34:56").tzinfo == timezone.utc


def test_empty_values_parse_to_none():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert elapsed_ms(None) is None


def test_elapsed_ms_from_trimmed_timestamp():
    end = datetime(2024, 5, 1, 12, 34, 58, 123450, tzinfo=timezone.utc)
    assert elapsed_ms("2024-05-01T12:34:56.12345+00:00", end) == 2000


def test_elapsed_ms_never_negative():
    start = datetime.now(timezone.utc) + timedelta(minutes=5)
    assert elapsed_ms(start) == 0
