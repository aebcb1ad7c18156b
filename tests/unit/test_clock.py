"""Unit tests for clock utility."""

from datetime import UTC, datetime, timedelta, timezone

from workproof.utils.clock import parse_iso, to_iso_z, utc_now, utc_now_iso


def test_utc_now():
    result = utc_now()
    assert result.tzinfo is not None
    assert abs((result - datetime.now(UTC)).total_seconds()) < 5


def test_to_iso_z_uses_milliseconds_and_z_suffix():
    value = datetime(2026, 1, 24, 9, 0, 0, 123456, tzinfo=UTC)
    assert to_iso_z(value) == "2026-01-24T09:00:00.123Z"


def test_to_iso_z_converts_offsets_to_utc():
    value = datetime(2026, 1, 24, 10, 0, tzinfo=timezone(timedelta(hours=1)))
    assert to_iso_z(value) == "2026-01-24T09:00:00.000Z"


def test_utc_now_iso_round_trips():
    assert parse_iso(utc_now_iso()).tzinfo is not None


def test_parse_iso_accepts_z_and_naive():
    assert parse_iso("2026-01-24T09:00:00Z") == datetime(2026, 1, 24, 9, tzinfo=UTC)
    assert parse_iso("2026-01-24T09:00:00") == datetime(2026, 1, 24, 9, tzinfo=UTC)
