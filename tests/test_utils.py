"""Tests for timestamp and identifier helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from pylistsync.utils import (
    EPOCH,
    coerce_timestamp,
    format_timestamp,
    new_entity_id,
    parse_iso_timestamp,
)


class TestParseIsoTimestamp:
    """Tests for parse_iso_timestamp."""

    def test_z_suffix(self):
        parsed = parse_iso_timestamp("2025-01-15T10:30:00.123456Z")
        assert parsed == datetime(2025, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)

    def test_offset_is_normalized_to_utc(self):
        parsed = parse_iso_timestamp("2025-01-15T12:30:00+02:00")
        assert parsed.tzinfo == timezone.utc
        assert parsed.hour == 10

    def test_naive_is_taken_as_utc(self):
        assert parse_iso_timestamp("1970-01-01T00:00:00") == EPOCH

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_invalid(self, value):
        assert parse_iso_timestamp(value) is None


class TestCoerceTimestamp:
    def test_datetime_passthrough(self):
        value = EPOCH + timedelta(seconds=5)
        assert coerce_timestamp(value) == value

    def test_string(self):
        assert coerce_timestamp("1970-01-01T00:00:05Z") == EPOCH + timedelta(seconds=5)

    @pytest.mark.parametrize("value", [None, 42, "yesterday"])
    def test_invalid_raises(self, value):
        with pytest.raises(ValueError, match="Invalid timestamp"):
            coerce_timestamp(value)


class TestFormatTimestamp:
    def test_round_trip(self):
        value = datetime(2025, 6, 1, 8, 15, tzinfo=timezone.utc)
        assert parse_iso_timestamp(format_timestamp(value)) == value

    def test_naive_is_formatted_as_utc(self):
        assert format_timestamp(datetime(2025, 6, 1)) == "2025-06-01T00:00:00+00:00"


def test_new_entity_id_is_unique():
    ids = {new_entity_id() for _ in range(100)}
    assert len(ids) == 100
