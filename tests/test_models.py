"""
Tests for the Gerrit data model.
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from gerrit_poller.models import ChangeInfo, LastSyncState, parse_timestamp


class TestParseTimestamp:
    """Test timestamp parsing."""

    def test_gerrit_format_truncates_nanoseconds(self):
        parsed = parse_timestamp("2013-02-21 11:16:36.775123456")

        assert parsed == datetime(2013, 2, 21, 11, 16, 36, 775123, tzinfo=UTC)

    def test_gerrit_format_without_fraction(self):
        assert parse_timestamp("2024-01-15 12:00:00") == datetime(
            2024, 1, 15, 12, tzinfo=UTC
        )

    def test_iso_format(self):
        assert parse_timestamp("2024-01-15T12:00:00Z") == datetime(
            2024, 1, 15, 12, tzinfo=UTC
        )
        offset = parse_timestamp("2024-01-15T14:00:00+02:00")
        assert offset == datetime(2024, 1, 15, 12, tzinfo=UTC)
        assert offset.utcoffset() == timedelta(hours=2)

    def test_naive_datetime_is_utc(self):
        assert parse_timestamp(datetime(2024, 1, 15)).tzinfo is UTC

    def test_aware_datetime_is_kept(self):
        tz = timezone(timedelta(hours=-5))
        value = datetime(2024, 1, 15, tzinfo=tz)

        assert parse_timestamp(value) is value

    def test_rejects_other_types(self):
        with pytest.raises(ValueError):
            parse_timestamp(12345)


class TestChangeInfo:
    """Test change validation from REST payloads."""

    def test_validates_gerrit_json(self):
        change = ChangeInfo.model_validate(
            {
                "id": "foo~main~I1",
                "_number": 42,
                "project": "foo",
                "branch": "main",
                "status": "MERGED",
                "updated": "2024-01-15 12:00:01.000000000",
                "submitted": "2024-01-15 12:00:00.000000000",
                "unknown_field": True,
                "_more_changes": True,
            }
        )

        assert change.number == 42
        assert change.submitted == datetime(2024, 1, 15, 12, tzinfo=UTC)
        assert change.more_changes is True
        assert change.revisions == {}
        assert change.messages == []

    def test_missing_updated_is_invalid(self):
        with pytest.raises(ValidationError):
            ChangeInfo.model_validate({"id": "x", "_number": 1, "status": "NEW"})


class TestLastSyncState:
    """Test the watermark map."""

    def test_deep_copy_is_independent(self):
        t = datetime(2024, 1, 15, tzinfo=UTC)
        state = LastSyncState({"https://a.example.org": {"foo": t}})

        copy = state.deep_copy()
        copy["https://a.example.org"]["foo"] = t + timedelta(hours=1)
        copy["https://b.example.org"] = {}

        assert isinstance(copy, LastSyncState)
        assert state == {"https://a.example.org": {"foo": t}}
