"""Tests for the freshness policy helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from tradeboard.ingestion.freshness import age_of, format_age, is_fresh

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestIsFresh:
    def test_younger_is_fresh(self):
        assert is_fresh(NOW - timedelta(seconds=59), timedelta(seconds=60), NOW)

    def test_exact_boundary_is_stale(self):
        assert not is_fresh(NOW - timedelta(seconds=60), timedelta(seconds=60), NOW)

    def test_older_is_stale(self):
        assert not is_fresh(NOW - timedelta(days=8), timedelta(days=7), NOW)

    def test_missing_timestamp_never_fresh(self):
        assert not is_fresh(None, timedelta(days=365), NOW)

    def test_naive_timestamp_read_as_utc(self):
        naive = (NOW - timedelta(minutes=1)).replace(tzinfo=None)
        assert is_fresh(naive, timedelta(minutes=5), NOW)


class TestAgeOf:
    def test_none(self):
        assert age_of(None, NOW) is None

    def test_elapsed(self):
        assert age_of(NOW - timedelta(hours=2), NOW) == timedelta(hours=2)


class TestFormatAge:
    @pytest.mark.parametrize(
        "age, expected",
        [
            (None, "never"),
            (timedelta(seconds=30), "just now"),
            (timedelta(minutes=5, seconds=10), "5m ago"),
            (timedelta(hours=2, minutes=59), "2h ago"),
            (timedelta(days=3, hours=4), "3d ago"),
            (timedelta(seconds=-5), "just now"),
        ],
    )
    def test_format(self, age, expected):
        assert format_age(age) == expected
