"""Tests for the retention window."""

from datetime import timedelta

from drawat.retention import RETENTION_WINDOW, filter_retained, is_retained

from .conftest import NOW, point, record


class TestIsRetained:
    """Tests for the seven-day cutoff."""

    def test_window_is_seven_days(self):
        assert RETENTION_WINDOW == timedelta(days=7)
        assert RETENTION_WINDOW.total_seconds() * 1000 == 7 * 24 * 3600 * 1000

    def test_recent_record_is_retained(self):
        assert is_retained(NOW - timedelta(days=2), NOW) is True

    def test_exactly_seven_days_is_excluded(self):
        assert is_retained(NOW - timedelta(days=7), NOW) is False

    def test_just_inside_window(self):
        assert is_retained(NOW - timedelta(days=7) + timedelta(milliseconds=1), NOW) is True

    def test_old_record_is_dropped(self):
        assert is_retained(NOW - timedelta(days=10), NOW) is False

    def test_missing_timestamp_is_dropped(self):
        assert is_retained(None, NOW) is False


def test_filter_retained_preserves_order():
    records = [
        record("did:plc:a", [point()], 1),
        record("did:plc:b", [point()], 8),
        record("did:plc:c", [point()], 3),
    ]

    kept = filter_retained(records, NOW)

    assert [r.did for r in kept] == ["did:plc:a", "did:plc:c"]
