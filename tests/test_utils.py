"""
Tests for job utilities.
"""

from datetime import datetime, timedelta, timezone

import pytest

from jobengine.jobs.utils import (
    ProgressTracker, get_error_hint, parse_duration, resolve_delay_seconds, tags_match
)


class TestDurations:
    """Test duration and delay parsing."""

    @pytest.mark.parametrize("value,seconds", [
        ("45s", 45),
        ("5m", 300),
        ("2h", 7200),
        ("7d", 604800),
        ("1w", 604800),
    ])
    def test_parse_duration(self, value, seconds):
        assert parse_duration(value) == timedelta(seconds=seconds)

    @pytest.mark.parametrize("value", ["", "5", "five minutes", "5y", None, 30])
    def test_parse_duration_malformed(self, value):
        assert parse_duration(value) is None

    def test_delay_from_datetime(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert resolve_delay_seconds(now + timedelta(minutes=2), now=now) == 120
        assert resolve_delay_seconds(now - timedelta(minutes=2), now=now) == 0

    def test_naive_datetime_treated_as_utc(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert resolve_delay_seconds(datetime(2026, 1, 1, 12, 1), now=now) == 60

    def test_delay_other_forms(self):
        assert resolve_delay_seconds(None) == 0
        assert resolve_delay_seconds(timedelta(seconds=90)) == 90
        assert resolve_delay_seconds(2.5) == 2.5
        assert resolve_delay_seconds(-3) == 0
        assert resolve_delay_seconds("1h") == 3600
        assert resolve_delay_seconds("whenever") == 0


class TestTagMatching:
    """Test loose tag comparison."""

    def test_bidirectional_containment(self):
        assert tags_match("doc-1", "doc-1")
        assert tags_match("doc-1", "doc-10")
        assert tags_match("doc-10", "doc-1")
        assert not tags_match("doc-2", "doc-10")


class TestErrorHints:
    """Test user-facing hints for failed runs."""

    def test_known_hints(self):
        assert "rate limiting" in get_error_hint("HTTPError", "Rate limit exceeded")
        assert "timed out" in get_error_hint("TimeoutError", "")
        assert "not found" in get_error_hint("KeyError", "document not found")
        assert "payload" in get_error_hint("ValidationError", "1 validation error")

    def test_default_hint(self):
        assert get_error_hint("RuntimeError", "boom") == "An error occurred while processing. The run can be triggered again."


class TestProgressTracker:
    """Test weighted stage progress."""

    @pytest.fixture
    def tracker(self):
        return ProgressTracker([("download", 20), ("render", 70), ("upload", 10)])

    def test_stage_boundaries(self, tracker):
        assert tracker.stage("download") == {"progress": 0, "text": "download"}
        assert tracker.complete("download") == {"progress": 20, "text": "download"}
        assert tracker.stage("upload") == {"progress": 90, "text": "upload"}
        assert tracker.complete("upload")["progress"] == 100

    def test_progress_within_stage(self, tracker):
        status = tracker.progress("render", 7, 14)
        assert status == {"progress": 55, "text": "render (7/14)"}

    def test_unknown_stage(self, tracker):
        assert tracker.progress("index", 1, 2)["progress"] == 0
        assert tracker.complete("index")["progress"] == 100
