"""
Unit tests for the pure session rules.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest

from enrollment.modules.sessions import policy
from enrollment.modules.sessions.models import SessionStatus

T0 = datetime(2025, 3, 1, 10, 0, tzinfo=UTC)
HOUR = timedelta(hours=1)


@dataclass
class FakeSession:
    id: int
    start_time: datetime
    end_time: datetime
    student_limit: int = 3


class TestOverlap:
    """Tests for half-open range intersection."""

    @pytest.mark.parametrize(
        "start,end,expected",
        [
            (T0, T0 + HOUR, True),  # identical
            (T0 - HOUR, T0 + HOUR / 2, True),  # straddles the start
            (T0 + HOUR / 4, T0 + HOUR / 2, True),  # contained
            (T0 - HOUR, T0 + 2 * HOUR, True),  # contains
            (T0 + HOUR, T0 + 2 * HOUR, False),  # starts when the other ends
            (T0 - HOUR, T0, False),  # ends when the other starts
            (T0 + 3 * HOUR, T0 + 4 * HOUR, False),  # disjoint
        ],
    )
    def test_ranges_overlap(self, start, end, expected):
        assert policy.ranges_overlap(start, end, T0, T0 + HOUR) is expected

    def test_overlap_is_symmetric(self):
        assert policy.ranges_overlap(T0, T0 + HOUR, T0 + HOUR / 2, T0 + 2 * HOUR)
        assert policy.ranges_overlap(T0 + HOUR / 2, T0 + 2 * HOUR, T0, T0 + HOUR)

    def test_find_overlapping_returns_conflicts(self):
        sessions = [
            FakeSession(1, T0, T0 + HOUR),
            FakeSession(2, T0 + HOUR, T0 + 2 * HOUR),
            FakeSession(3, T0 + 5 * HOUR, T0 + 6 * HOUR),
        ]

        conflicts = policy.find_overlapping(T0 + HOUR / 2, T0 + 3 * HOUR, sessions)

        assert [s.id for s in conflicts] == [1, 2]

    def test_find_overlapping_ignores_excluded_session(self):
        """A session being edited does not conflict with itself."""
        sessions = [FakeSession(1, T0, T0 + HOUR)]

        assert policy.find_overlapping(T0, T0 + 2 * HOUR, sessions, exclude_session_id=1) == []

    def test_find_overlapping_with_no_sessions(self):
        assert policy.find_overlapping(T0, T0 + HOUR, []) == []


class TestCapacity:
    """Tests for slot arithmetic and limit decreases."""

    def test_available_slots(self):
        session = FakeSession(1, T0, T0 + HOUR, student_limit=3)
        assert policy.available_slots(session, 0) == 3
        assert policy.available_slots(session, 3) == 0
        assert policy.available_slots(session, 4) == -1

    @pytest.mark.parametrize(
        "new_limit,approved,expected",
        [(5, 3, True), (3, 3, True), (2, 3, False), (1, 0, True)],
    )
    def test_can_decrease_limit_to(self, new_limit, approved, expected):
        assert policy.can_decrease_limit_to(new_limit, approved) is expected

    def test_validate_limit(self):
        assert policy.validate_limit(1, 5) is None
        assert policy.validate_limit(5, 5) is None
        assert policy.validate_limit(0, 5) == "Student limit must be at least 1"
        assert "maximum of 5" in policy.validate_limit(6, 5)


class TestStatus:
    """Tests for derived session status."""

    @pytest.fixture
    def session(self):
        return FakeSession(1, T0, T0 + HOUR)

    def test_upcoming_before_start(self, session):
        assert policy.derive_status(session, T0 - timedelta(seconds=1)) is SessionStatus.UPCOMING

    def test_active_at_start(self, session):
        assert policy.derive_status(session, T0) is SessionStatus.ACTIVE
        assert policy.is_active(session, T0)

    def test_active_just_before_end(self, session):
        assert policy.derive_status(session, T0 + HOUR - timedelta(microseconds=1)) is SessionStatus.ACTIVE

    def test_past_exactly_at_end(self, session):
        """A session ending now is no longer open."""
        assert policy.derive_status(session, T0 + HOUR) is SessionStatus.PAST
        assert not policy.is_active(session, T0 + HOUR)

    def test_validate_date_range(self):
        assert policy.validate_date_range(T0, T0 + HOUR) is None
        assert policy.validate_date_range(T0, T0) == "Start time must be before end time"
        assert policy.validate_date_range(T0 + HOUR, T0) is not None
