"""
Unit tests for the applications repository layer.

These tests focus on the state machine transitions and the bulk updates the
approval path relies on.
"""

import pytest

from enrollment.modules.applications import repository
from enrollment.modules.applications.models import ApplicationStatus, RejectionSource
from enrollment.modules.applications.repository import (
    VALID_STATUS_TRANSITIONS,
    InvalidStatusTransitionError,
    can_transition,
)


class TestStatusTransitions:
    """Tests for status transition state machine."""

    def test_valid_transitions_from_pending(self):
        """A pending application can be approved or rejected."""
        valid = VALID_STATUS_TRANSITIONS[ApplicationStatus.PENDING]
        assert valid == {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}

    def test_approved_can_only_be_withdrawn(self):
        valid = VALID_STATUS_TRANSITIONS[ApplicationStatus.APPROVED]
        assert valid == {ApplicationStatus.REJECTED}
        assert ApplicationStatus.PENDING not in valid

    def test_rejected_is_terminal(self):
        assert VALID_STATUS_TRANSITIONS[ApplicationStatus.REJECTED] == set()

    def test_all_statuses_are_in_transition_map(self):
        """Every status should be a key in the transition map."""
        for status in ApplicationStatus:
            assert status in VALID_STATUS_TRANSITIONS

    def test_can_transition(self):
        assert can_transition(ApplicationStatus.PENDING, ApplicationStatus.APPROVED)
        assert not can_transition(ApplicationStatus.REJECTED, ApplicationStatus.APPROVED)
        assert not can_transition(ApplicationStatus.APPROVED, ApplicationStatus.APPROVED)


class TestInvalidStatusTransitionError:
    """Tests for InvalidStatusTransitionError."""

    def test_error_message_contains_both_statuses(self):
        error = InvalidStatusTransitionError(ApplicationStatus.REJECTED, ApplicationStatus.APPROVED)
        assert "rejected" in str(error)
        assert "approved" in str(error)

    def test_error_stores_statuses(self):
        error = InvalidStatusTransitionError(ApplicationStatus.APPROVED, ApplicationStatus.PENDING)
        assert error.current_status is ApplicationStatus.APPROVED
        assert error.new_status is ApplicationStatus.PENDING


class TestUpdateStatus:
    """Tests for update_status against the database."""

    @pytest.mark.asyncio
    async def test_sets_status_and_fields(self, db, factory, clock):
        professor = await factory.professor()
        application = await factory.application(
            await factory.student(), await factory.session(professor)
        )

        updated = await repository.update_status(
            db,
            application,
            ApplicationStatus.REJECTED,
            now=clock.now(),
            rejection_reason="Not a match for the topic",
            rejection_source=RejectionSource.PROFESSOR,
        )

        assert updated.status is ApplicationStatus.REJECTED
        assert updated.rejection_reason == "Not a match for the topic"
        assert updated.rejection_source is RejectionSource.PROFESSOR

    @pytest.mark.asyncio
    async def test_refuses_transition_out_of_terminal_state(self, db, factory, clock):
        professor = await factory.professor()
        application = await factory.application(
            await factory.student(),
            await factory.session(professor),
            status=ApplicationStatus.REJECTED,
        )

        with pytest.raises(InvalidStatusTransitionError):
            await repository.update_status(
                db, application, ApplicationStatus.APPROVED, now=clock.now()
            )


class TestAutoRejectPending:
    """Tests for auto_reject_pending_for_student."""

    @pytest.mark.asyncio
    async def test_rejects_only_other_pending_applications(self, db, factory, clock, fetch):
        student = await factory.student()
        sessions = [await factory.session(await factory.professor(name=n)) for n in "ABCD"]
        kept = await factory.application(student, sessions[0])
        pending = await factory.application(student, sessions[1])
        approved = await factory.application(student, sessions[2], status=ApplicationStatus.APPROVED)
        rejected = await factory.application(
            student,
            sessions[3],
            status=ApplicationStatus.REJECTED,
            rejection_reason="Earlier rejection",
            rejection_source=RejectionSource.PROFESSOR,
        )
        other_student = await factory.application(await factory.student("Maria"), sessions[1])

        ids = await repository.auto_reject_pending_for_student(
            db,
            student_id=student.id,
            exclude_application_id=kept.id,
            reason="Auto-rejected",
            now=clock.now(),
        )
        await db.commit()

        assert ids == [pending.id]
        row = await fetch(pending.id)
        assert row.status is ApplicationStatus.REJECTED
        assert row.rejection_source is RejectionSource.AUTO
        assert row.rejection_reason == "Auto-rejected"

        assert (await fetch(kept.id)).status is ApplicationStatus.PENDING
        assert (await fetch(approved.id)).status is ApplicationStatus.APPROVED
        assert (await fetch(rejected.id)).rejection_reason == "Earlier rejection"
        assert (await fetch(other_student.id)).status is ApplicationStatus.PENDING

    @pytest.mark.asyncio
    async def test_nothing_to_reject(self, db, factory, clock):
        student = await factory.student()
        only = await factory.application(student, await factory.session(await factory.professor()))

        ids = await repository.auto_reject_pending_for_student(
            db,
            student_id=student.id,
            exclude_application_id=only.id,
            reason="Auto-rejected",
            now=clock.now(),
        )

        assert ids == []


class TestCounts:
    """Tests for the professor dashboard counts."""

    @pytest.mark.asyncio
    async def test_every_status_is_present(self, db, factory):
        professor = await factory.professor()
        session = await factory.session(professor)
        await factory.application(await factory.student("Ion"), session)
        await factory.application(
            await factory.student("Maria"), session, status=ApplicationStatus.APPROVED
        )

        counts = await repository.count_by_status_for_professor(db, professor.id)

        assert counts == {
            ApplicationStatus.PENDING: 1,
            ApplicationStatus.APPROVED: 1,
            ApplicationStatus.REJECTED: 0,
        }
