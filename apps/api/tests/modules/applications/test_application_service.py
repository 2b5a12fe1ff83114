"""
Tests for the application state machine, against a real SQLite database.
"""

from datetime import timedelta

import pytest

from enrollment.core.errors import ErrorCategory
from enrollment.core.locks import decision_locks
from enrollment.modules.applications import service
from enrollment.modules.applications.models import ApplicationStatus, RejectionSource

DAY = timedelta(days=1)
REASON = "The proposed topic is outside my area"


class TestSubmitApplication:
    """Tests for submit_application."""

    @pytest.mark.asyncio
    async def test_submit_creates_pending_application(self, db, factory, clock):
        professor = await factory.professor()
        session = await factory.session(professor)
        student = await factory.student()

        result = await service.submit_application(
            db, student.id, session.id, professor.id, clock=clock
        )

        assert result.ok
        application = result.value
        assert application.status is ApplicationStatus.PENDING
        assert application.professor_id == professor.id
        assert application.created_at == clock.now()

    @pytest.mark.asyncio
    async def test_unknown_student(self, db, factory, clock):
        professor = await factory.professor()
        session = await factory.session(professor)

        result = await service.submit_application(db, 999, session.id, professor.id, clock=clock)

        assert result.error.error_code == "STUDENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_session(self, db, factory, clock):
        professor = await factory.professor()
        student = await factory.student()

        result = await service.submit_application(db, student.id, 999, professor.id, clock=clock)

        assert result.error.error_code == "SESSION_NOT_FOUND"
        assert result.error.category is ErrorCategory.NOT_FOUND

    @pytest.mark.asyncio
    async def test_professor_mismatch(self, db, factory, clock):
        owner = await factory.professor(name="Ana")
        other = await factory.professor(name="Dan")
        session = await factory.session(owner)
        student = await factory.student()

        result = await service.submit_application(db, student.id, session.id, other.id, clock=clock)

        assert result.error.error_code == "PROFESSOR_MISMATCH"
        assert result.error.category is ErrorCategory.INVALID_INPUT

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "starts_in,duration,expected_status",
        [
            (DAY, DAY, "upcoming"),
            (-2 * DAY, DAY, "past"),
            (-DAY, DAY, "past"),  # ends exactly now
        ],
    )
    async def test_session_not_active(
        self, db, factory, clock, starts_in, duration, expected_status
    ):
        professor = await factory.professor()
        session = await factory.session(professor, starts_in=starts_in, duration=duration)
        student = await factory.student()

        result = await service.submit_application(
            db, student.id, session.id, professor.id, clock=clock
        )

        assert result.error.error_code == "SESSION_NOT_ACTIVE"
        assert result.error.details == {"session_status": expected_status}

    @pytest.mark.asyncio
    async def test_duplicate_application(self, db, factory, clock):
        professor = await factory.professor()
        session = await factory.session(professor)
        student = await factory.student()
        existing = await factory.application(
            student, session, status=ApplicationStatus.REJECTED, rejection_reason="No"
        )

        result = await service.submit_application(
            db, student.id, session.id, professor.id, clock=clock
        )

        assert result.error.error_code == "DUPLICATE_APPLICATION"
        assert result.error.details == {
            "existing_application_id": existing.id,
            "existing_status": "rejected",
        }

    @pytest.mark.asyncio
    async def test_duplicate_is_reported_before_full(self, db, factory, clock):
        """A student who already applied hears about the duplicate, not the capacity."""
        professor = await factory.professor()
        session = await factory.session(professor, student_limit=1)
        student = await factory.student("Ion")
        await factory.application(student, session)
        await factory.application(
            await factory.student("Maria"), session, status=ApplicationStatus.APPROVED
        )

        result = await service.submit_application(
            db, student.id, session.id, professor.id, clock=clock
        )

        assert result.error.error_code == "DUPLICATE_APPLICATION"

    @pytest.mark.asyncio
    async def test_full_session(self, db, factory, clock):
        professor = await factory.professor()
        session = await factory.session(professor, student_limit=1)
        await factory.application(
            await factory.student("Maria"), session, status=ApplicationStatus.APPROVED
        )
        student = await factory.student("Ion")

        result = await service.submit_application(
            db, student.id, session.id, professor.id, clock=clock
        )

        assert result.error.error_code == "SESSION_FULL"
        assert result.error.details == {"student_limit": 1}


class TestApproveApplication:
    """Tests for approve_application."""

    @pytest.mark.asyncio
    async def test_approve_auto_rejects_other_pending(self, db, factory, clock, fetch):
        ana = await factory.professor(name="Ana")
        dan = await factory.professor(name="Dan")
        eva = await factory.professor(name="Eva")
        student = await factory.student()

        chosen = await factory.application(student, await factory.session(ana))
        sibling = await factory.application(student, await factory.session(dan))
        old_rejection = await factory.application(
            student,
            await factory.session(eva),
            status=ApplicationStatus.REJECTED,
            rejection_reason="Topic is not a fit",
            rejection_source=RejectionSource.PROFESSOR,
        )

        result = await service.approve_application(db, chosen.id, ana.id, clock=clock)

        assert result.ok
        assert result.value.application.status is ApplicationStatus.APPROVED
        assert result.value.auto_rejected_ids == [sibling.id]

        sibling_row = await fetch(sibling.id)
        assert sibling_row.status is ApplicationStatus.REJECTED
        assert sibling_row.rejection_reason == service.AUTO_REJECTION_REASON
        assert sibling_row.rejection_source is RejectionSource.AUTO

        old_row = await fetch(old_rejection.id)
        assert old_row.rejection_reason == "Topic is not a fit"
        assert old_row.rejection_source is RejectionSource.PROFESSOR

    @pytest.mark.asyncio
    async def test_full_session_keeps_application_pending(self, db, factory, clock, fetch):
        professor = await factory.professor()
        session = await factory.session(professor, student_limit=1)
        await factory.application(
            await factory.student("Maria"), session, status=ApplicationStatus.APPROVED
        )
        waiting = await factory.application(await factory.student("Ion"), session)

        result = await service.approve_application(db, waiting.id, professor.id, clock=clock)

        assert result.error.error_code == "SESSION_FULL"
        assert (await fetch(waiting.id)).status is ApplicationStatus.PENDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [ApplicationStatus.APPROVED, ApplicationStatus.REJECTED])
    async def test_already_processed(self, db, factory, clock, status):
        professor = await factory.professor()
        application = await factory.application(
            await factory.student(), await factory.session(professor), status=status
        )

        result = await service.approve_application(db, application.id, professor.id, clock=clock)

        assert result.error.error_code == "ALREADY_PROCESSED"
        assert result.error.details == {"current_status": status.value}

    @pytest.mark.asyncio
    async def test_other_professor_is_forbidden(self, db, factory, clock):
        owner = await factory.professor(name="Ana")
        other = await factory.professor(name="Dan")
        application = await factory.application(await factory.student(), await factory.session(owner))

        result = await service.approve_application(db, application.id, other.id, clock=clock)

        assert result.error.category is ErrorCategory.FORBIDDEN

    @pytest.mark.asyncio
    async def test_missing_application(self, db, clock):
        result = await service.approve_application(db, 404, 1, clock=clock)

        assert result.error.error_code == "APPLICATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_lock_timeout_is_transient(self, db, factory, clock, monkeypatch):
        """A decision that cannot get its locks in time is retryable."""
        professor = await factory.professor()
        session = await factory.session(professor)
        application = await factory.application(await factory.student(), session)
        monkeypatch.setattr(service.settings, "transaction_timeout_seconds", 0.01)

        async with decision_locks.hold(("session", session.id)):
            result = await service.approve_application(db, application.id, professor.id, clock=clock)

        assert result.error.category is ErrorCategory.TRANSIENT
        assert result.error.status_code == 503


class TestRejectApplication:
    """Tests for reject_application."""

    @pytest.mark.asyncio
    async def test_reject_stores_trimmed_reason(self, db, factory, clock):
        professor = await factory.professor()
        application = await factory.application(await factory.student(), await factory.session(professor))

        result = await service.reject_application(
            db, application.id, professor.id, f"  {REASON}  ", clock=clock
        )

        assert result.value.status is ApplicationStatus.REJECTED
        assert result.value.rejection_reason == REASON
        assert result.value.rejection_source is RejectionSource.PROFESSOR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", ["", "too short", "   short      "])
    async def test_reason_too_short(self, db, factory, clock, fetch, reason):
        """Whitespace does not count toward the minimum length."""
        professor = await factory.professor()
        application = await factory.application(await factory.student(), await factory.session(professor))

        result = await service.reject_application(db, application.id, professor.id, reason, clock=clock)

        assert result.error.error_code == "INVALID_REASON"
        assert result.error.category is ErrorCategory.INVALID_INPUT
        assert (await fetch(application.id)).status is ApplicationStatus.PENDING

    @pytest.mark.asyncio
    async def test_exactly_minimum_length(self, db, factory, clock):
        professor = await factory.professor()
        application = await factory.application(await factory.student(), await factory.session(professor))

        result = await service.reject_application(
            db, application.id, professor.id, "0123456789", clock=clock
        )

        assert result.ok

    @pytest.mark.asyncio
    async def test_approved_cannot_be_rejected_this_way(self, db, factory, clock):
        professor = await factory.professor()
        application = await factory.application(
            await factory.student(), await factory.session(professor), status=ApplicationStatus.APPROVED
        )

        result = await service.reject_application(db, application.id, professor.id, REASON, clock=clock)

        assert result.error.error_code == "ALREADY_PROCESSED"


class TestUnapproveApplication:
    """Tests for unapprove_application."""

    @pytest.mark.asyncio
    async def test_unapprove_clears_signed_file_and_frees_slot(self, db, factory, clock):
        professor = await factory.professor()
        session = await factory.session(professor, student_limit=1)
        approved = await factory.application(
            await factory.student("Ion"),
            session,
            status=ApplicationStatus.APPROVED,
            signed_file_ref="/uploads/signed-1.pdf",
            response_file_ref="/uploads/response-1.pdf",
        )
        waiting = await factory.application(await factory.student("Maria"), session)

        result = await service.unapprove_application(db, approved.id, professor.id, "Changed plans", clock=clock)

        assert result.value.status is ApplicationStatus.REJECTED
        assert result.value.rejection_source is RejectionSource.UNAPPROVED
        assert result.value.rejection_reason == "Changed plans"
        assert result.value.signed_file_ref is None
        assert result.value.response_file_ref == "/uploads/response-1.pdf"

        approval = await service.approve_application(db, waiting.id, professor.id, clock=clock)
        assert approval.ok

    @pytest.mark.asyncio
    async def test_auto_rejected_siblings_stay_rejected(self, db, factory, clock, fetch):
        ana = await factory.professor(name="Ana")
        dan = await factory.professor(name="Dan")
        student = await factory.student()
        chosen = await factory.application(student, await factory.session(ana))
        sibling = await factory.application(student, await factory.session(dan))

        await service.approve_application(db, chosen.id, ana.id, clock=clock)
        await service.unapprove_application(db, chosen.id, ana.id, "Changed plans", clock=clock)

        assert (await fetch(sibling.id)).status is ApplicationStatus.REJECTED

    @pytest.mark.asyncio
    async def test_pending_cannot_be_unapproved(self, db, factory, clock):
        professor = await factory.professor()
        application = await factory.application(await factory.student(), await factory.session(professor))

        result = await service.unapprove_application(db, application.id, professor.id, REASON, clock=clock)

        assert result.error.error_code == "NOT_APPROVED"

    @pytest.mark.asyncio
    async def test_reason_required(self, db, factory, clock):
        professor = await factory.professor()
        application = await factory.application(
            await factory.student(), await factory.session(professor), status=ApplicationStatus.APPROVED
        )

        result = await service.unapprove_application(db, application.id, professor.id, "   ", clock=clock)

        assert result.error.error_code == "INVALID_REASON"


class TestFileReferences:
    """Tests for set_signed_file and set_response_file."""

    @pytest.mark.asyncio
    async def test_student_attaches_signed_file(self, db, factory, clock):
        professor = await factory.professor()
        student = await factory.student()
        application = await factory.application(
            student, await factory.session(professor), status=ApplicationStatus.APPROVED
        )

        result = await service.set_signed_file(
            db, application.id, student.id, " /uploads/signed-1.pdf ", clock=clock
        )

        assert result.value.signed_file_ref == "/uploads/signed-1.pdf"

    @pytest.mark.asyncio
    async def test_professor_attaches_response_file(self, db, factory, clock):
        professor = await factory.professor()
        application = await factory.application(
            await factory.student(), await factory.session(professor), status=ApplicationStatus.APPROVED
        )

        result = await service.set_response_file(
            db, application.id, professor.id, "/uploads/response-1.pdf", clock=clock
        )

        assert result.value.response_file_ref == "/uploads/response-1.pdf"

    @pytest.mark.asyncio
    async def test_pending_application_refuses_files(self, db, factory, clock):
        professor = await factory.professor()
        student = await factory.student()
        application = await factory.application(student, await factory.session(professor))

        result = await service.set_signed_file(
            db, application.id, student.id, "/uploads/signed-1.pdf", clock=clock
        )

        assert result.error.error_code == "NOT_APPROVED"

    @pytest.mark.asyncio
    async def test_other_student_is_forbidden(self, db, factory, clock):
        professor = await factory.professor()
        owner = await factory.student("Ion")
        other = await factory.student("Maria")
        application = await factory.application(
            owner, await factory.session(professor), status=ApplicationStatus.APPROVED
        )

        result = await service.set_signed_file(
            db, application.id, other.id, "/uploads/signed-1.pdf", clock=clock
        )

        assert result.error.category is ErrorCategory.FORBIDDEN

    @pytest.mark.asyncio
    @pytest.mark.parametrize("file_ref", ["   ", "/uploads/../etc/passwd"])
    async def test_invalid_reference(self, db, factory, clock, file_ref):
        professor = await factory.professor()
        student = await factory.student()
        application = await factory.application(
            student, await factory.session(professor), status=ApplicationStatus.APPROVED
        )

        result = await service.set_signed_file(db, application.id, student.id, file_ref, clock=clock)

        assert result.error.error_code == "INVALID_FILE_REFERENCE"


class TestReadModels:
    """Tests for the application listings."""

    @pytest.mark.asyncio
    async def test_professor_listing_with_counts(self, db, factory):
        professor = await factory.professor()
        session = await factory.session(professor)
        await factory.application(await factory.student("Ion"), session)
        await factory.application(await factory.student("Maria"), session)
        await factory.application(
            await factory.student("Vlad"), session, status=ApplicationStatus.APPROVED
        )

        everything = await service.list_professor_applications(db, professor.id)
        pending = await service.list_professor_applications(db, professor.id, ApplicationStatus.PENDING)

        assert everything.value.total == 3
        assert everything.value.counts.model_dump() == {"pending": 2, "approved": 1, "rejected": 0}
        assert pending.value.total == 2
        assert pending.value.counts.approved == 1

    @pytest.mark.asyncio
    async def test_student_listing(self, db, factory):
        student = await factory.student()
        await factory.application(student, await factory.session(await factory.professor(name="Ana")))
        await factory.application(student, await factory.session(await factory.professor(name="Dan")))

        result = await service.list_student_applications(db, student.id)

        assert result.value.total == 2

    @pytest.mark.asyncio
    async def test_get_application_checks_ownership(self, db, factory):
        professor = await factory.professor()
        owner = await factory.student("Ion")
        other = await factory.student("Maria")
        application = await factory.application(owner, await factory.session(professor))

        mine = await service.get_application_for_student(db, application.id, owner.id)
        theirs = await service.get_application_for_student(db, application.id, other.id)
        as_professor = await service.get_application_for_professor(db, application.id, professor.id)

        assert mine.value.id == application.id
        assert theirs.error.category is ErrorCategory.FORBIDDEN
        assert as_professor.ok


class TestUnsignedTemplate:
    """Tests for get_unsigned_template."""

    @pytest.mark.asyncio
    async def test_template_for_approved_application(self, db, factory):
        professor = await factory.professor()
        session = await factory.session(professor)
        student = await factory.student()
        application = await factory.application(student, session, status=ApplicationStatus.APPROVED)

        result = await service.get_unsigned_template(db, application.id, professor.id)

        assert result.value.filename == f"dissertation-template-{application.id}.txt"
        assert f"Application ID: {application.id}" in result.value.content
        assert f"Student ID: {student.id}" in result.value.content
        assert f"Session ID: {session.id}" in result.value.content

    @pytest.mark.asyncio
    async def test_pending_application_has_no_template(self, db, factory):
        professor = await factory.professor()
        application = await factory.application(
            await factory.student(), await factory.session(professor)
        )

        result = await service.get_unsigned_template(db, application.id, professor.id)

        assert result.error.error_code == "NOT_APPROVED"
        assert result.error.details == {"current_status": "pending"}

    @pytest.mark.asyncio
    async def test_other_professor_is_forbidden(self, db, factory):
        owner = await factory.professor(name="Ana")
        other = await factory.professor(name="Dan")
        application = await factory.application(
            await factory.student(), await factory.session(owner), status=ApplicationStatus.APPROVED
        )

        forbidden = await service.get_unsigned_template(db, application.id, other.id)
        missing = await service.get_unsigned_template(db, 999, owner.id)

        assert forbidden.error.category is ErrorCategory.FORBIDDEN
        assert missing.error.category is ErrorCategory.NOT_FOUND
