"""
Applications Service Layer

The application state machine:

    pending  -> approved   (professor approves; capacity permitting)
    pending  -> rejected   (professor rejects with a reason, or auto-rejected)
    approved -> rejected   (professor withdraws the approval)
    rejected -> (terminal)

Every operation is one transaction. Preconditions are read inside it with row
locks, and callers in this process are serialized by keyed locks taken in a
fixed order: ("student", id) first, then ("session", id). The approved count
of a session is always recounted from the table inside the transaction, so
two approvals racing for the last slot cannot both succeed.

Approving an application rejects every other pending application of the same
student in the same transaction. A student is therefore enrolled with at most
one professor.
"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.core.clock import Clock, system_clock
from enrollment.core.config import settings
from enrollment.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    returns_result,
)
from enrollment.core.locks import locked_transaction
from enrollment.modules.applications import repository
from enrollment.modules.applications.models import (
    Application,
    ApplicationStatus,
    RejectionSource,
)
from enrollment.modules.applications.schemas import (
    MIN_REJECTION_REASON_LENGTH,
    ApplicationCounts,
    ApplicationResponse,
    ApprovalResponse,
    ProfessorApplicationListResponse,
    StudentApplicationListResponse,
    UnsignedTemplate,
)
from enrollment.modules.sessions import policy as session_policy
from enrollment.modules.sessions import repository as session_repository
from enrollment.modules.sessions.models import SessionStatus
from enrollment.modules.users import UserRepository

logger = logging.getLogger(__name__)

AUTO_REJECTION_REASON = "Auto-rejected: Student approved by another professor"


# ============================================
# Exceptions
# ============================================


class ProfessorMismatchError(InvalidInputError):
    """Raised when the submitted professor does not own the session."""

    def __init__(self):
        super().__init__(
            message="Professor does not own this session",
            error_code="PROFESSOR_MISMATCH",
        )


class SessionNotActiveError(ConflictError):
    """Raised when applying outside the session's [start, end) window."""

    def __init__(self, session_status: SessionStatus):
        if session_status is SessionStatus.UPCOMING:
            message = "Cannot enroll in a session that has not started yet"
        else:
            message = "Cannot enroll in a session that has already ended"
        super().__init__(
            message=message,
            error_code="SESSION_NOT_ACTIVE",
            details={"session_status": session_status.value},
        )


class SessionFullError(ConflictError):
    """Raised when the session has no free slot left."""

    def __init__(self, student_limit: int):
        super().__init__(
            message=f"Session has reached its limit of {student_limit} approved students",
            error_code="SESSION_FULL",
            details={"student_limit": student_limit},
        )


class DuplicateApplicationError(ConflictError):
    """Raised when the student already applied to the session."""

    def __init__(self, existing_id: int | None, existing_status: ApplicationStatus | None):
        super().__init__(
            message="You have already applied to this session",
            error_code="DUPLICATE_APPLICATION",
            details={
                "existing_application_id": existing_id,
                "existing_status": existing_status.value if existing_status else None,
            },
        )


class AlreadyProcessedError(ConflictError):
    """Raised when approving or rejecting an application that is no longer pending."""

    def __init__(self, current_status: ApplicationStatus):
        super().__init__(
            message=f"Application is already {current_status.value}. Cannot change status.",
            error_code="ALREADY_PROCESSED",
            details={"current_status": current_status.value},
        )


class NotApprovedError(ConflictError):
    """Raised when an action needs an approved application."""

    def __init__(self, message: str, current_status: ApplicationStatus):
        super().__init__(
            message=message,
            error_code="NOT_APPROVED",
            details={"current_status": current_status.value},
        )


class InvalidReasonError(InvalidInputError):
    """Raised when a rejection reason is missing or too short."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="INVALID_REASON")


class InvalidFileReferenceError(InvalidInputError):
    """Raised for an empty file reference or one with parent-directory segments."""

    def __init__(self, message: str = "Invalid file reference"):
        super().__init__(message=message, error_code="INVALID_FILE_REFERENCE")


# ============================================
# Helper Functions
# ============================================


def _to_response(application: Application) -> ApplicationResponse:
    return ApplicationResponse.model_validate(application)


def _clean_file_ref(file_ref: str) -> str:
    clean = file_ref.strip()
    if not clean:
        raise InvalidFileReferenceError("File reference is required")
    if ".." in clean.replace("\\", "/").split("/"):
        raise InvalidFileReferenceError("File reference may not contain '..' segments")
    return clean


async def _lock_keys_for(db: AsyncSession, application_id: int) -> tuple[tuple, tuple]:
    """
    Read an application's student and session ids to build its lock keys.

    Both ids are immutable, so reading them before the locks are held is safe;
    everything else is re-read inside the transaction.
    """
    application = await repository.get_by_id(db, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    return ("student", application.student_id), ("session", application.session_id)


async def _get_locked(db: AsyncSession, application_id: int) -> Application:
    application = await repository.get_for_update(db, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    return application


def _check_professor(application: Application, professor_id: int) -> None:
    if application.professor_id != professor_id:
        raise ForbiddenError("You do not have access to this application")


def _check_student(application: Application, student_id: int) -> None:
    if application.student_id != student_id:
        raise ForbiddenError("You do not have access to this application")


# ============================================
# State Machine Operations
# ============================================


@returns_result
async def submit_application(
    db: AsyncSession,
    student_id: int,
    session_id: int,
    professor_id: int,
    *,
    clock: Clock = system_clock,
) -> ApplicationResponse:
    """
    Submit a pending application to an active session.

    Raises (as failures):
        NotFoundError: Unknown student or session
        ProfessorMismatchError: professor_id does not own the session
        SessionNotActiveError: Session not started or already ended
        DuplicateApplicationError: The student already applied here
        SessionFullError: No free slot left
    """
    try:
        async with locked_transaction(
            db,
            ("student", student_id),
            ("session", session_id),
            timeout=settings.transaction_timeout_seconds,
        ):
            if await UserRepository.get_student(db, student_id) is None:
                raise NotFoundError("Student", student_id)

            session = await session_repository.get_for_update(db, session_id)
            if session is None:
                raise NotFoundError("Session", session_id)
            if session.professor_id != professor_id:
                raise ProfessorMismatchError()

            now = clock.now()
            session_status = session_policy.derive_status(session, now)
            if session_status is not SessionStatus.ACTIVE:
                raise SessionNotActiveError(session_status)

            existing = await repository.get_by_student_and_session(db, student_id, session_id)
            if existing is not None:
                raise DuplicateApplicationError(existing.id, existing.status)

            approved_count = await session_repository.count_approved(db, session_id)
            if session_policy.available_slots(session, approved_count) <= 0:
                raise SessionFullError(session.student_limit)

            application = await repository.create(
                db,
                student_id=student_id,
                session_id=session_id,
                professor_id=session.professor_id,
                now=now,
            )
    except IntegrityError as e:
        # Another process inserted the same (student, session) pair first
        logger.warning(
            f"Unique constraint hit submitting student {student_id} to session {session_id}"
        )
        existing = await repository.get_by_student_and_session(db, student_id, session_id)
        raise DuplicateApplicationError(
            existing.id if existing else None,
            existing.status if existing else None,
        ) from e

    logger.info(
        f"Application {application.id} submitted: student={student_id}, session={session_id}"
    )
    return _to_response(application)


@returns_result
async def approve_application(
    db: AsyncSession,
    application_id: int,
    professor_id: int,
    *,
    clock: Clock = system_clock,
) -> ApprovalResponse:
    """
    Approve a pending application and auto-reject the student's other pending ones.

    Raises (as failures):
        NotFoundError: Unknown application
        ForbiddenError: Application addressed to another professor
        AlreadyProcessedError: Application is not pending
        SessionFullError: Approved count already at the limit
    """
    student_key, session_key = await _lock_keys_for(db, application_id)

    async with locked_transaction(
        db, student_key, session_key, timeout=settings.transaction_timeout_seconds
    ):
        application = await _get_locked(db, application_id)
        _check_professor(application, professor_id)
        if application.status != ApplicationStatus.PENDING:
            raise AlreadyProcessedError(application.status)

        session = await session_repository.get_for_update(db, application.session_id)
        if session is None:
            raise NotFoundError("Session", application.session_id)

        approved_count = await session_repository.count_approved(db, session.id)
        if session_policy.available_slots(session, approved_count) <= 0:
            raise SessionFullError(session.student_limit)

        now = clock.now()
        application = await repository.update_status(
            db,
            application,
            ApplicationStatus.APPROVED,
            now=now,
            rejection_reason=None,
            rejection_source=None,
        )
        auto_rejected_ids = await repository.auto_reject_pending_for_student(
            db,
            student_id=application.student_id,
            exclude_application_id=application.id,
            reason=AUTO_REJECTION_REASON,
            now=now,
        )

    logger.info(
        f"Application {application_id} approved by professor {professor_id} "
        f"({approved_count + 1}/{session.student_limit}); "
        f"auto-rejected {len(auto_rejected_ids)} other application(s)"
    )
    return ApprovalResponse(
        application=_to_response(application),
        auto_rejected_ids=auto_rejected_ids,
    )


@returns_result
async def reject_application(
    db: AsyncSession,
    application_id: int,
    professor_id: int,
    reason: str,
    *,
    clock: Clock = system_clock,
) -> ApplicationResponse:
    """
    Reject a pending application with a written reason.

    The reason must have at least 10 characters once surrounding whitespace
    is removed.
    """
    reason = (reason or "").strip()
    if not reason:
        raise InvalidReasonError("A reason is required for rejection")
    if len(reason) < MIN_REJECTION_REASON_LENGTH:
        raise InvalidReasonError(
            f"Reason must be at least {MIN_REJECTION_REASON_LENGTH} characters long"
        )

    student_key, session_key = await _lock_keys_for(db, application_id)

    async with locked_transaction(
        db, student_key, session_key, timeout=settings.transaction_timeout_seconds
    ):
        application = await _get_locked(db, application_id)
        _check_professor(application, professor_id)
        if application.status != ApplicationStatus.PENDING:
            raise AlreadyProcessedError(application.status)

        application = await repository.update_status(
            db,
            application,
            ApplicationStatus.REJECTED,
            now=clock.now(),
            rejection_reason=reason,
            rejection_source=RejectionSource.PROFESSOR,
        )

    logger.info(f"Application {application_id} rejected by professor {professor_id}")
    return _to_response(application)


@returns_result
async def unapprove_application(
    db: AsyncSession,
    application_id: int,
    professor_id: int,
    reason: str,
    *,
    clock: Clock = system_clock,
) -> ApplicationResponse:
    """
    Withdraw an approval.

    The application becomes rejected and the student's signed file reference
    is cleared, so a resubmission is needed. The freed slot shows up in the
    next recount; nothing else changes. Applications auto-rejected by the
    earlier approval stay rejected.
    """
    reason = (reason or "").strip()
    if not reason:
        raise InvalidReasonError("Rejection reason is required")

    student_key, session_key = await _lock_keys_for(db, application_id)

    async with locked_transaction(
        db, student_key, session_key, timeout=settings.transaction_timeout_seconds
    ):
        application = await _get_locked(db, application_id)
        _check_professor(application, professor_id)
        if application.status != ApplicationStatus.APPROVED:
            raise NotApprovedError(
                "Only approved applications can be rejected", application.status
            )

        application = await repository.update_status(
            db,
            application,
            ApplicationStatus.REJECTED,
            now=clock.now(),
            rejection_reason=reason,
            rejection_source=RejectionSource.UNAPPROVED,
            signed_file_ref=None,
        )

    logger.info(f"Approval of application {application_id} withdrawn by professor {professor_id}")
    return _to_response(application)


@returns_result
async def set_signed_file(
    db: AsyncSession,
    application_id: int,
    student_id: int,
    file_ref: str,
    *,
    clock: Clock = system_clock,
) -> ApplicationResponse:
    """Attach the student's signed request file to an approved application."""
    file_ref = _clean_file_ref(file_ref)
    student_key, session_key = await _lock_keys_for(db, application_id)

    async with locked_transaction(
        db, student_key, session_key, timeout=settings.transaction_timeout_seconds
    ):
        application = await _get_locked(db, application_id)
        _check_student(application, student_id)
        if application.status != ApplicationStatus.APPROVED:
            raise NotApprovedError(
                "Only approved applications can have signed files uploaded",
                application.status,
            )

        application = await repository.set_file_ref(
            db, application, field="signed_file_ref", file_ref=file_ref, now=clock.now()
        )

    logger.info(f"Signed file attached to application {application_id} by student {student_id}")
    return _to_response(application)


@returns_result
async def set_response_file(
    db: AsyncSession,
    application_id: int,
    professor_id: int,
    file_ref: str,
    *,
    clock: Clock = system_clock,
) -> ApplicationResponse:
    """Attach the professor's response file to an approved application."""
    file_ref = _clean_file_ref(file_ref)
    student_key, session_key = await _lock_keys_for(db, application_id)

    async with locked_transaction(
        db, student_key, session_key, timeout=settings.transaction_timeout_seconds
    ):
        application = await _get_locked(db, application_id)
        _check_professor(application, professor_id)
        if application.status != ApplicationStatus.APPROVED:
            raise NotApprovedError(
                "Only approved applications can have response files uploaded",
                application.status,
            )

        application = await repository.set_file_ref(
            db, application, field="response_file_ref", file_ref=file_ref, now=clock.now()
        )

    logger.info(
        f"Response file attached to application {application_id} by professor {professor_id}"
    )
    return _to_response(application)


# ============================================
# Read Models
# ============================================


@returns_result
async def list_professor_applications(
    db: AsyncSession,
    professor_id: int,
    status: ApplicationStatus | None = None,
) -> ProfessorApplicationListResponse:
    """Applications addressed to a professor, with counts for every status."""
    applications = await repository.list_for_professor(db, professor_id, status)
    counts = await repository.count_by_status_for_professor(db, professor_id)

    return ProfessorApplicationListResponse(
        applications=[_to_response(a) for a in applications],
        total=len(applications),
        counts=ApplicationCounts(
            pending=counts[ApplicationStatus.PENDING],
            approved=counts[ApplicationStatus.APPROVED],
            rejected=counts[ApplicationStatus.REJECTED],
        ),
    )


@returns_result
async def list_student_applications(
    db: AsyncSession,
    student_id: int,
    status: ApplicationStatus | None = None,
) -> StudentApplicationListResponse:
    applications = await repository.list_for_student(db, student_id, status)
    return StudentApplicationListResponse(
        applications=[_to_response(a) for a in applications],
        total=len(applications),
    )


@returns_result
async def get_application_for_professor(
    db: AsyncSession,
    application_id: int,
    professor_id: int,
) -> ApplicationResponse:
    application = await repository.get_by_id(db, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    _check_professor(application, professor_id)
    return _to_response(application)


@returns_result
async def get_application_for_student(
    db: AsyncSession,
    application_id: int,
    student_id: int,
) -> ApplicationResponse:
    application = await repository.get_by_id(db, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    _check_student(application, student_id)
    return _to_response(application)


# ============================================
# Documents
# ============================================

UNSIGNED_TEMPLATE = """\
DISSERTATION APPLICATION FORM - UNSIGNED TEMPLATE

Application ID: {application_id}
Student ID: {student_id}
Session ID: {session_id}

---

This is an unsigned template. Please fill in your information, print this document, sign it,
and upload the signed PDF version back to the application system.

Student Name: ___________________________
Date: ___________________________
Signature: ___________________________

---

For questions, contact your professor."""


@returns_result
async def get_unsigned_template(
    db: AsyncSession,
    application_id: int,
    professor_id: int,
) -> UnsignedTemplate:
    """
    Build the request form for an approved application.

    Raises:
        NotFoundError: Unknown application
        ForbiddenError: Application addressed to another professor
        NotApprovedError: Application is not approved
    """
    application = await repository.get_by_id(db, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    _check_professor(application, professor_id)
    if application.status is not ApplicationStatus.APPROVED:
        raise NotApprovedError(
            "Unsigned template is only available for approved applications",
            application.status,
        )

    return UnsignedTemplate(
        filename=f"dissertation-template-{application.id}.txt",
        content=UNSIGNED_TEMPLATE.format(
            application_id=application.id,
            student_id=application.student_id,
            session_id=application.session_id,
        ),
    )
