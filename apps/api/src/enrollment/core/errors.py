"""
Service Errors and Results

Every failure the core can report belongs to one of five categories:

- not_found: entity missing
- forbidden: ownership or role mismatch
- invalid_input: malformed dates, limit below 1, reason too short
- conflict: overlap, full session, duplicate, already processed, ...
- transient: store unavailable or timed out (retryable by the caller)

Inside a module, services raise EnrollmentServiceError subclasses. Public
operations are wrapped with @returns_result so callers receive a ServiceResult
holding either the value or the error; nothing is raised across that boundary.
The request layer maps categories to HTTP status codes.
"""

import enum
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, ParamSpec, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")


class ErrorCategory(str, enum.Enum):
    """Failure taxonomy shared by all modules."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    TRANSIENT = "transient"


CATEGORY_STATUS_CODES: dict[ErrorCategory, int] = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.FORBIDDEN: 403,
    ErrorCategory.INVALID_INPUT: 400,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.TRANSIENT: 503,
}


class EnrollmentServiceError(Exception):
    """Base exception for service errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.category = category
        self.details = details or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return CATEGORY_STATUS_CODES[self.category]


class NotFoundError(EnrollmentServiceError):
    """Raised when an entity does not exist."""

    def __init__(self, entity: str, entity_id: int | None = None):
        message = f"{entity} {entity_id} not found" if entity_id is not None else f"{entity} not found"
        super().__init__(
            message=message,
            error_code=f"{entity.upper().replace(' ', '_')}_NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
        )


class ForbiddenError(EnrollmentServiceError):
    """Raised when the caller does not own the entity."""

    def __init__(self, message: str = "You do not have access to this resource"):
        super().__init__(message=message, error_code="FORBIDDEN", category=ErrorCategory.FORBIDDEN)


class InvalidInputError(EnrollmentServiceError):
    """Raised for malformed or out-of-range input."""

    def __init__(self, message: str, error_code: str = "INVALID_INPUT"):
        super().__init__(message=message, error_code=error_code, category=ErrorCategory.INVALID_INPUT)


class ConflictError(EnrollmentServiceError):
    """Raised when an action would break an invariant."""

    def __init__(self, message: str, error_code: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.CONFLICT,
            details=details,
        )


class TransientError(EnrollmentServiceError):
    """Raised when the store is unavailable or the transaction timed out."""

    def __init__(self, message: str = "The service is temporarily unavailable. Please retry."):
        super().__init__(message=message, error_code="TRANSIENT", category=ErrorCategory.TRANSIENT)


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    """Either a value or a typed failure."""

    value: T | None = None
    error: EnrollmentServiceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ServiceResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: EnrollmentServiceError) -> "ServiceResult[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (TimeoutError, PoolTimeoutError, OperationalError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def returns_result(
    func: Callable[P, Awaitable[T]],
) -> Callable[P, Awaitable[ServiceResult[T]]]:
    """
    Turn a raising service coroutine into one returning ServiceResult.

    Service errors become failures as-is. Timeouts and connectivity errors from
    the store become TransientError. Anything else is a bug and propagates.
    """

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> ServiceResult[T]:
        try:
            return ServiceResult.success(await func(*args, **kwargs))
        except EnrollmentServiceError as e:
            return ServiceResult.failure(e)
        except Exception as e:
            if not _is_transient(e):
                raise
            logger.error(f"Transient failure in {func.__name__}: {e}", exc_info=True)
            return ServiceResult.failure(TransientError())

    return wrapper
