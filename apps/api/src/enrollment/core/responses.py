"""
Service result to HTTP translation, shared by the routers.
"""

import logging
from typing import TypeVar

from fastapi import HTTPException

from enrollment.core.errors import EnrollmentServiceError, ErrorCategory, ServiceResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _handle_service_error(e: EnrollmentServiceError) -> None:
    """Convert service errors to HTTPExceptions."""
    detail = {
        "error": e.error_code,
        "message": e.message,
    }
    if e.details:
        detail["details"] = e.details

    headers = {"Retry-After": "1"} if e.category is ErrorCategory.TRANSIENT else None
    raise HTTPException(status_code=e.status_code, detail=detail, headers=headers)


def unwrap_or_raise(result: ServiceResult[T]) -> T:
    """Return the value of a successful result, or raise the matching HTTPException."""
    if result.error is not None:
        if result.error.category is ErrorCategory.TRANSIENT:
            logger.warning(f"Transient failure: {result.error.message}")
        _handle_service_error(result.error)
    return result.value  # type: ignore[return-value]
