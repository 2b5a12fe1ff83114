"""
Core module - Configuration, database, errors, coordination, and utilities.
"""

from enrollment.core.config import get_settings, settings
from enrollment.core.database import Base, atomic, close_db, get_db, init_db
from enrollment.core.errors import (
    EnrollmentServiceError,
    ErrorCategory,
    ServiceResult,
    returns_result,
)
from enrollment.core.locks import KeyedLocks, SingleFlight, locked_transaction

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "atomic",
    "get_db",
    "init_db",
    "close_db",
    # Errors
    "EnrollmentServiceError",
    "ErrorCategory",
    "ServiceResult",
    "returns_result",
    # Coordination
    "KeyedLocks",
    "SingleFlight",
    "locked_transaction",
]
