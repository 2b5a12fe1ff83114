"""
Enrollment sessions module - professor-defined application windows.
"""

from enrollment.modules.sessions.models import EnrollmentSession, SessionStatus

__all__ = ["EnrollmentSession", "SessionStatus"]
