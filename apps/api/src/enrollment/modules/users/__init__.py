"""
Users module - professor and student profiles.
"""

from enrollment.modules.users.models import Professor, Student
from enrollment.modules.users.repository import UserRepository

__all__ = ["Professor", "Student", "UserRepository"]
