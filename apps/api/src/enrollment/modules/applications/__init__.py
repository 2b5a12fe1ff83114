"""
Applications module - student enrollment requests and their state machine.
"""

from enrollment.modules.applications.models import (
    Application,
    ApplicationStatus,
    RejectionSource,
)

__all__ = ["Application", "ApplicationStatus", "RejectionSource"]
