"""
Cleanup module - scheduled purge of uploaded files past their retention period.
"""

from enrollment.modules.cleanup.policy import CleanupConfig

__all__ = ["CleanupConfig"]
