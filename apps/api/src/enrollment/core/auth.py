"""
Authentication and Authorization Dependencies

Token issuance and verification happen upstream: the auth middleware decodes
the bearer token and stores a Principal on request.state. This module only
reads it and enforces the two roles the enrollment workflow knows about.
"""

import enum
import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    """Roles in the enrollment workflow."""

    PROFESSOR = "professor"
    STUDENT = "student"


@dataclass(frozen=True)
class Principal:
    """
    An authenticated caller.

    Attributes:
        id: Professor or student id, depending on role
        role: The caller's role
    """

    id: int
    role: Role

    def __str__(self) -> str:
        return f"Principal(id={self.id}, role={self.role.value})"


async def get_current_principal(request: Request) -> Principal:
    """
    Return the principal attached by the auth layer.

    Raises:
        HTTPException 401: If the request is not authenticated
    """
    principal = getattr(request.state, "principal", None)
    if not isinstance(principal, Principal):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "UNAUTHENTICATED", "message": "Authentication required"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def _require_role(role: Role):
    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role != role:
            logger.warning(f"Access denied for {principal}: requires role {role.value}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "FORBIDDEN",
                    "message": f"This action requires {role.value} role",
                },
            )
        return principal

    return dependency


require_professor = _require_role(Role.PROFESSOR)
require_student = _require_role(Role.STUDENT)
