"""
User Models

Professors and students. Account credentials live with the auth service;
these tables hold the profile data the enrollment workflow needs.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from enrollment.core.database import Base, UTCDateTime


class Professor(Base):
    """
    A professor who opens enrollment sessions.

    max_students is the hard ceiling for the student limit of any of the
    professor's sessions. It only changes through administrative action.
    """

    __tablename__ = "professors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    max_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )

    __table_args__ = (CheckConstraint("max_students >= 0", name="ck_professors_max_students"),)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Student(Base):
    """A student who applies to sessions."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
