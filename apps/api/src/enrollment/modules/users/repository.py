"""
User Repository

Database operations for professor and student profiles.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.modules.users.models import Professor, Student

logger = logging.getLogger(__name__)


class UserRepository:
    """Repository for professor and student database operations."""

    @staticmethod
    async def create_professor(
        db: AsyncSession,
        *,
        first_name: str,
        last_name: str,
        max_students: int,
    ) -> Professor:
        """
        Create a new professor record.

        Args:
            db: Database session
            first_name: Professor's first name
            last_name: Professor's last name
            max_students: Ceiling for the student limit of any session

        Returns:
            Created Professor instance
        """
        professor = Professor(
            first_name=first_name,
            last_name=last_name,
            max_students=max_students,
        )

        db.add(professor)
        await db.flush()
        await db.refresh(professor)

        logger.info(f"Created professor: {professor.id}")
        return professor

    @staticmethod
    async def create_student(
        db: AsyncSession,
        *,
        first_name: str,
        last_name: str,
    ) -> Student:
        """Create a new student record."""
        student = Student(first_name=first_name, last_name=last_name)

        db.add(student)
        await db.flush()
        await db.refresh(student)

        logger.info(f"Created student: {student.id}")
        return student

    @staticmethod
    async def get_professor(db: AsyncSession, professor_id: int) -> Professor | None:
        """Get professor by ID."""
        return await db.get(Professor, professor_id)

    @staticmethod
    async def get_professor_for_update(db: AsyncSession, professor_id: int) -> Professor | None:
        """
        Get professor by ID, locking the row until the transaction ends.

        Session create/update takes this lock so that two concurrent requests
        of the same professor cannot both pass the overlap check.
        """
        result = await db.execute(
            select(Professor)
            .where(Professor.id == professor_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_student(db: AsyncSession, student_id: int) -> Student | None:
        """Get student by ID."""
        return await db.get(Student, student_id)

    @staticmethod
    async def get_students_by_ids(db: AsyncSession, student_ids: list[int]) -> dict[int, Student]:
        """Get students keyed by id."""
        if not student_ids:
            return {}
        result = await db.execute(select(Student).where(Student.id.in_(student_ids)))
        return {student.id: student for student in result.scalars().all()}
