"""Student, staff and club-roster tables owned by other modules.

The chat core only reads these: to resolve callers, render display names
and infer club-channel membership.
"""

from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .base import IntIDMixin


class Student(IntIDMixin, SQLModel, table=True):
    __tablename__ = "students"

    admission_number: str = Field(unique=True, nullable=False, index=True)
    name: str = Field(nullable=False)
    college_id: Optional[int] = Field(default=None, index=True)


class StaffUser(IntIDMixin, SQLModel, table=True):
    __tablename__ = "staff_users"

    name: str = Field(nullable=False)
    email: Optional[str] = Field(default=None, unique=True)
    role: str = Field(nullable=False, default="admin")  # super_admin | admin | faculty | branch_faculty


class ClubMember(IntIDMixin, SQLModel, table=True):
    __tablename__ = "club_members"
    __table_args__ = (
        UniqueConstraint("club_id", "student_id", name="uq_club_members_student"),
    )

    club_id: int = Field(nullable=False, index=True)
    student_id: int = Field(foreign_key="students.id", nullable=False, index=True)
    status: str = Field(nullable=False, default="pending")  # pending | approved | rejected
