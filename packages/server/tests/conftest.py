"""
Shared fixtures: a throwaway SQLite database per test, seeded people and callers.
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

import app.models  # noqa: F401
from app.core.identity import Caller, StaffActor, StudentActor
from app.models.people import ClubMember, StaffUser, Student
from app.services.channels import add_member, create_channel
from campus_chat_shared.schemas.channels import ChannelCreate
from campus_chat_shared.schemas.common import ChannelType

CLUB_ID = 7


@dataclass
class Callers:
    asha: Caller
    ben: Caller
    cara: Caller
    super_admin: Caller
    admin: Caller
    faculty: Caller


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def people(session_factory):
    """Three students, three staff users and one club roster, committed."""
    async with session_factory() as s:
        s.add_all([
            Student(id=1, admission_number="S001", name="Asha", college_id=1),
            Student(id=2, admission_number="S002", name="Ben", college_id=1),
            Student(id=3, admission_number="S003", name="Cara", college_id=2),
            StaffUser(id=1, name="Priya", email="priya@school.test", role="super_admin"),
            StaffUser(id=2, name="Omar", email="omar@school.test", role="admin"),
            StaffUser(id=3, name="Fatima", email="fatima@school.test", role="faculty"),
        ])
        await s.flush()
        s.add_all([
            ClubMember(club_id=CLUB_ID, student_id=1, status="approved"),
            ClubMember(club_id=CLUB_ID, student_id=2, status="pending"),
        ])
        await s.commit()


@pytest.fixture
async def session(session_factory, people):
    async with session_factory() as s:
        yield s


@pytest.fixture
def callers() -> Callers:
    return Callers(
        asha=Caller(StudentActor(1)),
        ben=Caller(StudentActor(2)),
        cara=Caller(StudentActor(3)),
        super_admin=Caller(
            StaffActor(1, "super_admin"), can_moderate=True, is_super_admin=True, unrestricted=True
        ),
        admin=Caller(StaffActor(2, "admin"), can_moderate=True, college_ids=(1,)),
        faculty=Caller(StaffActor(3, "faculty"), college_ids=(1,)),
    )


@pytest.fixture
async def channel(session, callers):
    """Subject channel in college 1 with Asha, Ben and Fatima enrolled."""
    ch = await create_channel(
        session,
        ChannelCreate(type=ChannelType.SUBJECT, name="Physics 101", subject_ref=11, college_ref=1),
        callers.admin,
    )
    for caller in (callers.asha, callers.ben, callers.faculty):
        await add_member(session, ch.id, caller.actor)
    await session.commit()
    return ch
