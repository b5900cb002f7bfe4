"""
Identity resolution: map a verified principal to exactly one chat actor.

An actor is either ``StudentActor(id)`` or ``StaffActor(id, role)``. The
two-nullable-column pattern (student_id / staff_id) only exists at the storage
layer; everything above it works with actors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.people import StaffUser, Student
from campus_chat_shared.schemas.common import FACULTY_ROLES, ActorKind, Permission, SenderKind, StaffRole

log = structlog.get_logger()

UNKNOWN_NAME = "Unknown"


@dataclass(frozen=True)
class StudentActor:
    id: int


@dataclass(frozen=True)
class StaffActor:
    id: int
    role: str = StaffRole.ADMIN.value


Actor = Union[StudentActor, StaffActor]


@dataclass(frozen=True)
class Principal:
    """Claims of an already-verified caller token."""

    subject: str
    kind: ActorKind
    role: str
    admission_number: Optional[str] = None
    permissions: frozenset[str] = frozenset()
    unrestricted: bool = False
    college_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class Caller:
    """A resolved actor plus the capabilities granted by the identity service."""

    actor: Actor
    can_moderate: bool = False
    is_super_admin: bool = False
    unrestricted: bool = False
    college_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def key(self) -> str:
        return actor_key(self.actor)

    @property
    def is_student(self) -> bool:
        return isinstance(self.actor, StudentActor)


# ---------------------------------------------------------------------------
# Actor helpers
# ---------------------------------------------------------------------------


def actor_key(actor: Actor) -> str:
    """Stable identity key used for membership and vote uniqueness."""
    if isinstance(actor, StudentActor):
        return f"{ActorKind.STUDENT.value}:{actor.id}"
    return f"{ActorKind.STAFF.value}:{actor.id}"


def actor_columns(actor: Actor, *, student: str = "student_id", staff: str = "staff_id") -> dict:
    """Spread an actor into its storage columns (exactly one populated)."""
    if isinstance(actor, StudentActor):
        return {student: actor.id, staff: None}
    return {student: None, staff: actor.id}


def actor_from_columns(
    student_id: Optional[int], staff_id: Optional[int], sender_kind: Optional[str] = None
) -> Optional[Actor]:
    if student_id is not None:
        return StudentActor(student_id)
    if staff_id is not None:
        role = StaffRole.FACULTY.value if sender_kind == SenderKind.FACULTY.value else StaffRole.ADMIN.value
        return StaffActor(staff_id, role)
    return None


def sender_kind_for(actor: Actor) -> SenderKind:
    if isinstance(actor, StudentActor):
        return SenderKind.STUDENT
    if actor.role in FACULTY_ROLES:
        return SenderKind.FACULTY
    return SenderKind.ADMIN


def same_actor(a: Optional[Actor], b: Optional[Actor]) -> bool:
    if a is None or b is None:
        return False
    return actor_key(a) == actor_key(b)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


async def resolve_actor(session: AsyncSession, principal: Principal) -> Optional[Actor]:
    """Resolve a principal to an actor.

    Student principals are matched by admission number; a missing record
    resolves to None rather than raising, and callers treat that as an
    authorization failure.
    """
    if principal.kind == ActorKind.STUDENT:
        if not principal.admission_number:
            return None
        result = await session.execute(
            select(Student.id).where(Student.admission_number == principal.admission_number)
        )
        student_id = result.scalar_one_or_none()
        if student_id is None:
            log.info("identity.student_not_found", admission_number=principal.admission_number)
            return None
        return StudentActor(student_id)

    try:
        staff_id = int(principal.subject)
    except (TypeError, ValueError):
        log.info("identity.invalid_staff_subject", subject=principal.subject)
        return None
    return StaffActor(staff_id, principal.role)


def build_caller(principal: Principal, actor: Actor) -> Caller:
    is_super_admin = isinstance(actor, StaffActor) and principal.role == StaffRole.SUPER_ADMIN.value
    return Caller(
        actor=actor,
        can_moderate=is_super_admin or Permission.MODERATE.value in principal.permissions,
        is_super_admin=is_super_admin,
        unrestricted=is_super_admin or principal.unrestricted,
        college_ids=tuple(principal.college_ids),
    )


async def display_names(session: AsyncSession, actors: Iterable[Optional[Actor]]) -> dict[str, str]:
    """Batch-load display names keyed by actor key."""
    actors = [a for a in actors if a is not None]
    student_ids = {a.id for a in actors if isinstance(a, StudentActor)}
    staff_ids = {a.id for a in actors if isinstance(a, StaffActor)}

    names: dict[str, str] = {}
    if student_ids:
        result = await session.execute(select(Student.id, Student.name).where(Student.id.in_(student_ids)))
        for sid, name in result.all():
            names[actor_key(StudentActor(sid))] = name
    if staff_ids:
        result = await session.execute(select(StaffUser.id, StaffUser.name).where(StaffUser.id.in_(staff_ids)))
        for sid, name in result.all():
            names[actor_key(StaffActor(sid))] = name
    return names


def name_of(names: dict[str, str], actor: Optional[Actor]) -> str:
    if actor is None:
        return UNKNOWN_NAME
    return names.get(actor_key(actor), UNKNOWN_NAME)
