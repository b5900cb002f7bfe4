from enum import Enum
from pydantic import BaseModel

class ChannelType(str, Enum):
    SUBJECT = "subject"
    CLUB = "club"
    EVENT = "event"

# Reference column that is authoritative for each channel type
CHANNEL_REF_FIELD: dict["ChannelType", str] = {
    ChannelType.SUBJECT: "subject_ref",
    ChannelType.CLUB: "club_ref",
    ChannelType.EVENT: "event_ref",
}

class ActorKind(str, Enum):
    STUDENT = "student"
    STAFF = "staff"

class SenderKind(str, Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"

class MessageKind(str, Enum):
    TEXT = "text"
    POLL = "poll"

class AttachmentKind(str, Enum):
    IMAGE = "image"
    FILE = "file"

class ScheduledStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"

class LegacyVote(str, Enum):
    YES = "yes"
    NO = "no"

class StaffRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    FACULTY = "faculty"
    BRANCH_FACULTY = "branch_faculty"

# Staff roles that post as faculty; every other staff role posts as admin
FACULTY_ROLES = frozenset({StaffRole.FACULTY.value, StaffRole.BRANCH_FACULTY.value})

class Permission(str, Enum):
    MODERATE = "chat:moderate"

class ErrorCode(str, Enum):
    VALIDATION = "validation_error"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal_error"

class ErrorBody(BaseModel):
    code: ErrorCode
    reason: str
    message: str
    status: int
