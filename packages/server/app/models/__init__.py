# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import CreatedAtMixin, IntIDMixin  # noqa: F401
from .people import ClubMember, StaffUser, Student  # noqa: F401
from .channel import Channel, ChannelMembership, ChannelSettings  # noqa: F401
from .message import Message, PollVote  # noqa: F401
from .scheduled_message import ScheduledMessage  # noqa: F401
