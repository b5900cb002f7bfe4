"""Chat schema: channels, membership, settings, messages, poll votes, scheduled messages.

The students / staff_users / club_members tables belong to other modules of
the school system; they are created here only when missing so a standalone
chat database can be bootstrapped.

Revision ID: 0001_chat_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_chat_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

NOW = sa.text("CURRENT_TIMESTAMP")


def _has_table(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # 1. Collaborator tables (read-only for chat)
    # -----------------------------------------------------------------------

    if not _has_table("students"):
        op.create_table(
            "students",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("admission_number", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("college_id", sa.Integer(), nullable=True),
        )
        op.create_index("ix_students_admission_number", "students", ["admission_number"], unique=True)
        op.create_index("ix_students_college_id", "students", ["college_id"])

    if not _has_table("staff_users"):
        op.create_table(
            "staff_users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=True, unique=True),
            sa.Column("role", sa.String(), nullable=False, server_default="admin"),
        )

    if not _has_table("club_members"):
        op.create_table(
            "club_members",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("club_id", sa.Integer(), nullable=False),
            sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id"), nullable=False),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.UniqueConstraint("club_id", "student_id", name="uq_club_members_student"),
        )
        op.create_index("ix_club_members_club_id", "club_members", ["club_id"])
        op.create_index("ix_club_members_student_id", "club_members", ["student_id"])

    # -----------------------------------------------------------------------
    # 2. Channels
    # -----------------------------------------------------------------------

    op.create_table(
        "chat_channels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("subject_ref", sa.Integer(), nullable=True),
        sa.Column("club_ref", sa.Integer(), nullable=True),
        sa.Column("event_ref", sa.Integer(), nullable=True),
        sa.Column("college_ref", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
    )
    for col in ("type", "subject_ref", "club_ref", "event_ref", "college_ref"):
        op.create_index(f"ix_chat_channels_{col}", "chat_channels", [col])

    op.create_table(
        "chat_channel_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("channel_id", sa.Integer(), sa.ForeignKey("chat_channels.id"), nullable=False),
        sa.Column("member_key", sa.String(), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id"), nullable=True),
        sa.Column("staff_id", sa.Integer(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("joined_at", sa.DateTime(), nullable=False, server_default=NOW),
        sa.UniqueConstraint("channel_id", "member_key", name="uq_chat_channel_members_member"),
        sa.CheckConstraint(
            "(student_id IS NULL) <> (staff_id IS NULL)", name="ck_chat_channel_members_one_member"
        ),
    )
    op.create_index("ix_chat_channel_members_channel_id", "chat_channel_members", ["channel_id"])
    op.create_index("ix_chat_channel_members_member_key", "chat_channel_members", ["member_key"])

    op.create_table(
        "chat_channel_settings",
        sa.Column("channel_id", sa.Integer(), sa.ForeignKey("chat_channels.id"), primary_key=True),
        sa.Column("students_can_send", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_delete_after_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("updated_by", sa.Integer(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=NOW),
        sa.CheckConstraint(
            "auto_delete_after_days BETWEEN 1 AND 30", name="ck_chat_channel_settings_retention"
        ),
    )

    # -----------------------------------------------------------------------
    # 3. Messages & votes
    # -----------------------------------------------------------------------

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("channel_id", sa.Integer(), sa.ForeignKey("chat_channels.id"), nullable=False),
        sa.Column("sender_kind", sa.String(), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id"), nullable=True),
        sa.Column("staff_id", sa.Integer(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("attachment_url", sa.String(length=500), nullable=True),
        sa.Column("attachment_kind", sa.String(), nullable=True),
        sa.Column("kind", sa.String(), nullable=False, server_default="text"),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("option_counts", sa.JSON(), nullable=True),
        sa.Column("hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("moderated_by", sa.Integer(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("moderated_at", sa.DateTime(), nullable=True),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_by_student_id", sa.Integer(), sa.ForeignKey("students.id"), nullable=True),
        sa.Column("deleted_by_staff_id", sa.Integer(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("edited_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
        sa.CheckConstraint("(student_id IS NULL) <> (staff_id IS NULL)", name="ck_chat_messages_one_sender"),
    )
    op.create_index("ix_chat_messages_channel_cursor", "chat_messages", ["channel_id", "id"])
    op.create_index("ix_chat_messages_channel_created", "chat_messages", ["channel_id", "created_at"])
    op.create_index("ix_chat_messages_student_id", "chat_messages", ["student_id"])
    op.create_index("ix_chat_messages_staff_id", "chat_messages", ["staff_id"])

    op.create_table(
        "chat_poll_votes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("message_id", sa.Integer(), sa.ForeignKey("chat_messages.id"), nullable=False),
        sa.Column("voter_key", sa.String(), nullable=False),
        sa.Column("voter_student_id", sa.Integer(), sa.ForeignKey("students.id"), nullable=True),
        sa.Column("voter_staff_id", sa.Integer(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("option_index", sa.Integer(), nullable=False),
        sa.Column("legacy_vote", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
        sa.UniqueConstraint("message_id", "voter_key", name="uq_chat_poll_votes_voter"),
        sa.CheckConstraint("option_index >= 0", name="ck_chat_poll_votes_option_index"),
    )
    op.create_index("ix_chat_poll_votes_message_id", "chat_poll_votes", ["message_id"])

    # -----------------------------------------------------------------------
    # 4. Scheduled messages
    # -----------------------------------------------------------------------

    op.create_table(
        "chat_scheduled_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("channel_id", sa.Integer(), sa.ForeignKey("chat_channels.id"), nullable=False),
        sa.Column("sender_kind", sa.String(), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id"), nullable=True),
        sa.Column("staff_id", sa.Integer(), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("message_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
    )
    op.create_index("ix_chat_scheduled_messages_channel_id", "chat_scheduled_messages", ["channel_id"])
    op.create_index("ix_chat_scheduled_messages_due", "chat_scheduled_messages", ["status", "scheduled_at"])


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.drop_table("chat_scheduled_messages")
    op.drop_table("chat_poll_votes")
    op.drop_table("chat_messages")
    op.drop_table("chat_channel_settings")
    op.drop_table("chat_channel_members")
    op.drop_table("chat_channels")
