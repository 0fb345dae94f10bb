"""init support chat schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    conversation_status = sa.Enum("waiting", "active", "closed", name="conversation_status")
    message_kind = sa.Enum("text", "image", "file", "system", name="message_kind")
    notification_event_type = sa.Enum(
        "message_sent",
        "status_changed",
        name="notification_event_type",
    )

    bind = op.get_bind()
    conversation_status.create(bind, checkfirst=True)
    message_kind.create(bind, checkfirst=True)
    notification_event_type.create(bind, checkfirst=True)

    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("customer_id", sa.String(length=120), nullable=False),
        sa.Column("agent_id", sa.String(length=120), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "waiting",
                "active",
                "closed",
                name="conversation_status",
                create_type=False,
            ),
            nullable=False,
            server_default=sa.text("'waiting'"),
        ),
        sa.Column("subject", sa.String(length=255), nullable=True),
        sa.Column(
            "last_activity",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_conversations_customer_id",
        "conversations",
        ["customer_id"],
        unique=False,
    )
    op.create_index(
        "uq_conversations_open_customer",
        "conversations",
        ["customer_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('waiting', 'active')"),
    )
    op.create_index(
        "ix_conversations_agent_status",
        "conversations",
        ["agent_id", "status"],
        unique=False,
    )

    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.String(length=120), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum(
                "text",
                "image",
                "file",
                "system",
                name="message_kind",
                create_type=False,
            ),
            nullable=False,
            server_default=sa.text("'text'"),
        ),
        sa.Column(
            "is_agent_authored",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "conversation_id",
            "sequence",
            name="uq_messages_conversation_sequence",
        ),
    )
    op.create_index(
        "ix_messages_conversation_created",
        "messages",
        ["conversation_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "notification_outbox",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "event_type",
            sa.Enum(
                "message_sent",
                "status_changed",
                name="notification_event_type",
                create_type=False,
            ),
            nullable=False,
        ),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("actor_id", sa.String(length=120), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notification_outbox_delivered_at",
        "notification_outbox",
        ["delivered_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_notification_outbox_delivered_at", table_name="notification_outbox")
    op.drop_table("notification_outbox")

    op.drop_index("ix_messages_conversation_created", table_name="messages")
    op.drop_table("messages")

    op.drop_index("ix_conversations_agent_status", table_name="conversations")
    op.drop_index("uq_conversations_open_customer", table_name="conversations")
    op.drop_index("ix_conversations_customer_id", table_name="conversations")
    op.drop_table("conversations")

    bind = op.get_bind()
    sa.Enum(name="notification_event_type").drop(bind, checkfirst=True)
    sa.Enum(name="message_kind").drop(bind, checkfirst=True)
    sa.Enum(name="conversation_status").drop(bind, checkfirst=True)
