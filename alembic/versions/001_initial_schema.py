"""Initial schema with messages table

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "messages",
        sa.Column("id", sa.BigInteger, sa.Identity(), nullable=False),
        sa.Column("queue", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=True),
        sa.Column("visible", sa.DateTime(), nullable=False),
        sa.Column("ack", sa.String(64), nullable=True),
        sa.Column("tries", sa.Integer, nullable=False, server_default="0"),
        sa.Column("deleted", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Index for queue polling
    op.create_index(
        "ix_messages_queue_poll",
        "messages",
        ["queue", "deleted", "visible"],
    )

    # Live lease tokens are unique; NULLs do not collide
    op.create_index(
        "uq_messages_ack",
        "messages",
        ["ack"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("uq_messages_ack", table_name="messages")
    op.drop_index("ix_messages_queue_poll", table_name="messages")
    op.drop_table("messages")
