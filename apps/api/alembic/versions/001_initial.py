"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

- sessions: one row per chat connection, last_activity bumped per turn
- messages: tags text[] with a GIN index for tag overlap lookups
- tags: usage counters keyed by lower-case name without '#'
- blocked_tags / tag_synonyms: curation tables, synonyms seeded
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

SEED_SYNONYMS = (
    ("js", "javascript"),
    ("py", "python"),
    ("ai", "artificial-intelligence"),
    ("ml", "machine-learning"),
    ("db", "database"),
    ("react", "reactjs"),
    ("node", "nodejs"),
    ("vue", "vuejs"),
)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("NOW()"),
        nullable=False,
    )


def upgrade() -> None:
    # sessions
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(128), nullable=False),
        _timestamp("created_at"),
        _timestamp("last_activity"),
        sa.PrimaryKeyConstraint("id"),
    )

    # messages
    op.create_table(
        "messages",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("session_id", sa.String(128), nullable=False),
        sa.Column("origin", sa.String(16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "tags",
            postgresql.ARRAY(sa.Text()),
            server_default=sa.text("'{}'::text[]"),
            nullable=False,
        ),
        _timestamp("created_at"),
        sa.CheckConstraint("origin IN ('user', 'assistant', 'system')", name="ck_messages_origin"),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_messages_session_created", "messages", ["session_id", "created_at"]
    )
    op.create_index("ix_messages_created_at", "messages", ["created_at"])
    op.execute("CREATE INDEX ix_messages_tags ON messages USING GIN (tags)")

    # tags
    op.create_table(
        "tags",
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("usage_count", sa.Integer(), server_default="0", nullable=False),
        _timestamp("first_used"),
        sa.PrimaryKeyConstraint("name"),
    )
    op.create_index("ix_tags_usage_count", "tags", [sa.text("usage_count DESC")])

    # blocked_tags
    op.create_table(
        "blocked_tags",
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("reason", sa.Text(), server_default="", nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("name"),
    )

    # tag_synonyms
    synonyms = op.create_table(
        "tag_synonyms",
        sa.Column("original_tag", sa.String(100), nullable=False),
        sa.Column("better_tag", sa.String(100), nullable=False),
        _timestamp("created_at"),
        sa.CheckConstraint("original_tag <> better_tag", name="ck_tag_synonyms_not_self"),
        sa.PrimaryKeyConstraint("original_tag"),
    )
    op.bulk_insert(
        synonyms,
        [{"original_tag": original, "better_tag": better} for original, better in SEED_SYNONYMS],
    )


def downgrade() -> None:
    op.drop_table("tag_synonyms")
    op.drop_table("blocked_tags")
    op.drop_index("ix_tags_usage_count", table_name="tags")
    op.drop_table("tags")
    op.execute("DROP INDEX IF EXISTS ix_messages_tags")
    op.drop_index("ix_messages_created_at", table_name="messages")
    op.drop_index("ix_messages_session_created", table_name="messages")
    op.drop_table("messages")
    op.drop_table("sessions")
