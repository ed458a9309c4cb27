"""create portfolio schema

Revision ID: 3a7e1c9b5d20
Revises: 
Create Date: 2026-10-19 10:00:00

Touched tables:
- user_account, portfolio, content_block, upload_session, user_follow,
  portfolio_like, notification, audit_event, job

Operational notes:
- uq_content_block_portfolio_order is checked row by row; block re-packing
  moves orders through a negative range inside one transaction
- gen_random_uuid() needs postgres 13+ (or pgcrypto on older servers)
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3a7e1c9b5d20"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "user_account",
        _uuid_pk(),
        sa.Column("username", sa.Text(), nullable=False, unique=True),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="student"),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("banner_url", sa.Text(), nullable=True),
        sa.Column("follower_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("following_count", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("role in ('student', 'admin')", name="ck_user_account_role"),
        sa.CheckConstraint("follower_count >= 0", name="ck_user_account_follower_count"),
        sa.CheckConstraint("following_count >= 0", name="ck_user_account_following_count"),
    )

    op.create_table(
        "portfolio",
        _uuid_pk(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("user_account.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="draft"),
        sa.Column("admin_review_note", sa.Text(), nullable=True),
        sa.Column(
            "reviewed_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("user_account.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _ts("reviewed_at", nullable=True),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("like_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="1"),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("submitted_at", nullable=True),
        _ts("published_at", nullable=True),
        _ts("archived_at", nullable=True),
        sa.CheckConstraint(
            "status in ('draft', 'pending_review', 'rejected', 'published', 'archived')",
            name="ck_portfolio_status",
        ),
        sa.CheckConstraint("like_count >= 0", name="ck_portfolio_like_count"),
        sa.UniqueConstraint("user_id", "slug", name="uq_portfolio_user_slug"),
    )
    op.create_index("ix_portfolio_status_submitted", "portfolio", ["status", "submitted_at"])

    op.create_table(
        "content_block",
        _uuid_pk(),
        sa.Column(
            "portfolio_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("portfolio.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("block_type", sa.Text(), nullable=False),
        sa.Column("block_order", sa.Integer(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint(
            "block_type in ('text', 'image', 'table', 'video_embed', 'link_button', 'raw_embed')",
            name="ck_content_block_type",
        ),
        sa.UniqueConstraint("portfolio_id", "block_order", name="uq_content_block_portfolio_order"),
    )

    op.create_table(
        "upload_session",
        _uuid_pk(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("user_account.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("intended_use", sa.Text(), nullable=False),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("content_type", sa.Text(), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("object_key", sa.Text(), nullable=False, unique=True),
        sa.Column(
            "portfolio_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("portfolio.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "block_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("content_block.id", ondelete="CASCADE"),
            nullable=True,
        ),
        _ts("expires_at"),
        _ts("consumed_at", nullable=True),
        sa.Column("object_url", sa.Text(), nullable=True),
        _ts("created_at"),
        sa.CheckConstraint(
            "intended_use in ('avatar', 'banner', 'thumbnail', 'block_image')",
            name="ck_upload_session_intended_use",
        ),
    )
    op.create_index("ix_upload_session_expires_at", "upload_session", ["expires_at"])

    op.create_table(
        "user_follow",
        sa.Column(
            "follower_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("user_account.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "following_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("user_account.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _ts("created_at"),
        sa.CheckConstraint("follower_id <> following_id", name="ck_user_follow_not_self"),
    )
    op.create_index("ix_user_follow_following", "user_follow", ["following_id"])

    op.create_table(
        "portfolio_like",
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("user_account.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "portfolio_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("portfolio.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _ts("created_at"),
    )

    op.create_table(
        "notification",
        _uuid_pk(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("user_account.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("data", postgresql.JSONB(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("read_at", nullable=True),
        _ts("created_at"),
        sa.CheckConstraint(
            "type in ('new_follower', 'content_liked', 'content_approved', 'content_rejected')",
            name="ck_notification_type",
        ),
    )
    op.create_index("ix_notification_user_created", "notification", ["user_id", "created_at"])

    op.create_table(
        "audit_event",
        _uuid_pk(),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column(
            "actor_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("user_account.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _ts("occurred_at"),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.CheckConstraint("source in ('ui', 'system', 'worker')", name="ck_audit_event_source"),
    )

    op.create_table(
        "job",
        _uuid_pk(),
        sa.Column("job_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.Column("error_payload", postgresql.JSONB(), nullable=True),
        _ts("queued_at", nullable=True),
        _ts("started_at", nullable=True),
        _ts("finished_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("status in ('queued', 'running', 'succeeded', 'failed')", name="ck_job_status"),
    )


def downgrade() -> None:
    op.drop_table("job")
    op.drop_table("audit_event")
    op.drop_index("ix_notification_user_created", table_name="notification")
    op.drop_table("notification")
    op.drop_table("portfolio_like")
    op.drop_index("ix_user_follow_following", table_name="user_follow")
    op.drop_table("user_follow")
    op.drop_index("ix_upload_session_expires_at", table_name="upload_session")
    op.drop_table("upload_session")
    op.drop_table("content_block")
    op.drop_index("ix_portfolio_status_submitted", table_name="portfolio")
    op.drop_table("portfolio")
    op.drop_table("user_account")
