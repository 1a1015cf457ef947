"""publication jobs, events, queue messages and social connections

Revision ID: 0001_publication_pipeline
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_publication_pipeline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "publication_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column(
            "content",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(length=100), nullable=True),
        sa.Column("is_retryable", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("platform_response", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "platform IN ('tiktok', 'facebook', 'instagram', 'youtube', 'threads', 'x', 'linkedin')",
            name="ck_publication_jobs_platform_values",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_publication_jobs_status_values",
        ),
        sa.CheckConstraint("retry_count >= 0", name="ck_publication_jobs_retry_count_non_negative"),
    )
    op.create_index("ix_publication_jobs_user_id", "publication_jobs", ["user_id"], unique=False)
    op.create_index("ix_publication_jobs_platform", "publication_jobs", ["platform"], unique=False)
    op.create_index("ix_publication_jobs_status", "publication_jobs", ["status"], unique=False)
    op.create_index("ix_publication_jobs_created_at", "publication_jobs", ["created_at"], unique=False)
    op.create_index("ix_publication_jobs_status_retry", "publication_jobs", ["status", "retry_count"], unique=False)

    op.create_table(
        "publication_job_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "metadata_json",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["job_id"], ["publication_jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_publication_job_events_job_id", "publication_job_events", ["job_id"], unique=False)
    op.create_index("ix_publication_job_events_user_id", "publication_job_events", ["user_id"], unique=False)

    op.create_table(
        "publication_queue_messages",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("queue_name", sa.String(length=100), nullable=False),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("read_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("visible_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["job_id"], ["publication_jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_publication_queue_messages_visibility",
        "publication_queue_messages",
        ["queue_name", "visible_at"],
        unique=False,
    )
    op.create_index("ix_publication_queue_messages_job_id", "publication_queue_messages", ["job_id"], unique=False)

    op.create_table(
        "social_connections",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("platform_user_id", sa.String(length=255), nullable=True),
        sa.Column("access_token", sa.String(length=4096), nullable=True),
        sa.Column("refresh_token", sa.String(length=4096), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "profile_data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "platform", name="uq_social_connections_user_platform"),
    )
    op.create_index("ix_social_connections_user_id", "social_connections", ["user_id"], unique=False)
    op.create_index("ix_social_connections_platform", "social_connections", ["platform"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_social_connections_platform", table_name="social_connections")
    op.drop_index("ix_social_connections_user_id", table_name="social_connections")
    op.drop_table("social_connections")

    op.drop_index("ix_publication_queue_messages_job_id", table_name="publication_queue_messages")
    op.drop_index("ix_publication_queue_messages_visibility", table_name="publication_queue_messages")
    op.drop_table("publication_queue_messages")

    op.drop_index("ix_publication_job_events_user_id", table_name="publication_job_events")
    op.drop_index("ix_publication_job_events_job_id", table_name="publication_job_events")
    op.drop_table("publication_job_events")

    op.drop_index("ix_publication_jobs_status_retry", table_name="publication_jobs")
    op.drop_index("ix_publication_jobs_created_at", table_name="publication_jobs")
    op.drop_index("ix_publication_jobs_status", table_name="publication_jobs")
    op.drop_index("ix_publication_jobs_platform", table_name="publication_jobs")
    op.drop_index("ix_publication_jobs_user_id", table_name="publication_jobs")
    op.drop_table("publication_jobs")
