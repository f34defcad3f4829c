"""create content schema

Revision ID: 3c1e8a5d2f70
Revises:
Create Date: 2026-10-19 10:00:00

Purpose:
- content, tag, content_tag, upload_session and view_event tables
- english full-text index over title and description
- seed the default tag set

Operational notes:
- tag usage counts are maintained by the application, there are no triggers
- gen_random_uuid() is built in from postgresql 13
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3c1e8a5d2f70"
down_revision = None
branch_labels = None
depends_on = None


SEED_TAGS = [
    ("Business", "business", "#2563eb", "Business presentations and corporate content"),
    ("Tutorial", "tutorial", "#059669", "Educational and how-to content"),
    ("Marketing", "marketing", "#dc2626", "Marketing materials and promotional content"),
    ("Product Demo", "product-demo", "#7c3aed", "Product demonstrations and features"),
    ("Conference", "conference", "#ea580c", "Conference talks and presentations"),
    ("Training", "training", "#0891b2", "Training materials and workshops"),
    ("Presentation", "presentation", "#ca8a04", "General presentations and talks"),
    ("Interview", "interview", "#059669", "Interviews and conversations"),
    ("Webinar", "webinar", "#7c2d12", "Webinars and online seminars"),
    ("Case Study", "case-study", "#065f46", "Case studies and success stories"),
    ("Workshop", "workshop", "#7e22ce", "Interactive workshops and sessions"),
    ("Announcement", "announcement", "#be123c", "Company announcements and updates"),
]


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.create_table(
        "content",
        _uuid_pk(),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("filename", sa.String(length=500), nullable=False),
        sa.Column("original_filename", sa.String(length=500), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("video_url", sa.Text(), nullable=False),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'uploading'")),
        sa.Column("visibility", sa.String(length=20), nullable=False, server_default=sa.text("'private'")),
        sa.Column("mime_type", sa.String(length=100), nullable=True),
        sa.Column("resolution", sa.String(length=20), nullable=True),
        sa.Column("fps", sa.Integer(), nullable=True),
        sa.Column("bitrate", sa.Integer(), nullable=True),
        sa.Column("codec", sa.String(length=50), nullable=True),
        sa.Column("upload_session_id", postgresql.UUID(as_uuid=True), nullable=True),
        _timestamp("processing_started_at", nullable=True),
        _timestamp("processing_completed_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("upload_session_id", name="uq_content_upload_session_id"),
        sa.CheckConstraint("file_size > 0", name="ck_content_file_size"),
        sa.CheckConstraint("duration is null or duration >= 0", name="ck_content_duration"),
        sa.CheckConstraint("fps is null or (fps > 0 and fps <= 120)", name="ck_content_fps"),
        sa.CheckConstraint("bitrate is null or bitrate > 0", name="ck_content_bitrate"),
        sa.CheckConstraint(
            "status in ('uploading', 'processing', 'ready', 'failed')",
            name="ck_content_status",
        ),
        sa.CheckConstraint(
            "visibility in ('public', 'private', 'unlisted')",
            name="ck_content_visibility",
        ),
    )
    op.create_index("ix_content_owner_id", "content", ["owner_id"])
    op.create_index("ix_content_status", "content", ["status"])
    op.create_index("ix_content_visibility", "content", ["visibility"])
    op.create_index("ix_content_created_at", "content", ["created_at"])
    op.create_index("ix_content_updated_at", "content", ["updated_at"])
    op.execute(
        """
create index ix_content_search on content
  using gin (to_tsvector('english', title || ' ' || coalesce(description, '')));
"""
    )

    op.create_table(
        "tag",
        _uuid_pk(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("color", sa.String(length=7), nullable=False, server_default=sa.text("'#6b7280'")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_tag_name"),
        sa.UniqueConstraint("slug", name="uq_tag_slug"),
        sa.CheckConstraint("usage_count >= 0", name="ck_tag_usage_count"),
    )
    op.create_index("ix_tag_usage_count", "tag", ["usage_count"])

    op.create_table(
        "content_tag",
        sa.Column("content_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tag_id", postgresql.UUID(as_uuid=True), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["content_id"], ["content.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tag_id"], ["tag.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("content_id", "tag_id"),
    )
    op.create_index("ix_content_tag_tag_id", "content_tag", ["tag_id"])

    op.create_table(
        "upload_session",
        _uuid_pk(),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("filename", sa.String(length=500), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("mime_type", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'initiated'")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("file_size is null or file_size > 0", name="ck_upload_session_file_size"),
        sa.CheckConstraint(
            "status in ('initiated', 'uploading', 'completed', 'failed', 'cancelled')",
            name="ck_upload_session_status",
        ),
        sa.CheckConstraint("expires_at > created_at", name="ck_upload_session_expiry"),
    )
    op.create_index("ix_upload_session_owner_id", "upload_session", ["owner_id"])

    op.create_table(
        "view_event",
        _uuid_pk(),
        sa.Column("content_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("viewer_id", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("watch_duration", sa.Integer(), nullable=True),
        sa.Column("watch_percentage", sa.Numeric(5, 2), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["content_id"], ["content.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "watch_duration is null or watch_duration >= 0",
            name="ck_view_event_watch_duration",
        ),
        sa.CheckConstraint(
            "watch_percentage is null or (watch_percentage >= 0 and watch_percentage <= 100)",
            name="ck_view_event_watch_percentage",
        ),
    )
    op.create_index("ix_view_event_content_id", "view_event", ["content_id"])
    op.create_index("ix_view_event_viewer_id", "view_event", ["viewer_id"])

    tag_table = sa.table(
        "tag",
        sa.column("name", sa.String),
        sa.column("slug", sa.String),
        sa.column("color", sa.String),
        sa.column("description", sa.Text),
    )
    op.bulk_insert(
        tag_table,
        [
            {"name": name, "slug": slug, "color": color, "description": description}
            for name, slug, color, description in SEED_TAGS
        ],
    )


def downgrade() -> None:
    op.drop_index("ix_view_event_viewer_id", table_name="view_event")
    op.drop_index("ix_view_event_content_id", table_name="view_event")
    op.drop_table("view_event")
    op.drop_index("ix_upload_session_owner_id", table_name="upload_session")
    op.drop_table("upload_session")
    op.drop_index("ix_content_tag_tag_id", table_name="content_tag")
    op.drop_table("content_tag")
    op.drop_index("ix_tag_usage_count", table_name="tag")
    op.drop_table("tag")
    op.execute("drop index if exists ix_content_search;")
    op.drop_index("ix_content_updated_at", table_name="content")
    op.drop_index("ix_content_created_at", table_name="content")
    op.drop_index("ix_content_visibility", table_name="content")
    op.drop_index("ix_content_status", table_name="content")
    op.drop_index("ix_content_owner_id", table_name="content")
    op.drop_table("content")
