from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


CONTENT_STATUSES = ("uploading", "processing", "ready", "failed")
VISIBILITIES = ("public", "private", "unlisted")
UPLOAD_STATUSES = ("initiated", "uploading", "completed", "failed", "cancelled")
DEFAULT_TAG_COLOR = "#6b7280"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{value}'" for value in values)


class Content(Base):
    __tablename__ = "content"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    filename: Mapped[str] = mapped_column(String(500))
    original_filename: Mapped[str | None] = mapped_column(String(500))
    file_size: Mapped[int] = mapped_column(BigInteger)
    duration: Mapped[int | None] = mapped_column(Integer)
    video_url: Mapped[str] = mapped_column(Text)
    thumbnail_url: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="uploading")
    visibility: Mapped[str] = mapped_column(String(20), default="private")
    mime_type: Mapped[str | None] = mapped_column(String(100))
    resolution: Mapped[str | None] = mapped_column(String(20))
    fps: Mapped[int | None] = mapped_column(Integer)
    bitrate: Mapped[int | None] = mapped_column(Integer)
    codec: Mapped[str | None] = mapped_column(String(50))
    upload_session_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processing_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    tags: Mapped[list["Tag"]] = relationship(
        secondary="content_tag",
        viewonly=True,
        order_by="Tag.name",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("upload_session_id", name="uq_content_upload_session_id"),
        CheckConstraint("file_size > 0", name="ck_content_file_size"),
        CheckConstraint("duration is null or duration >= 0", name="ck_content_duration"),
        CheckConstraint("fps is null or (fps > 0 and fps <= 120)", name="ck_content_fps"),
        CheckConstraint("bitrate is null or bitrate > 0", name="ck_content_bitrate"),
        CheckConstraint(f"status in ({_in(CONTENT_STATUSES)})", name="ck_content_status"),
        CheckConstraint(f"visibility in ({_in(VISIBILITIES)})", name="ck_content_visibility"),
        Index("ix_content_status", "status"),
        Index("ix_content_visibility", "visibility"),
        Index("ix_content_created_at", "created_at"),
        Index("ix_content_updated_at", "updated_at"),
    )

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]


class Tag(Base):
    __tablename__ = "tag"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(100))
    color: Mapped[str] = mapped_column(String(7), default=DEFAULT_TAG_COLOR)
    description: Mapped[str | None] = mapped_column(Text)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("name", name="uq_tag_name"),
        UniqueConstraint("slug", name="uq_tag_slug"),
        CheckConstraint("usage_count >= 0", name="ck_tag_usage_count"),
        Index("ix_tag_usage_count", "usage_count"),
    )


class ContentTag(Base):
    __tablename__ = "content_tag"

    content_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("content.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tag.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class UploadSession(Base):
    __tablename__ = "upload_session"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    filename: Mapped[str] = mapped_column(String(500))
    storage_key: Mapped[str] = mapped_column(Text)
    file_size: Mapped[int | None] = mapped_column(BigInteger)
    mime_type: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20), default="initiated")
    error_message: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint("file_size is null or file_size > 0", name="ck_upload_session_file_size"),
        CheckConstraint(f"status in ({_in(UPLOAD_STATUSES)})", name="ck_upload_session_status"),
        CheckConstraint("expires_at > created_at", name="ck_upload_session_expiry"),
    )


class ViewEvent(Base):
    __tablename__ = "view_event"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    content_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("content.id", ondelete="CASCADE"),
        index=True,
    )
    viewer_id: Mapped[str | None] = mapped_column(String(255), index=True)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    referrer: Mapped[str | None] = mapped_column(Text)
    watch_duration: Mapped[int | None] = mapped_column(Integer)
    watch_percentage: Mapped[float | None] = mapped_column(Numeric(5, 2, asdecimal=False))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "watch_duration is null or watch_duration >= 0",
            name="ck_view_event_watch_duration",
        ),
        CheckConstraint(
            "watch_percentage is null or (watch_percentage >= 0 and watch_percentage <= 100)",
            name="ck_view_event_watch_percentage",
        ),
    )
