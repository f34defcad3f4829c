from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_FILE_SIZE = 2 * 1024 * 1024 * 1024
VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".webm", ".mkv")

ContentStatus = Literal["uploading", "processing", "ready", "failed"]
Visibility = Literal["public", "private", "unlisted"]
SortField = Literal["created_at", "updated_at", "title", "file_size", "duration"]
SortOrder = Literal["asc", "desc"]

TagName = Annotated[str, Field(max_length=100)]


def _clean_tags(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return None
    cleaned = [value.strip() for value in values]
    if any(not value for value in cleaned):
        raise ValueError("tags must be non-empty strings")
    return cleaned


def _check_mime(value: Optional[str]) -> Optional[str]:
    if value is not None and not value.startswith("video/"):
        raise ValueError("mime_type must be a video/* type")
    return value


def _check_video_filename(value: str) -> str:
    if not value.lower().endswith(VIDEO_EXTENSIONS):
        raise ValueError(f"filename must end with one of {', '.join(VIDEO_EXTENSIONS)}")
    return value


class ContentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, max_length=2000)
    filename: str = Field(min_length=1, max_length=500)
    original_filename: Optional[str] = Field(default=None, max_length=500)
    file_size: int = Field(gt=0, le=MAX_FILE_SIZE)
    duration: Optional[int] = Field(default=None, ge=0)
    video_url: str = Field(min_length=1)
    thumbnail_url: Optional[str] = None
    status: ContentStatus = "uploading"
    visibility: Visibility = "private"
    mime_type: Optional[str] = Field(default=None, max_length=100)
    resolution: Optional[str] = Field(default=None, max_length=20)
    fps: Optional[int] = Field(default=None, gt=0, le=120)
    bitrate: Optional[int] = Field(default=None, gt=0)
    codec: Optional[str] = Field(default=None, max_length=50)
    tags: List[TagName] = Field(default_factory=list, max_length=10)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("tags")
    @classmethod
    def _validate_tags(cls, value):  # type: ignore[no-untyped-def]
        return _clean_tags(value)

    @field_validator("mime_type")
    @classmethod
    def _validate_mime(cls, value: Optional[str]) -> Optional[str]:
        return _check_mime(value)


class ContentUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, max_length=2000)
    original_filename: Optional[str] = Field(default=None, max_length=500)
    file_size: Optional[int] = Field(default=None, gt=0, le=MAX_FILE_SIZE)
    duration: Optional[int] = Field(default=None, ge=0)
    video_url: Optional[str] = Field(default=None, min_length=1)
    thumbnail_url: Optional[str] = None
    status: Optional[ContentStatus] = None
    visibility: Optional[Visibility] = None
    mime_type: Optional[str] = Field(default=None, max_length=100)
    resolution: Optional[str] = Field(default=None, max_length=20)
    fps: Optional[int] = Field(default=None, gt=0, le=120)
    bitrate: Optional[int] = Field(default=None, gt=0)
    codec: Optional[str] = Field(default=None, max_length=50)
    tags: Optional[List[TagName]] = Field(default=None, max_length=10)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("tags")
    @classmethod
    def _validate_tags(cls, value):  # type: ignore[no-untyped-def]
        return _clean_tags(value)

    @field_validator("mime_type")
    @classmethod
    def _validate_mime(cls, value: Optional[str]) -> Optional[str]:
        return _check_mime(value)

    @model_validator(mode="after")
    def _validate_required_not_null(self) -> "ContentUpdate":
        for name in ("title", "file_size", "video_url", "status", "visibility"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class ListQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    owner_id: Optional[str] = None
    status: Optional[ContentStatus] = None
    visibility: Optional[Visibility] = None
    tags: Optional[List[str]] = None
    search: Optional[str] = Field(default=None, max_length=100)
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    min_duration: Optional[int] = Field(default=None, ge=0)
    max_duration: Optional[int] = Field(default=None, ge=0)
    sort_by: Optional[SortField] = None
    sort_order: SortOrder = "desc"

    model_config = ConfigDict(extra="forbid")

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value):  # type: ignore[no-untyped-def]
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        tags = [part.strip() for item in value for part in str(item).split(",") if part.strip()]
        return tags or None

    @field_validator("search")
    @classmethod
    def _blank_search(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value.strip() if value is not None else None

    @model_validator(mode="after")
    def _validate_bounds(self) -> "ListQuery":
        if self.created_after and self.created_before and self.created_after > self.created_before:
            raise ValueError("created_after must be <= created_before")
        if (
            self.min_duration is not None
            and self.max_duration is not None
            and self.min_duration > self.max_duration
        ):
            raise ValueError("min_duration must be <= max_duration")
        return self

    @property
    def text(self) -> Optional[str]:
        return self.search


class SearchQuery(ListQuery):
    q: str = Field(min_length=1, max_length=100)

    @field_validator("q")
    @classmethod
    def _strip_q(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("q must not be blank")
        return value

    @model_validator(mode="after")
    def _reject_search(self) -> "SearchQuery":
        if self.search is not None:
            raise ValueError("send the search text as q, not search")
        return self

    @property
    def text(self) -> Optional[str]:
        return self.q


class UploadOpen(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    file_size: Optional[int] = Field(default=None, gt=0, le=MAX_FILE_SIZE)
    mime_type: Optional[str] = Field(default=None, max_length=100)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("filename")
    @classmethod
    def _validate_filename(cls, value: str) -> str:
        return _check_video_filename(value)

    @field_validator("mime_type")
    @classmethod
    def _validate_mime(cls, value: Optional[str]) -> Optional[str]:
        return _check_mime(value)


class UploadFinalize(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, max_length=2000)
    visibility: Visibility = "private"
    tags: List[TagName] = Field(default_factory=list, max_length=10)
    file_size: Optional[int] = Field(default=None, gt=0, le=MAX_FILE_SIZE)
    duration: Optional[int] = Field(default=None, ge=0)
    thumbnail_url: Optional[str] = None
    resolution: Optional[str] = Field(default=None, max_length=20)
    fps: Optional[int] = Field(default=None, gt=0, le=120)
    bitrate: Optional[int] = Field(default=None, gt=0)
    codec: Optional[str] = Field(default=None, max_length=50)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("tags")
    @classmethod
    def _validate_tags(cls, value):  # type: ignore[no-untyped-def]
        return _clean_tags(value)


class TagCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class ViewEventIn(BaseModel):
    content_id: str
    viewer_id: Optional[str] = Field(default=None, max_length=255)
    ip_address: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    watch_duration: Optional[int] = Field(default=None, ge=0)
    watch_percentage: Optional[float] = Field(default=None, ge=0, le=100)


class BulkVisibility(BaseModel):
    ids: List[UUID] = Field(min_length=1, max_length=50)
    visibility: Visibility

    model_config = ConfigDict(extra="forbid")


class BulkDelete(BaseModel):
    ids: List[UUID] = Field(min_length=1, max_length=20)

    model_config = ConfigDict(extra="forbid")
