from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
import logging
import os
import re
from typing import Any, Callable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models import Content, UploadSession
from db.session import Storage
from storage.blob import BlobStore

from .errors import Conflict, ConstraintViolation, NotFound
from .repository import ContentRepository, check_owner, coerce, parse_id
from .schemas import ContentCreate, UploadFinalize, UploadOpen

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"completed", "failed", "cancelled"}
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _ttl_seconds() -> int:
    return int(os.getenv("UPLOAD_SESSION_TTL_S", "3600"))


def _url_expires_seconds() -> int:
    return int(os.getenv("UPLOAD_URL_EXPIRES_S", "3600"))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def storage_key(owner_id: str, session_id: UUID, filename: str) -> str:
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE.sub("_", name).strip("._") or "upload"
    owner = _UNSAFE.sub("_", owner_id)
    return f"users/{owner}/{session_id}/{name}"[:500]


@dataclass(frozen=True)
class UploadGrant:
    session: UploadSession
    upload_url: str
    expires_at: datetime


class UploadSessionManager:
    """Pre-publish lifecycle: initiated -> uploading -> {completed, failed, cancelled}.

    Completion is finalize(): it creates the Content record and deletes the
    session row in one transaction. Expiry is checked lazily, and an expired
    session is indistinguishable from one that never existed.
    """

    def __init__(
        self,
        storage: Storage,
        blob_store: BlobStore,
        repository: ContentRepository | None = None,
        on_finalized: Callable[[UUID], Any] | None = None,
    ) -> None:
        self.storage = storage
        self.blob_store = blob_store
        self.repository = repository or ContentRepository(storage)
        self.on_finalized = on_finalized

    def _visible(
        self,
        session: Session,
        session_id: UUID,
        owner_id: str,
        *,
        lock: bool = False,
    ) -> UploadSession | None:
        stmt = select(UploadSession).where(
            UploadSession.id == session_id,
            UploadSession.owner_id == owner_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        row = session.execute(stmt).scalar_one_or_none()
        if row is None or _as_utc(row.expires_at) <= _utc_now():
            return None
        return row

    def open(
        self,
        owner_id: str,
        filename: str,
        declared_size: int | None = None,
        mime_type: str | None = None,
    ) -> UploadGrant:
        check_owner(owner_id)
        request = coerce(
            UploadOpen,
            {"filename": filename, "file_size": declared_size, "mime_type": mime_type},
        )
        now = _utc_now()
        session_id = uuid4()
        key = storage_key(owner_id, session_id, request.filename)
        expires_at = now + timedelta(seconds=_ttl_seconds())
        upload_url = self.blob_store.write_destination(
            key,
            content_type=request.mime_type,
            expires_in=_url_expires_seconds(),
        )
        with self.storage.transaction() as session:
            row = UploadSession(
                id=session_id,
                owner_id=owner_id,
                filename=request.filename,
                storage_key=key,
                file_size=request.file_size,
                mime_type=request.mime_type,
                status="initiated",
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
        logger.info("upload session opened id=%s owner=%s key=%s", session_id, owner_id, key)
        return UploadGrant(session=row, upload_url=upload_url, expires_at=expires_at)

    def get(self, session_id: UUID | str, owner_id: str) -> UploadSession:
        parsed = parse_id(session_id)
        if parsed is None:
            raise NotFound("upload session not found")
        with self.storage.transaction() as session:
            row = self._visible(session, parsed, owner_id)
            if row is None:
                raise NotFound("upload session not found")
            return row

    def _transition(self, session_id: UUID | str, owner_id: str, target: str, error: str | None = None) -> UploadSession:
        parsed = parse_id(session_id)
        if parsed is None:
            raise NotFound("upload session not found")
        with self.storage.transaction() as session:
            row = self._visible(session, parsed, owner_id, lock=True)
            if row is None:
                raise NotFound("upload session not found")
            if row.status in TERMINAL_STATUSES:
                raise Conflict(f"upload session is {row.status}")
            if row.status != target:
                row.status = target
                row.updated_at = _utc_now()
            if error is not None:
                row.error_message = error
            return row

    def start(self, session_id: UUID | str, owner_id: str) -> UploadSession:
        return self._transition(session_id, owner_id, "uploading")

    def fail(self, session_id: UUID | str, owner_id: str, error_message: str | None = None) -> UploadSession:
        return self._transition(session_id, owner_id, "failed", error=error_message or "upload failed")

    def _already_finalized(self, session_id: UUID, owner_id: str) -> bool:
        with self.storage.transaction() as session:
            found = session.execute(
                select(Content.id).where(
                    Content.upload_session_id == session_id,
                    Content.owner_id == owner_id,
                )
            ).scalar_one_or_none()
        return found is not None

    def finalize(
        self,
        session_id: UUID | str,
        owner_id: str,
        fields: UploadFinalize | Mapping[str, Any],
        *,
        deadline_s: float | None = None,
    ) -> Content:
        fields = coerce(UploadFinalize, fields)
        parsed = parse_id(session_id)
        if parsed is None:
            raise NotFound("upload session not found")

        # Step 1: claim the session. It stays in `uploading` until step 2 commits.
        with self.storage.transaction() as session:
            row = self._visible(session, parsed, owner_id, lock=True)
            if row is None:
                claimed = None
            else:
                if row.status in TERMINAL_STATUSES:
                    raise Conflict(f"upload session is {row.status}")
                if row.status == "initiated":
                    row.status = "uploading"
                    row.updated_at = _utc_now()
                claimed = (row.filename, row.storage_key, row.file_size, row.mime_type)
        if claimed is None:
            if self._already_finalized(parsed, owner_id):
                raise Conflict("upload session already finalized")
            raise NotFound("upload session not found")

        filename, key, declared_size, mime_type = claimed
        file_size = fields.file_size or declared_size
        if file_size is None:
            raise ConstraintViolation("file_size is required when the upload did not declare one")
        create = coerce(
            ContentCreate,
            {
                "title": fields.title,
                "description": fields.description,
                "filename": key,
                "original_filename": filename,
                "file_size": file_size,
                "duration": fields.duration,
                "video_url": self.blob_store.public_url(key),
                "thumbnail_url": fields.thumbnail_url,
                "status": "processing",
                "visibility": fields.visibility,
                "mime_type": mime_type,
                "resolution": fields.resolution,
                "fps": fields.fps,
                "bitrate": fields.bitrate,
                "codec": fields.codec,
                "tags": fields.tags,
            },
        )

        # Step 2: materialize the content record and drop the session together.
        try:
            with self.storage.transaction(deadline_s) as session:
                row = session.execute(
                    select(UploadSession)
                    .where(UploadSession.id == parsed, UploadSession.owner_id == owner_id)
                    .with_for_update()
                ).scalar_one_or_none()
                if row is None:
                    raise Conflict("upload session already finalized")
                if _as_utc(row.expires_at) <= _utc_now():
                    raise NotFound("upload session not found")
                if row.status != "uploading":
                    raise Conflict(f"upload session is {row.status}")
                content = self.repository.insert(
                    session,
                    owner_id,
                    create,
                    list(create.tags),
                    upload_session_id=parsed,
                )
                session.execute(delete(UploadSession).where(UploadSession.id == parsed))
        except ConstraintViolation:
            if self._already_finalized(parsed, owner_id):
                raise Conflict("upload session already finalized") from None
            raise

        logger.info("upload session completed id=%s content=%s", parsed, content.id)
        if self.on_finalized is not None:
            try:
                self.on_finalized(content.id)
            except Exception as exc:
                logger.warning("post-finalize hook failed for content %s: %s", content.id, exc)
        return content

    def cancel(self, session_id: UUID | str, owner_id: str) -> bool:
        parsed = parse_id(session_id)
        if parsed is None:
            return False
        with self.storage.transaction() as session:
            row = session.execute(
                select(UploadSession)
                .where(UploadSession.id == parsed, UploadSession.owner_id == owner_id)
                .with_for_update()
            ).scalar_one_or_none()
            if row is None:
                return False
            expired = _as_utc(row.expires_at) <= _utc_now()
            session.execute(delete(UploadSession).where(UploadSession.id == parsed))
        logger.info("upload session cancelled id=%s owner=%s", parsed, owner_id)
        return not expired
