from __future__ import annotations

from functools import lru_cache
import logging
from os import getenv
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from catalog.errors import Conflict, ConstraintViolation, NotFound, StoreError, Transient
from catalog.query import Page
from catalog.repository import ContentRepository
from catalog.schemas import (
    BulkDelete,
    BulkVisibility,
    ContentCreate,
    ContentUpdate,
    ListQuery,
    SearchQuery,
    TagCreate,
    UploadFinalize,
    UploadOpen,
)
from catalog.tags import TagRegistry
from catalog.uploads import UploadSessionManager
from db.models import Content, Tag, UploadSession
from db.session import Storage, get_storage
from pipeline.queue import enqueue_processing, processing_enabled
from storage.blob import BlobStore, S3BlobStore

logging.basicConfig(
    level=getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="ContentHive API", version="0.1.0")

_STATUS_CODES = {
    NotFound: 404,
    ConstraintViolation: 422,
    Conflict: 409,
    Transient: 503,
}


def _storage() -> Storage:
    return get_storage()


@lru_cache(maxsize=1)
def _blob_store() -> BlobStore:
    return S3BlobStore()


def _repository() -> ContentRepository:
    return ContentRepository(_storage())


def _tags() -> TagRegistry:
    return TagRegistry(_storage())


def _uploads() -> UploadSessionManager:
    return UploadSessionManager(
        _storage(),
        _blob_store(),
        repository=_repository(),
        on_finalized=enqueue_processing if processing_enabled() else None,
    )


def _caller(x_user_id: str | None = Header(default=None)) -> str | None:
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


def _require_caller(x_user_id: str | None = Header(default=None)) -> str:
    caller = _caller(x_user_id)
    if caller is None:
        raise HTTPException(status_code=401, detail="user_id_required")
    return caller


def _http_error(exc: StoreError) -> HTTPException:
    status_code = _STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.warning("store error surfaced as %d: %s", status_code, exc)
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": exc.message})


def _tag_row(tag: Tag) -> dict:
    return {
        "id": tag.id,
        "name": tag.name,
        "slug": tag.slug,
        "color": tag.color,
        "description": tag.description,
        "usage_count": tag.usage_count,
        "created_at": tag.created_at,
    }


def _content_row(content: Content) -> dict:
    payload = {
        "id": content.id,
        "owner_id": content.owner_id,
        "title": content.title,
        "description": content.description,
        "filename": content.filename,
        "original_filename": content.original_filename,
        "file_size": content.file_size,
        "duration": content.duration,
        "video_url": content.video_url,
        "thumbnail_url": content.thumbnail_url,
        "status": content.status,
        "visibility": content.visibility,
        "mime_type": content.mime_type,
        "resolution": content.resolution,
        "fps": content.fps,
        "bitrate": content.bitrate,
        "codec": content.codec,
        "upload_session_id": content.upload_session_id,
        "processing_started_at": content.processing_started_at,
        "processing_completed_at": content.processing_completed_at,
        "created_at": content.created_at,
        "updated_at": content.updated_at,
        "tags": [
            {"id": tag.id, "name": tag.name, "slug": tag.slug, "color": tag.color}
            for tag in content.tags
        ],
    }
    return jsonable_encoder(payload)


def _upload_row(row: UploadSession) -> dict:
    return jsonable_encoder(
        {
            "id": row.id,
            "owner_id": row.owner_id,
            "filename": row.filename,
            "storage_key": row.storage_key,
            "file_size": row.file_size,
            "mime_type": row.mime_type,
            "status": row.status,
            "error_message": row.error_message,
            "expires_at": row.expires_at,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
    )


def _page_payload(page: Page[Content]) -> dict:
    return {
        "items": [_content_row(item) for item in page.items],
        "pagination": page.pagination(),
    }


class ViewRequest(BaseModel):
    watch_duration: Optional[int] = Field(default=None, ge=0)
    watch_percentage: Optional[float] = Field(default=None, ge=0, le=100)


class UploadFailRequest(BaseModel):
    error_message: Optional[str] = Field(default=None, max_length=2000)


def _view_context(request: Request) -> dict:
    client = getattr(request, "client", None)
    headers = getattr(request, "headers", None) or {}
    return {
        "ip_address": client.host if client is not None else None,
        "user_agent": headers.get("user-agent"),
        "referrer": headers.get("referer"),
    }


@app.get("/health")
def health() -> dict:
    database_ok = _storage().ping()
    return {"status": "ok" if database_ok else "degraded", "database": database_ok}


@app.get("/content")
def list_content(
    query: Annotated[ListQuery, Query()],
    caller: str | None = Depends(_caller),
) -> dict:
    try:
        return _page_payload(_repository().list(query, caller_id=caller))
    except StoreError as exc:
        raise _http_error(exc) from exc


@app.get("/content/search")
def search_content(
    query: Annotated[SearchQuery, Query()],
    caller: str | None = Depends(_caller),
) -> dict:
    try:
        page = _repository().search(query, caller_id=caller)
    except StoreError as exc:
        raise _http_error(exc) from exc
    payload = _page_payload(page)
    payload["query"] = query.q
    return payload


@app.get("/content/stats")
def content_stats(caller: str = Depends(_require_caller)) -> dict:
    try:
        return _repository().get_user_stats(caller)
    except StoreError as exc:
        raise _http_error(exc) from exc


@app.post("/content", status_code=201)
def create_content(payload: ContentCreate, caller: str = Depends(_require_caller)) -> dict:
    try:
        content = _repository().create(caller, payload)
    except StoreError as exc:
        raise _http_error(exc) from exc
    return _content_row(content)


@app.put("/content/bulk/visibility")
def bulk_update_visibility(payload: BulkVisibility, caller: str = Depends(_require_caller)) -> dict:
    try:
        updated = _repository().bulk_set_visibility(payload.ids, caller, payload.visibility)
    except StoreError as exc:
        raise _http_error(exc) from exc
    return {"requested": len(payload.ids), "updated": updated, "visibility": payload.visibility}


@app.delete("/content/bulk")
def bulk_delete_content(payload: BulkDelete, caller: str = Depends(_require_caller)) -> dict:
    try:
        deleted = _repository().bulk_delete(payload.ids, caller)
    except StoreError as exc:
        raise _http_error(exc) from exc
    return {"requested": len(payload.ids), "deleted": deleted}


@app.get("/content/{content_id}")
def get_content(
    content_id: str,
    request: Request,
    caller: str | None = Depends(_caller),
) -> dict:
    repository = _repository()
    try:
        content = repository.get(content_id, caller_id=caller)
    except StoreError as exc:
        raise _http_error(exc) from exc
    repository.record_view({"content_id": str(content.id), "viewer_id": caller, **_view_context(request)})
    return _content_row(content)


@app.put("/content/{content_id}")
def update_content(
    content_id: str,
    payload: ContentUpdate,
    caller: str = Depends(_require_caller),
) -> dict:
    try:
        content = _repository().update(content_id, caller, payload)
    except StoreError as exc:
        raise _http_error(exc) from exc
    return _content_row(content)


@app.delete("/content/{content_id}")
def delete_content(content_id: str, caller: str = Depends(_require_caller)) -> dict:
    try:
        deleted = _repository().delete(content_id, caller)
    except StoreError as exc:
        raise _http_error(exc) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "content not found"})
    return {"id": content_id, "deleted": True}


@app.post("/content/{content_id}/views")
def record_view(
    content_id: str,
    payload: ViewRequest,
    request: Request,
    caller: str | None = Depends(_caller),
) -> dict:
    recorded = _repository().record_view(
        {
            "content_id": content_id,
            "viewer_id": caller,
            "watch_duration": payload.watch_duration,
            "watch_percentage": payload.watch_percentage,
            **_view_context(request),
        }
    )
    return {"recorded": recorded}


@app.get("/tags")
def list_tags() -> dict:
    try:
        tags = _tags().list()
    except StoreError as exc:
        raise _http_error(exc) from exc
    return {"items": jsonable_encoder([_tag_row(tag) for tag in tags])}


@app.post("/tags", status_code=201)
def create_tag(payload: TagCreate, caller: str = Depends(_require_caller)) -> dict:
    try:
        tag = _tags().create(payload.name, color=payload.color, description=payload.description)
    except StoreError as exc:
        raise _http_error(exc) from exc
    return jsonable_encoder(_tag_row(tag))


@app.post("/uploads", status_code=201)
def open_upload(payload: UploadOpen, caller: str = Depends(_require_caller)) -> dict:
    try:
        grant = _uploads().open(caller, payload.filename, payload.file_size, payload.mime_type)
    except StoreError as exc:
        raise _http_error(exc) from exc
    return {
        "session": _upload_row(grant.session),
        "upload_url": grant.upload_url,
        "expires_at": jsonable_encoder(grant.expires_at),
    }


@app.get("/uploads/{session_id}")
def get_upload(session_id: str, caller: str = Depends(_require_caller)) -> dict:
    try:
        return _upload_row(_uploads().get(session_id, caller))
    except StoreError as exc:
        raise _http_error(exc) from exc


@app.post("/uploads/{session_id}/start")
def start_upload(session_id: str, caller: str = Depends(_require_caller)) -> dict:
    try:
        return _upload_row(_uploads().start(session_id, caller))
    except StoreError as exc:
        raise _http_error(exc) from exc


@app.post("/uploads/{session_id}/fail")
def fail_upload(
    session_id: str,
    payload: UploadFailRequest,
    caller: str = Depends(_require_caller),
) -> dict:
    try:
        return _upload_row(_uploads().fail(session_id, caller, payload.error_message))
    except StoreError as exc:
        raise _http_error(exc) from exc


@app.post("/uploads/{session_id}/finalize", status_code=201)
def finalize_upload(
    session_id: str,
    payload: UploadFinalize,
    caller: str = Depends(_require_caller),
) -> dict:
    try:
        content = _uploads().finalize(session_id, caller, payload)
    except StoreError as exc:
        raise _http_error(exc) from exc
    return _content_row(content)


@app.delete("/uploads/{session_id}")
def cancel_upload(session_id: str, caller: str = Depends(_require_caller)) -> dict:
    try:
        cancelled = _uploads().cancel(session_id, caller)
    except StoreError as exc:
        raise _http_error(exc) from exc
    if not cancelled:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "upload session not found"})
    return {"id": session_id, "cancelled": True}
