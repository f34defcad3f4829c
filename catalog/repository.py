from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Any, Mapping, Sequence, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError
import sqlalchemy as sa
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, selectinload

from db.models import Content, ContentTag, Tag, ViewEvent
from db.session import Storage

from .errors import ConstraintViolation, NotFound
from .query import Page, build_plan
from .schemas import (
    BulkDelete,
    BulkVisibility,
    ContentCreate,
    ContentUpdate,
    ListQuery,
    SearchQuery,
    ViewEventIn,
)
from .tags import TagRegistry

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

STATUS_RANK = {"uploading": 0, "processing": 1, "ready": 2, "failed": 2}
MAX_OWNER_ID = 255


def _utc_now() -> datetime:
    return datetime.now(UTC)


def coerce(model: type[M], data: M | Mapping[str, Any]) -> M:
    """Validate ``data`` against ``model``; schema errors become ConstraintViolation."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data))
    except ValidationError as exc:
        raise ConstraintViolation(str(exc)) from exc


def parse_id(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def check_owner(owner_id: str) -> str:
    if not owner_id or len(owner_id) > MAX_OWNER_ID:
        raise ConstraintViolation(f"owner id must be 1..{MAX_OWNER_ID} characters")
    return owner_id


def check_transition(current: str, target: str) -> None:
    if current == target:
        return
    if STATUS_RANK[target] <= STATUS_RANK[current]:
        raise ConstraintViolation(f"status cannot move from {current} to {target}")


def _stamp_status(content: Content, status: str, now: datetime) -> None:
    check_transition(content.status, status)
    if status == content.status:
        return
    content.status = status
    if status == "processing" and content.processing_started_at is None:
        content.processing_started_at = now
    if status in {"ready", "failed"}:
        content.processing_completed_at = now


class ContentRepository:
    def __init__(self, storage: Storage, tags: TagRegistry | None = None) -> None:
        self.storage = storage
        self.tags = tags or TagRegistry(storage)

    # -- session-level helpers -------------------------------------------------

    def _load(self, session: Session, content_id: UUID) -> Content | None:
        stmt = (
            select(Content)
            .where(Content.id == content_id)
            .options(selectinload(Content.tags))
            .execution_options(populate_existing=True)
        )
        return session.execute(stmt).scalar_one_or_none()

    def _load_owned(self, session: Session, content_id: UUID | str, owner_id: str) -> Content | None:
        parsed = parse_id(content_id)
        if parsed is None:
            return None
        content = session.execute(
            select(Content).where(Content.id == parsed, Content.owner_id == owner_id).with_for_update()
        ).scalar_one_or_none()
        return content

    def _current_tag_ids(self, session: Session, content_id: UUID) -> set[UUID]:
        rows = session.execute(
            select(ContentTag.tag_id).where(ContentTag.content_id == content_id)
        ).scalars()
        return set(rows)

    def replace_tags(self, session: Session, content_id: UUID, names: list[str]) -> None:
        """Diff the association set against ``names`` and adjust usage counts."""
        current = self._current_tag_ids(session, content_id)
        wanted = self.tags.ensure_many(session, names)
        removed = [tag_id for tag_id in current if tag_id not in wanted]
        added = [tag_id for tag_id in wanted if tag_id not in current]
        if removed:
            session.execute(
                delete(ContentTag).where(
                    ContentTag.content_id == content_id,
                    ContentTag.tag_id.in_(removed),
                )
            )
        if added:
            now = _utc_now()
            session.execute(
                sa.insert(ContentTag),
                [{"content_id": content_id, "tag_id": tag_id, "created_at": now} for tag_id in added],
            )
        self.tags.apply_delta(session, removed, -1)
        self.tags.apply_delta(session, added, +1)

    def insert(
        self,
        session: Session,
        owner_id: str,
        fields: ContentCreate,
        tag_names: list[str],
        **extra: Any,
    ) -> Content:
        check_owner(owner_id)
        now = _utc_now()
        values = fields.model_dump(exclude={"tags"})
        values.update(extra)
        if not values.get("original_filename"):
            values["original_filename"] = values["filename"]
        content = Content(owner_id=owner_id, created_at=now, updated_at=now, **values)
        if content.status == "processing":
            content.processing_started_at = now
        session.add(content)
        session.flush()
        if tag_names:
            self.replace_tags(session, content.id, tag_names)
        return self._load(session, content.id)

    # -- operations ------------------------------------------------------------

    def create(
        self,
        owner_id: str,
        fields: ContentCreate | Mapping[str, Any],
        tag_names: list[str] | None = None,
        *,
        deadline_s: float | None = None,
    ) -> Content:
        fields = coerce(ContentCreate, fields)
        names = list(tag_names) if tag_names is not None else list(fields.tags)
        with self.storage.transaction(deadline_s) as session:
            content = self.insert(session, owner_id, fields, names)
        logger.info("content created id=%s owner=%s tags=%d", content.id, owner_id, len(content.tags))
        return content

    def get(self, content_id: UUID | str, caller_id: str | None = None) -> Content:
        parsed = parse_id(content_id)
        if parsed is None:
            raise NotFound("content not found")
        with self.storage.transaction() as session:
            content = self._load(session, parsed)
            if content is None:
                raise NotFound("content not found")
            if content.visibility != "public" and content.owner_id != caller_id:
                raise NotFound("content not found")
            return content

    def update(
        self,
        content_id: UUID | str,
        owner_id: str,
        fields: ContentUpdate | Mapping[str, Any],
        *,
        deadline_s: float | None = None,
    ) -> Content:
        check_owner(owner_id)
        fields = coerce(ContentUpdate, fields)
        changes = fields.model_dump(exclude_unset=True)
        tag_names = changes.pop("tags", None)
        with self.storage.transaction(deadline_s) as session:
            content = self._load_owned(session, content_id, owner_id)
            if content is None:
                raise NotFound("content not found")
            if not changes and tag_names is None:
                return self._load(session, content.id)
            now = _utc_now()
            status = changes.pop("status", None)
            if status is not None:
                _stamp_status(content, status, now)
            for name, value in changes.items():
                setattr(content, name, value)
            content.updated_at = now
            session.flush()
            if tag_names is not None:
                self.replace_tags(session, content.id, tag_names)
            content = self._load(session, content.id)
        logger.info("content updated id=%s fields=%s", content.id, sorted(fields.model_fields_set))
        return content

    def set_status(self, content_id: UUID | str, status: str) -> Content:
        """System-side status transition, used by the processing worker."""
        if status not in STATUS_RANK:
            raise ConstraintViolation(f"unknown status: {status!r}")
        parsed = parse_id(content_id)
        if parsed is None:
            raise NotFound("content not found")
        with self.storage.transaction() as session:
            content = session.execute(
                select(Content).where(Content.id == parsed).with_for_update()
            ).scalar_one_or_none()
            if content is None:
                raise NotFound("content not found")
            now = _utc_now()
            _stamp_status(content, status, now)
            content.updated_at = now
            session.flush()
            return self._load(session, content.id)

    def _purge(self, session: Session, content_ids: list[UUID]) -> None:
        """Remove content rows with their associations and view events."""
        links = session.execute(
            select(ContentTag.tag_id, func.count())
            .where(ContentTag.content_id.in_(content_ids))
            .group_by(ContentTag.tag_id)
        ).all()
        session.execute(delete(ContentTag).where(ContentTag.content_id.in_(content_ids)))
        by_count: dict[int, list[UUID]] = {}
        for tag_id, n in links:
            by_count.setdefault(int(n), []).append(tag_id)
        for n, tag_ids in by_count.items():
            self.tags.apply_delta(session, tag_ids, -n)
        session.execute(delete(ViewEvent).where(ViewEvent.content_id.in_(content_ids)))
        session.execute(delete(Content).where(Content.id.in_(content_ids)))

    def delete(self, content_id: UUID | str, owner_id: str, *, deadline_s: float | None = None) -> bool:
        with self.storage.transaction(deadline_s) as session:
            content = self._load_owned(session, content_id, owner_id)
            if content is None:
                return False
            self._purge(session, [content.id])
        logger.info("content deleted id=%s owner=%s", content_id, owner_id)
        return True

    def bulk_delete(
        self,
        content_ids: Sequence[UUID | str],
        owner_id: str,
        *,
        deadline_s: float | None = None,
    ) -> int:
        """Delete every listed record the owner holds; others are skipped."""
        request = coerce(BulkDelete, {"ids": list(content_ids)})
        with self.storage.transaction(deadline_s) as session:
            owned = list(
                session.execute(
                    select(Content.id)
                    .where(Content.id.in_(request.ids), Content.owner_id == owner_id)
                    .with_for_update()
                ).scalars()
            )
            if owned:
                self._purge(session, owned)
        logger.info("bulk delete owner=%s requested=%d deleted=%d", owner_id, len(request.ids), len(owned))
        return len(owned)

    def bulk_set_visibility(
        self,
        content_ids: Sequence[UUID | str],
        owner_id: str,
        visibility: str,
        *,
        deadline_s: float | None = None,
    ) -> int:
        request = coerce(BulkVisibility, {"ids": list(content_ids), "visibility": visibility})
        with self.storage.transaction(deadline_s) as session:
            result = session.execute(
                sa.update(Content)
                .where(Content.id.in_(request.ids), Content.owner_id == owner_id)
                .values(visibility=request.visibility, updated_at=_utc_now())
                .execution_options(synchronize_session=False)
            )
            changed = int(result.rowcount or 0)
        logger.info("bulk visibility owner=%s visibility=%s changed=%d", owner_id, request.visibility, changed)
        return changed

    def _run_plan(self, query: ListQuery, caller_id: str | None) -> Page[Content]:
        plan = build_plan(query, caller_id, self.storage.dialect)
        with self.storage.transaction() as session:
            total = int(session.execute(plan.count).scalar_one())
            items = list(session.execute(plan.page).scalars().all())
        return Page(items=items, page=plan.page_number, limit=plan.limit, total=total)

    def list(self, query: ListQuery | Mapping[str, Any] | None = None, caller_id: str | None = None) -> Page[Content]:
        return self._run_plan(coerce(ListQuery, query or {}), caller_id)

    def search(self, query: SearchQuery | Mapping[str, Any], caller_id: str | None = None) -> Page[Content]:
        return self._run_plan(coerce(SearchQuery, query), caller_id)

    def get_user_stats(self, owner_id: str) -> dict[str, Any]:
        with self.storage.transaction() as session:
            totals = session.execute(
                select(
                    func.count(Content.id),
                    func.coalesce(func.sum(Content.file_size), 0),
                    func.coalesce(func.sum(Content.duration), 0),
                ).where(Content.owner_id == owner_id)
            ).one()
            by_status = session.execute(
                select(Content.status, func.count())
                .where(Content.owner_id == owner_id)
                .group_by(Content.status)
            ).all()
            by_visibility = session.execute(
                select(Content.visibility, func.count())
                .where(Content.owner_id == owner_id)
                .group_by(Content.visibility)
            ).all()
            views = session.execute(
                select(func.count(ViewEvent.id))
                .join(Content, Content.id == ViewEvent.content_id)
                .where(Content.owner_id == owner_id)
            ).scalar_one()
            tags_used = session.execute(
                select(func.count(sa.distinct(ContentTag.tag_id)))
                .join(Content, Content.id == ContentTag.content_id)
                .where(Content.owner_id == owner_id)
            ).scalar_one()
        return {
            "total_videos": int(totals[0]),
            "total_size_bytes": int(totals[1]),
            "total_duration_s": int(totals[2]),
            "by_status": {str(status): int(count) for status, count in by_status},
            "by_visibility": {str(visibility): int(count) for visibility, count in by_visibility},
            "total_views": int(views),
            "tags_used": int(tags_used),
        }

    def record_view(self, event: ViewEventIn | Mapping[str, Any]) -> bool:
        """Best-effort insert of one view event; never raises."""
        try:
            event = coerce(ViewEventIn, event)
            content_id = parse_id(event.content_id)
            if content_id is None:
                return False
            with self.storage.transaction() as session:
                exists = session.execute(
                    select(Content.id).where(Content.id == content_id)
                ).scalar_one_or_none()
                if exists is None:
                    return False
                session.add(
                    ViewEvent(
                        content_id=content_id,
                        viewer_id=event.viewer_id,
                        ip_address=event.ip_address,
                        user_agent=event.user_agent,
                        referrer=event.referrer,
                        watch_duration=event.watch_duration,
                        watch_percentage=event.watch_percentage,
                        created_at=_utc_now(),
                    )
                )
            return True
        except Exception as exc:
            logger.warning("view not recorded for %s: %s", getattr(event, "content_id", event), exc)
            return False

    def tags_of(self, content_id: UUID) -> list[Tag]:
        with self.storage.transaction() as session:
            content = self._load(session, content_id)
            return list(content.tags) if content is not None else []
