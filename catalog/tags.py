from __future__ import annotations

import logging
import os
import re
from typing import Iterable, Sequence
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from db.models import DEFAULT_TAG_COLOR, ContentTag, Tag
from db.session import Storage

from .errors import ConstraintViolation, NotFound

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_NOT_SLUG = re.compile(r"[^a-z0-9-]")


def slugify(name: str) -> str:
    slug = _WHITESPACE.sub("-", name.strip().lower())
    return _NOT_SLUG.sub("", slug)


def _default_color() -> str:
    return os.getenv("DEFAULT_TAG_COLOR", DEFAULT_TAG_COLOR)


def _insert_ignore(session: Session, values: dict) -> None:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(Tag).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite.insert(Tag).values(**values).on_conflict_do_nothing()
    else:
        exists = session.execute(select(Tag.id).where(Tag.slug == values["slug"])).first()
        if exists is not None:
            return
        stmt = sa.insert(Tag).values(**values)
    session.execute(stmt)


class TagRegistry:
    """Tag identity and denormalized usage counters.

    The session-level helpers (``ensure``, ``ensure_many``, ``apply_delta``)
    never commit: they run inside the caller's transaction so counter changes
    land together with the association rows they describe.
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def ensure(
        self,
        session: Session,
        name: str,
        color: str | None = None,
        description: str | None = None,
    ) -> UUID:
        name = name.strip()
        slug = slugify(name)
        if not slug:
            raise ConstraintViolation(f"tag name has no usable characters: {name!r}")
        _insert_ignore(
            session,
            {
                "name": name,
                "slug": slug,
                "color": color or _default_color(),
                "description": description,
                "usage_count": 0,
            },
        )
        tag_id = session.execute(select(Tag.id).where(Tag.slug == slug)).scalar_one_or_none()
        if tag_id is None:
            # name is taken by a tag with a different slug
            raise ConstraintViolation(f"tag name already in use: {name!r}")
        return tag_id

    def ensure_many(self, session: Session, names: Iterable[str]) -> list[UUID]:
        ids: list[UUID] = []
        seen: set[str] = set()
        for name in names:
            slug = slugify(name)
            if slug in seen:
                continue
            seen.add(slug)
            tag_id = self.ensure(session, name)
            if tag_id not in ids:
                ids.append(tag_id)
        return ids

    def apply_delta(self, session: Session, tag_ids: Sequence[UUID], delta: int) -> None:
        if not tag_ids or delta == 0:
            return
        adjusted = Tag.usage_count + delta
        session.execute(
            sa.update(Tag)
            .where(Tag.id.in_(list(tag_ids)))
            .values(usage_count=sa.case((adjusted < 0, 0), else_=adjusted))
            .execution_options(synchronize_session=False)
        )

    def create(
        self,
        name: str,
        color: str | None = None,
        description: str | None = None,
    ) -> Tag:
        with self.storage.transaction() as session:
            tag_id = self.ensure(session, name, color=color, description=description)
            return session.get(Tag, tag_id)

    def get(self, slug: str) -> Tag:
        with self.storage.transaction() as session:
            tag = session.execute(select(Tag).where(Tag.slug == slug)).scalar_one_or_none()
            if tag is None:
                raise NotFound(f"tag not found: {slug}")
            return tag

    def list(self) -> list[Tag]:
        with self.storage.transaction() as session:
            stmt = select(Tag).order_by(Tag.usage_count.desc(), Tag.name.asc())
            return list(session.execute(stmt).scalars().all())

    def recount(self) -> int:
        """Recompute every usage count from the association table."""
        with self.storage.transaction() as session:
            live = (
                select(ContentTag.tag_id, func.count().label("n"))
                .group_by(ContentTag.tag_id)
                .subquery()
            )
            rows = session.execute(
                select(Tag.id, Tag.usage_count, func.coalesce(live.c.n, 0)).outerjoin(
                    live, live.c.tag_id == Tag.id
                )
            ).all()
            fixed = 0
            for tag_id, stored, actual in rows:
                if stored != actual:
                    session.execute(
                        sa.update(Tag).where(Tag.id == tag_id).values(usage_count=actual)
                    )
                    fixed += 1
            if fixed:
                logger.info("corrected usage_count on %d tag(s)", fixed)
            return fixed
