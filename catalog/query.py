from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any, Generic, TypeVar

import sqlalchemy as sa
from sqlalchemy import Select, func, select
from sqlalchemy.sql.elements import ColumnElement

from db.models import Content, ContentTag, Tag

from .schemas import ListQuery
from .tags import slugify

T = TypeVar("T")

SORT_COLUMNS = {
    "created_at": Content.created_at,
    "updated_at": Content.updated_at,
    "title": Content.title,
    "file_size": Content.file_size,
    "duration": Content.duration,
}

_TS_CONFIG = sa.literal_column("'english'::regconfig")


@dataclass
class Page(Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def pagination(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


@dataclass(frozen=True)
class QueryPlan:
    count: Select
    page: Select
    page_number: int
    limit: int
    offset: int
    predicates: list[ColumnElement] = field(default_factory=list)


def visibility_scope(caller_id: str | None) -> ColumnElement:
    if caller_id:
        return sa.or_(Content.visibility == "public", Content.owner_id == caller_id)
    return Content.visibility == "public"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def text_match(text: str, dialect: str) -> tuple[ColumnElement, ColumnElement]:
    """Return (predicate, rank) for a free-text match on title and description."""
    if dialect == "postgresql":
        document = func.to_tsvector(
            _TS_CONFIG,
            Content.title + " " + func.coalesce(Content.description, ""),
        )
        tsquery = func.plainto_tsquery(_TS_CONFIG, text)
        return document.op("@@")(tsquery), func.ts_rank(document, tsquery)

    pattern = f"%{_escape_like(text)}%"
    in_title = Content.title.ilike(pattern, escape="\\")
    in_description = Content.description.ilike(pattern, escape="\\")
    rank = sa.case((in_title, 2), else_=1)
    return sa.or_(in_title, in_description), rank


def tag_membership(names: list[str]) -> ColumnElement:
    slugs = sorted({slugify(name) for name in names} - {""})
    return (
        select(ContentTag.content_id)
        .join(Tag, Tag.id == ContentTag.tag_id)
        .where(ContentTag.content_id == Content.id, Tag.slug.in_(slugs))
        .exists()
    )


def build_predicates(
    query: ListQuery,
    caller_id: str | None,
    dialect: str,
) -> tuple[list[ColumnElement], ColumnElement | None]:
    predicates: list[ColumnElement] = [visibility_scope(caller_id)]
    rank = None
    if query.owner_id:
        predicates.append(Content.owner_id == query.owner_id)
    if query.status:
        predicates.append(Content.status == query.status)
    if query.visibility:
        predicates.append(Content.visibility == query.visibility)
    if query.tags:
        predicates.append(tag_membership(query.tags))
    if query.text:
        match, rank = text_match(query.text, dialect)
        predicates.append(match)
    if query.created_after:
        predicates.append(Content.created_at >= query.created_after)
    if query.created_before:
        predicates.append(Content.created_at <= query.created_before)
    if query.min_duration is not None:
        predicates.append(Content.duration >= query.min_duration)
    if query.max_duration is not None:
        predicates.append(Content.duration <= query.max_duration)
    return predicates, rank


def build_order(query: ListQuery, rank: ColumnElement | None) -> list[ColumnElement]:
    if query.sort_by is None and rank is not None:
        order = [rank.desc(), Content.created_at.desc()]
    else:
        column = SORT_COLUMNS[query.sort_by or "created_at"]
        order = [column.asc() if query.sort_order == "asc" else column.desc()]
    order.append(Content.id.asc())
    return order


def build_plan(query: ListQuery, caller_id: str | None = None, dialect: str = "postgresql") -> QueryPlan:
    predicates, rank = build_predicates(query, caller_id, dialect)
    offset = (query.page - 1) * query.limit
    count = select(func.count()).select_from(Content).where(*predicates)
    page = (
        select(Content)
        .where(*predicates)
        .order_by(*build_order(query, rank))
        .limit(query.limit)
        .offset(offset)
    )
    return QueryPlan(
        count=count,
        page=page,
        page_number=query.page,
        limit=query.limit,
        offset=offset,
        predicates=predicates,
    )
