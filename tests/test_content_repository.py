from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

import db.session as session_module
from catalog.errors import ConstraintViolation, NotFound, Transient
from db.models import Content, ContentTag, ViewEvent


def _fields(**overrides) -> dict:
    fields = {
        "title": "Quarterly review",
        "filename": "review.mp4",
        "file_size": 2048,
        "video_url": "https://cdn.test/review.mp4",
    }
    fields.update(overrides)
    return fields


def test_create_defaults_and_tags(repository) -> None:
    content = repository.create("user-a", _fields(tags=["Business", "business", "Tutorial"]))
    assert content.status == "uploading"
    assert content.visibility == "private"
    assert content.original_filename == "review.mp4"
    assert content.tag_names == ["Business", "Tutorial"]


def test_create_validation_becomes_constraint_violation(repository) -> None:
    with pytest.raises(ConstraintViolation):
        repository.create("user-a", _fields(file_size=0))
    with pytest.raises(ConstraintViolation):
        repository.create("user-a", _fields(tags=[f"t{i}" for i in range(11)]))
    with pytest.raises(ConstraintViolation):
        repository.create("user-a", _fields(fps=240))


def test_get_respects_visibility(repository, make_content) -> None:
    private = make_content(owner_id="user-a", visibility="private")
    unlisted = make_content(owner_id="user-a", visibility="unlisted")
    public = make_content(owner_id="user-a", visibility="public")

    assert repository.get(private.id, caller_id="user-a").id == private.id
    assert repository.get(public.id).id == public.id
    for hidden in (private, unlisted):
        with pytest.raises(NotFound):
            repository.get(hidden.id, caller_id="user-b")
        with pytest.raises(NotFound):
            repository.get(hidden.id)


def test_get_unknown_or_malformed_id(repository) -> None:
    with pytest.raises(NotFound):
        repository.get("not-a-uuid")
    with pytest.raises(NotFound):
        repository.get("0b0f6c2e-4d55-4f0c-9a53-2b1d8f3e9a10")


def test_update_only_owner_and_partial(repository, make_content) -> None:
    content = make_content(description="first cut")
    updated = repository.update(content.id, "user-a", {"title": "Final cut"})
    assert updated.title == "Final cut"
    assert updated.description == "first cut"

    with pytest.raises(NotFound):
        repository.update(content.id, "user-b", {"title": "Hijacked"})
    with pytest.raises(ConstraintViolation):
        repository.update(content.id, "user-a", {"title": None})


def test_status_moves_forward_only(repository, make_content) -> None:
    content = make_content()
    processing = repository.set_status(content.id, "processing")
    assert processing.processing_started_at is not None
    ready = repository.set_status(content.id, "ready")
    assert ready.processing_completed_at is not None

    with pytest.raises(ConstraintViolation):
        repository.set_status(content.id, "processing")
    with pytest.raises(ConstraintViolation):
        repository.update(content.id, "user-a", {"status": "uploading"})
    with pytest.raises(ConstraintViolation):
        repository.update(content.id, "user-a", {"status": "failed"})
    assert repository.set_status(content.id, "ready").status == "ready"


def test_delete_scenario(storage, repository, tags, make_content) -> None:
    content = make_content(tags=["marketing", "webinar"])
    assert repository.record_view({"content_id": str(content.id), "viewer_id": "user-b"})

    assert repository.delete(content.id, "user-b") is False
    assert repository.delete(content.id, "user-a") is True

    with storage.transaction() as session:
        links = session.execute(select(func.count()).select_from(ContentTag)).scalar_one()
        views = session.execute(select(func.count()).select_from(ViewEvent)).scalar_one()
        rows = session.execute(select(func.count()).select_from(Content)).scalar_one()
    assert (links, views, rows) == (0, 0, 0)
    assert tags.get("marketing").usage_count == 0
    assert tags.get("webinar").usage_count == 0
    assert repository.delete(content.id, "user-a") is False


def test_tag_replace_is_atomic(repository, tags, make_content, monkeypatch) -> None:
    content = make_content(tags=["tutorial", "business"])

    def _boom(session, tag_ids, delta):
        raise RuntimeError("counter update failed")

    monkeypatch.setattr(repository.tags, "apply_delta", _boom)
    with pytest.raises(RuntimeError):
        repository.update(content.id, "user-a", {"title": "Renamed", "tags": ["interview"]})
    monkeypatch.undo()

    again = repository.get(content.id, caller_id="user-a")
    assert again.title == content.title
    assert again.tag_names == ["business", "tutorial"]
    assert tags.get("tutorial").usage_count == 1
    assert tags.get("business").usage_count == 1
    with pytest.raises(NotFound):
        tags.get("interview")


def test_deadline_rolls_back(storage, repository, monkeypatch) -> None:
    ticks = iter([0.0, 10.0])
    monkeypatch.setattr(session_module, "time", SimpleNamespace(monotonic=lambda: next(ticks)))
    with pytest.raises(Transient):
        repository.create("user-a", _fields(tags=["tutorial"]), deadline_s=1.0)
    monkeypatch.undo()

    with storage.transaction() as session:
        assert session.execute(select(func.count()).select_from(Content)).scalar_one() == 0
        assert session.execute(select(func.count()).select_from(ContentTag)).scalar_one() == 0


def test_record_view_never_raises(repository, make_content) -> None:
    content = make_content()
    assert repository.record_view({"content_id": str(content.id), "watch_percentage": 55.5}) is True
    assert repository.record_view({"content_id": str(content.id), "watch_percentage": 300}) is False
    assert repository.record_view({"content_id": "nope"}) is False
    assert repository.record_view({"content_id": "0b0f6c2e-4d55-4f0c-9a53-2b1d8f3e9a10"}) is False


def test_user_stats(repository, make_content) -> None:
    first = make_content(owner_id="user-a", duration=30, tags=["training"])
    make_content(owner_id="user-a", duration=90, visibility="private", tags=["training", "workshop"])
    make_content(owner_id="user-b", duration=500)
    repository.record_view({"content_id": str(first.id)})
    repository.record_view({"content_id": str(first.id)})

    stats = repository.get_user_stats("user-a")
    assert stats["total_videos"] == 2
    assert stats["total_size_bytes"] == first.file_size + 2048
    assert stats["total_duration_s"] == 120
    assert stats["by_status"] == {"uploading": 2}
    assert stats["by_visibility"] == {"public": 1, "private": 1}
    assert stats["total_views"] == 2
    assert stats["tags_used"] == 2
    assert repository.get_user_stats("nobody")["total_videos"] == 0


def test_oversized_identifiers_are_constraint_violations(repository, make_content) -> None:
    with pytest.raises(ConstraintViolation):
        repository.create("user-a", _fields(tags=["x" * 150]))
    with pytest.raises(ConstraintViolation):
        repository.create("u" * 256, _fields())
    content = make_content()
    with pytest.raises(ConstraintViolation):
        repository.update(content.id, "user-a", {"tags": ["y" * 101]})
    assert repository.create("u" * 255, _fields(tags=["z" * 100])).owner_id == "u" * 255


def test_set_status_rejects_unknown_value(repository, make_content) -> None:
    content = make_content()
    with pytest.raises(ConstraintViolation):
        repository.set_status(content.id, "archived")
    with pytest.raises(NotFound):
        repository.set_status("0b0f6c2e-4d55-4f0c-9a53-2b1d8f3e9a10", "ready")


def test_bulk_set_visibility_only_touches_owned(repository, make_content) -> None:
    mine = [make_content(visibility="private") for _ in range(3)]
    theirs = make_content(owner_id="user-b", visibility="private")

    ids = [item.id for item in mine] + [theirs.id]
    assert repository.bulk_set_visibility(ids, "user-a", "public") == 3
    assert {item.id for item in repository.list().items} == {item.id for item in mine}
    assert repository.get(theirs.id, caller_id="user-b").visibility == "private"


def test_bulk_set_visibility_validates_request(repository, make_content) -> None:
    content = make_content()
    with pytest.raises(ConstraintViolation):
        repository.bulk_set_visibility([], "user-a", "public")
    with pytest.raises(ConstraintViolation):
        repository.bulk_set_visibility([content.id], "user-a", "hidden")
    with pytest.raises(ConstraintViolation):
        repository.bulk_set_visibility(["not-a-uuid"], "user-a", "public")
    with pytest.raises(ConstraintViolation):
        repository.bulk_delete([content.id] * 21, "user-a")


def test_bulk_delete_decrements_shared_tags(storage, repository, tags, make_content) -> None:
    first = make_content(tags=["tutorial", "business"])
    second = make_content(tags=["tutorial"])
    kept = make_content(tags=["tutorial"])
    foreign = make_content(owner_id="user-b", tags=["business"])
    repository.record_view({"content_id": str(first.id)})

    deleted = repository.bulk_delete([first.id, second.id, foreign.id], "user-a")
    assert deleted == 2
    assert tags.get("tutorial").usage_count == 1
    assert tags.get("business").usage_count == 1
    with storage.transaction() as session:
        assert session.execute(select(func.count()).select_from(ViewEvent)).scalar_one() == 0
        remaining = set(session.execute(select(Content.id)).scalars())
    assert remaining == {kept.id, foreign.id}
    assert tags.recount() == 0
