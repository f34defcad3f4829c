from __future__ import annotations

from datetime import timedelta

import pytest

import catalog.uploads as uploads_module
from catalog.errors import Conflict, ConstraintViolation, NotFound
from catalog.schemas import ContentCreate
from catalog.uploads import storage_key


def test_storage_key_is_scoped_and_sanitized() -> None:
    key = storage_key("user a", "5d2c", "../My Clip (final).mp4")
    assert key == "users/user_a/5d2c/My_Clip_final_.mp4"


def test_open_grants_presigned_destination(uploads, blob_store) -> None:
    grant = uploads.open("user-a", "video.mp4", declared_size=4096, mime_type="video/mp4")
    assert grant.session.status == "initiated"
    assert grant.session.storage_key in blob_store.granted
    assert grant.upload_url.startswith("https://uploads.test/users/user-a/")
    assert grant.expires_at > grant.session.created_at


def test_open_validates_request(uploads) -> None:
    with pytest.raises(ConstraintViolation):
        uploads.open("user-a", "notes.txt")
    with pytest.raises(ConstraintViolation):
        uploads.open("user-a", "clip.mp4", mime_type="image/png")
    with pytest.raises(ConstraintViolation):
        uploads.open("user-a", "clip.mp4", declared_size=3 * 1024 * 1024 * 1024)


def test_finalize_scenario(uploads, tags) -> None:
    grant = uploads.open("user-a", "video.mp4", declared_size=4096, mime_type="video/mp4")
    content = uploads.finalize(grant.session.id, "user-a", {"title": "Demo", "tags": ["Product Demo"]})

    assert content.status == "processing"
    assert content.processing_started_at is not None
    assert content.title == "Demo"
    assert content.file_size == 4096
    assert content.original_filename == "video.mp4"
    assert content.filename == grant.session.storage_key
    assert content.video_url == f"https://cdn.test/{grant.session.storage_key}"
    assert content.upload_session_id == grant.session.id
    assert tags.get("product-demo").usage_count == 1

    with pytest.raises(NotFound):
        uploads.get(grant.session.id, "user-a")
    with pytest.raises(Conflict):
        uploads.finalize(grant.session.id, "user-a", {"title": "Demo"})
    assert tags.get("product-demo").usage_count == 1


def test_finalize_requires_a_size(uploads) -> None:
    grant = uploads.open("user-a", "video.mp4")
    with pytest.raises(ConstraintViolation):
        uploads.finalize(grant.session.id, "user-a", {"title": "No size"})
    content = uploads.finalize(grant.session.id, "user-a", {"title": "Sized", "file_size": 10})
    assert content.file_size == 10


def test_failed_content_creation_keeps_session_uploading(uploads, monkeypatch) -> None:
    grant = uploads.open("user-a", "video.mp4", declared_size=100)

    def _broken_insert(*args, **kwargs):
        raise ConstraintViolation("disk full")

    monkeypatch.setattr(uploads.repository, "insert", _broken_insert)
    with pytest.raises(ConstraintViolation):
        uploads.finalize(grant.session.id, "user-a", {"title": "Demo"})
    monkeypatch.undo()

    assert uploads.get(grant.session.id, "user-a").status == "uploading"
    content = uploads.finalize(grant.session.id, "user-a", {"title": "Demo"})
    assert content.status == "processing"


def test_state_machine(uploads) -> None:
    grant = uploads.open("user-a", "video.mp4", declared_size=100)
    assert uploads.start(grant.session.id, "user-a").status == "uploading"
    assert uploads.start(grant.session.id, "user-a").status == "uploading"

    failed = uploads.fail(grant.session.id, "user-a", "network reset")
    assert failed.status == "failed"
    assert failed.error_message == "network reset"
    with pytest.raises(Conflict):
        uploads.start(grant.session.id, "user-a")
    with pytest.raises(Conflict):
        uploads.finalize(grant.session.id, "user-a", {"title": "Too late"})


def test_sessions_are_owner_scoped(uploads) -> None:
    grant = uploads.open("user-a", "video.mp4", declared_size=100)
    with pytest.raises(NotFound):
        uploads.get(grant.session.id, "user-b")
    with pytest.raises(NotFound):
        uploads.finalize(grant.session.id, "user-b", {"title": "Stolen"})
    assert uploads.cancel(grant.session.id, "user-b") is False
    assert uploads.get(grant.session.id, "user-a").status == "initiated"


def test_expired_session_behaves_as_missing(uploads, monkeypatch) -> None:
    grant = uploads.open("user-a", "video.mp4", declared_size=100)
    later = grant.expires_at + timedelta(seconds=1)
    monkeypatch.setattr(uploads_module, "_utc_now", lambda: later)

    with pytest.raises(NotFound):
        uploads.get(grant.session.id, "user-a")
    with pytest.raises(NotFound):
        uploads.start(grant.session.id, "user-a")
    with pytest.raises(NotFound):
        uploads.finalize(grant.session.id, "user-a", {"title": "Late"})
    assert uploads.cancel(grant.session.id, "user-a") is False


def test_cancel_deletes_without_content(uploads, repository) -> None:
    grant = uploads.open("user-a", "video.mp4", declared_size=100)
    uploads.start(grant.session.id, "user-a")
    assert uploads.cancel(grant.session.id, "user-a") is True
    assert uploads.cancel(grant.session.id, "user-a") is False
    with pytest.raises(NotFound):
        uploads.get(grant.session.id, "user-a")
    assert repository.list(caller_id="user-a").total == 0


def test_finalize_hook_failure_does_not_fail_finalize(uploads) -> None:
    calls = []

    def _hook(content_id):
        calls.append(content_id)
        raise RuntimeError("queue down")

    uploads.on_finalized = _hook
    grant = uploads.open("user-a", "video.mp4", declared_size=100)
    content = uploads.finalize(grant.session.id, "user-a", {"title": "Queued"})
    assert calls == [content.id]


def test_open_and_finalize_reject_oversized_identifiers(uploads) -> None:
    with pytest.raises(ConstraintViolation):
        uploads.open("u" * 256, "video.mp4", declared_size=100)
    grant = uploads.open("user-a", "video.mp4", declared_size=100)
    with pytest.raises(ConstraintViolation):
        uploads.finalize(grant.session.id, "user-a", {"title": "Demo", "tags": ["t" * 150]})
    assert uploads.get(grant.session.id, "user-a").status == "initiated"


def test_racing_finalize_reports_conflict(uploads, storage, repository) -> None:
    grant = uploads.open("user-a", "video.mp4", declared_size=100)
    with storage.transaction() as session:
        repository.insert(
            session,
            "user-a",
            ContentCreate(
                title="Winner",
                filename=grant.session.storage_key,
                file_size=100,
                video_url="https://cdn.test/winner.mp4",
            ),
            [],
            upload_session_id=grant.session.id,
        )

    with pytest.raises(Conflict):
        uploads.finalize(grant.session.id, "user-a", {"title": "Loser"})
    titles = [item.title for item in repository.list({"visibility": "private"}, caller_id="user-a").items]
    assert titles == ["Winner"]


def test_session_expiring_mid_finalize_is_not_found(uploads, blob_store, repository, monkeypatch) -> None:
    grant = uploads.open("user-a", "video.mp4", declared_size=100)
    clock = [grant.expires_at - timedelta(seconds=5)]
    monkeypatch.setattr(uploads_module, "_utc_now", lambda: clock[0])

    def _slow_public_url(key: str) -> str:
        clock[0] = grant.expires_at + timedelta(seconds=1)
        return f"https://cdn.test/{key}"

    monkeypatch.setattr(blob_store, "public_url", _slow_public_url)
    with pytest.raises(NotFound):
        uploads.finalize(grant.session.id, "user-a", {"title": "Late"})
    assert repository.list(caller_id="user-a").total == 0
    assert uploads.cancel(grant.session.id, "user-a") is False
