from __future__ import annotations

from itertools import count

import pytest

from catalog.repository import ContentRepository
from catalog.tags import TagRegistry
from catalog.uploads import UploadSessionManager
from db.session import Storage


class FakeBlobStore:
    def __init__(self) -> None:
        self.granted: list[str] = []

    def write_destination(self, key: str, content_type: str | None = None, expires_in: int = 3600) -> str:
        self.granted.append(key)
        return f"https://uploads.test/{key}?expires={expires_in}"

    def public_url(self, key: str) -> str:
        return f"https://cdn.test/{key}"


@pytest.fixture
def storage():
    store = Storage("sqlite+pysqlite:///:memory:")
    store.init_db()
    yield store
    store.dispose()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def tags(storage) -> TagRegistry:
    return TagRegistry(storage)


@pytest.fixture
def repository(storage, tags) -> ContentRepository:
    return ContentRepository(storage, tags)


@pytest.fixture
def uploads(storage, blob_store, repository) -> UploadSessionManager:
    return UploadSessionManager(storage, blob_store, repository=repository)


@pytest.fixture
def make_content(repository):
    serial = count(1)

    def _make(owner_id: str = "user-a", tags: list[str] | None = None, **overrides):
        n = next(serial)
        fields = {
            "title": f"Video {n}",
            "filename": f"video-{n}.mp4",
            "file_size": 1024 * n,
            "video_url": f"https://cdn.test/video-{n}.mp4",
            "visibility": "public",
        }
        fields.update(overrides)
        return repository.create(owner_id, fields, tags or [])

    return _make
