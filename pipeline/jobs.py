from __future__ import annotations

import logging

from rq.job import Job as RQJob

from catalog.errors import StoreError
from catalog.repository import ContentRepository
from db.session import get_storage

logger = logging.getLogger(__name__)


def _repository() -> ContentRepository:
    return ContentRepository(get_storage())


def process_content_job(content_id: str, ready: bool = True, error: str | None = None) -> dict:
    """Close out processing for one finalized upload.

    Content created directly (status ``uploading``) is moved through
    ``processing`` first so the timestamps are stamped in order.
    """
    repository = _repository()
    try:
        repository.set_status(content_id, "processing")
        content = repository.set_status(content_id, "ready" if ready else "failed")
    except StoreError as exc:
        logger.warning("processing failed for content %s: %s", content_id, exc)
        raise
    if error:
        logger.warning("content %s failed processing: %s", content_id, error)
    logger.info("content processed id=%s status=%s", content.id, content.status)
    return {"content_id": str(content.id), "status": content.status}


def rq_on_failure(job: RQJob, connection, exc_type, exc_value, traceback) -> None:  # type: ignore[no-untyped-def]
    content_id = job.args[0] if job.args else None
    if content_id is None:
        return
    try:
        _repository().set_status(str(content_id), "failed")
    except StoreError as exc:
        logger.warning("could not mark content %s failed: %s", content_id, exc)


def rq_on_success(job: RQJob, connection, result, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
    logger.info("processing job %s finished: %s", job.id, result)
