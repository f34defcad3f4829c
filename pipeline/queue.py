import logging
import os
from uuid import UUID

from redis import Redis
from rq import Queue

from pipeline.jobs import process_content_job, rq_on_failure, rq_on_success

logger = logging.getLogger(__name__)


def _redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def _queue_name() -> str:
    return os.getenv("PROCESSING_QUEUE", "default")


def _timeout_seconds() -> int:
    return int(os.getenv("RQ_JOB_TIMEOUT", "600"))


def processing_enabled() -> bool:
    return os.getenv("PROCESSING_ENQUEUE", "1").lower() in {"1", "true", "yes"}


def get_redis() -> Redis:
    return Redis.from_url(_redis_url())


def get_queue(name: str | None = None) -> Queue:
    return Queue(name or _queue_name(), connection=get_redis())


def enqueue_processing(content_id: UUID | str) -> str:
    job = get_queue().enqueue(
        process_content_job,
        str(content_id),
        job_timeout=_timeout_seconds(),
        on_failure=rq_on_failure,
        on_success=rq_on_success,
    )
    logger.info("processing enqueued content=%s rq_id=%s", content_id, job.id)
    return job.id
