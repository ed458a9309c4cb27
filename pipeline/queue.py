import os
from datetime import datetime, timezone

from redis import Redis
from rq import Queue

from db.models import Job
from db.session import SessionLocal
from pipeline.jobs import cleanup_expired_uploads_job, rq_on_failure, rq_on_success


def _redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def _timeout_seconds() -> int:
    return int(os.getenv("RQ_JOB_TIMEOUT", "120"))


def get_redis() -> Redis:
    return Redis.from_url(_redis_url())


def get_queue(name: str = "default") -> Queue:
    return Queue(name, connection=get_redis())


def enqueue_upload_cleanup(older_min: int | None = None, queue: Queue | None = None) -> dict:
    session = SessionLocal()
    try:
        db_job = Job(
            job_type="upload_cleanup",
            status="queued",
            payload={"older_min": older_min},
            queued_at=datetime.now(timezone.utc),
        )
        session.add(db_job)
        session.commit()
        session.refresh(db_job)

        queue = queue or get_queue()
        rq_job = queue.enqueue(
            cleanup_expired_uploads_job,
            str(db_job.id),
            older_min,
            job_timeout=_timeout_seconds(),
            on_failure=rq_on_failure,
            on_success=rq_on_success,
        )
        payload = dict(db_job.payload or {})
        payload["rq_id"] = rq_job.id
        db_job.payload = payload
        session.commit()
        return {"job_id": db_job.id, "rq_id": rq_job.id}
    finally:
        session.close()
