from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from uuid import UUID

from rq.job import Job as RQJob

from db.models import AuditEvent, Job
from db.session import SessionLocal
from uploads.broker import cleanup_expired_sessions
from uploads.storage import ObjectStore, get_object_store

logger = logging.getLogger(__name__)


def _grace_minutes() -> int:
    return int(os.getenv("UPLOAD_CLEANUP_GRACE_MIN", "60"))


def _update_job(
    session,
    job_id: UUID | str,
    status: str,
    result: dict | None = None,
    error: str | None = None,
) -> None:
    job = session.get(Job, UUID(str(job_id)))
    if job is None:
        raise RuntimeError(f"Job not found: {job_id}")
    now = datetime.now(timezone.utc)
    job.status = status
    if status == "running":
        job.started_at = now
    if status in {"succeeded", "failed"}:
        job.finished_at = now
    if result is not None:
        job.result = result
    if error is not None:
        job.error_payload = {"message": error}
    job.updated_at = now
    session.add(job)


def rq_on_failure(job: RQJob, connection, exc_type, exc_value, traceback) -> None:  # type: ignore[no-untyped-def]
    session = SessionLocal()
    try:
        job_id = job.args[0] if job.args else None
        if job_id is None:
            return
        _update_job(session, job_id, "failed", error=str(exc_value))
        session.commit()
    finally:
        session.close()


def rq_on_success(job: RQJob, connection, result, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
    session = SessionLocal()
    try:
        job_id = job.args[0] if job.args else None
        if job_id is None:
            return
        _update_job(session, job_id, "succeeded", result=result if isinstance(result, dict) else None)
        session.commit()
    finally:
        session.close()


def run_upload_cleanup(
    session,
    store: ObjectStore,
    *,
    older_min: int | None = None,
    source: str = "worker",
) -> dict:
    """Purge unconsumed upload sessions that expired more than ``older_min`` ago."""
    grace = timedelta(minutes=_grace_minutes() if older_min is None else older_min)
    now = datetime.now(timezone.utc)
    removed = cleanup_expired_sessions(session, store, now=now, grace=grace)
    session.add(
        AuditEvent(
            event_type="upload_cleanup",
            source=source,
            occurred_at=now,
            payload={"removed": removed, "grace_min": int(grace.total_seconds() // 60)},
        )
    )
    return {"removed": removed}


def cleanup_expired_uploads_job(job_id: str | None, older_min: int | None = None) -> dict:
    session = SessionLocal()
    try:
        if job_id is not None:
            _update_job(session, job_id, "running")
            session.commit()
        result = run_upload_cleanup(session, get_object_store(), older_min=older_min)
        session.commit()
        logger.info("upload cleanup job %s removed %d session(s)", job_id, result["removed"])
        return result
    finally:
        session.close()
