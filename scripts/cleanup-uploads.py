#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import logging
import os

from db.session import SessionLocal
from pipeline.jobs import run_upload_cleanup
from uploads.storage import get_object_store


def main() -> None:
    parser = ArgumentParser(description="Purge upload sessions that expired without being confirmed")
    parser.add_argument("--older-min", type=int, default=None, help="Grace period after expiry (minutes)")
    parser.add_argument("--enqueue", action="store_true", help="Queue the cleanup for the RQ worker instead")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    if args.enqueue:
        from pipeline.queue import enqueue_upload_cleanup

        result = enqueue_upload_cleanup(args.older_min)
        print(f"[cleanup] queued job {result['job_id']} (rq {result['rq_id']})")
        return

    session = SessionLocal()
    try:
        result = run_upload_cleanup(session, get_object_store(), older_min=args.older_min, source="system")
        session.commit()
        print(f"[cleanup] removed {result['removed']} expired upload session(s)")
    finally:
        session.close()


if __name__ == "__main__":
    main()
