#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import logging
import os

from rq import SimpleWorker, Worker

from db.session import get_storage
from pipeline.queue import get_queue


def main() -> None:
    parser = ArgumentParser(description="Start the content processing worker")
    parser.add_argument("--queue", default=None, help="Queue name (defaults to PROCESSING_QUEUE)")
    parser.add_argument("--burst", action="store_true", help="Process queued jobs and exit")
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    storage = get_storage()
    if hasattr(os, "register_at_fork"):
        os.register_at_fork(after_in_child=lambda: storage.dispose())

    queue = get_queue(args.queue)
    worker_cls = SimpleWorker if os.getenv("RQ_SIMPLE_WORKER", "1") == "1" else Worker
    worker = worker_cls([queue], connection=queue.connection)
    print(f"[worker] listening on queue={queue.name} burst={args.burst}")
    worker.work(with_scheduler=False, burst=args.burst)


if __name__ == "__main__":
    main()
