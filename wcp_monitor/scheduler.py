"""APScheduler wrapper for periodic cycles."""

from __future__ import annotations

import datetime as _dt
import logging
import os
import signal
from typing import Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

logger = logging.getLogger(__name__)


def _guarded(job: Callable[[], object]) -> Callable[[], None]:
    def run() -> None:
        try:
            job()
        except Exception:
            logger.exception("Unexpected error during scheduled cycle")
    return run


def build_scheduler(job: Callable[[], object], interval_seconds: int) -> BlockingScheduler:
    """One interval job, first run immediately, never two cycles at once.

    A tick that fires while a cycle is still running is skipped.
    """
    scheduler = BlockingScheduler(executors={"default": ThreadPoolExecutor(1)})
    scheduler.add_job(
        _guarded(job),
        "interval",
        seconds=interval_seconds,
        id="new_product_check",
        name="New product check",
        max_instances=1,
        coalesce=True,
        next_run_time=_dt.datetime.now(),
    )
    return scheduler


def stop(scheduler: BaseScheduler) -> None:
    """Stop scheduling and end the process, abandoning any in-flight cycle.

    The executor's worker thread is joined at interpreter exit, so a plain
    sys.exit() would wait for the running cycle; os._exit() does not.
    """
    logger.info("Shutting down scheduler...")
    scheduler.shutdown(wait=False)
    logging.shutdown()
    os._exit(0)


def run_scheduler(job: Callable[[], object], interval_seconds: int) -> None:
    """Start the blocking scheduler. SIGINT/SIGTERM exit without waiting for a running cycle."""
    scheduler = build_scheduler(job, interval_seconds)

    def shutdown(signum, frame):
        stop(scheduler)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    logger.info(
        "Scheduler started. Checking every %d seconds. Press Ctrl+C to stop.",
        interval_seconds,
    )
    scheduler.start()
