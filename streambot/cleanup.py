from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger("streambot.cleanup")

CLEANUP_JOB_ID = "scratch_cleanup"
CLEANUP_DELAY_SECONDS = 60


class CleanupScheduler:
    """Re-arming one-shot timer for scratch file deletion.

    Every call to ``schedule`` replaces the pending job, so at most one cleanup
    is ever waiting to run.
    """

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self._lock = threading.Lock()

    def schedule(self, callback: Callable[[], object], delay_seconds: float = CLEANUP_DELAY_SECONDS) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        with self._lock:
            if not self._scheduler.running:
                self._scheduler.start()
            self._scheduler.add_job(
                callback,
                "date",
                run_date=run_date,
                id=CLEANUP_JOB_ID,
                replace_existing=True,
            )
        logger.debug("Scratch cleanup scheduled for %s", run_date.isoformat())

    def pending(self) -> bool:
        return self._scheduler.get_job(CLEANUP_JOB_ID) is not None

    def shutdown(self) -> None:
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
