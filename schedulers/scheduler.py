# schedulers/scheduler.py
from datetime import datetime
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from services.log_setup import log


def _guarded(job_id: str, job_func: Callable[[], Awaitable]):
    """Log job failures instead of letting them reach the scheduler"""

    async def runner():
        try:
            await job_func()
        except Exception:
            log.exception("Job %s failed; trigger stays armed", job_id)

    return runner


class AttendanceScheduler:
    """APScheduler-based cron and interval jobs in one fixed timezone"""

    def __init__(self, timezone: str = "Asia/Jakarta", misfire_grace_seconds: int = 300):
        self._tz = ZoneInfo(timezone)
        self._misfire_grace = misfire_grace_seconds
        self._scheduler = AsyncIOScheduler(timezone=self._tz)

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def add_cron_job(self, job_id: str, cron: str, job_func: Callable[[], Awaitable]):
        trigger = CronTrigger.from_crontab(cron, timezone=self._tz)
        self._scheduler.add_job(
            _guarded(job_id, job_func),
            trigger=trigger,
            id=job_id,
            name=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self._misfire_grace,
        )
        log.info("Scheduled %s at '%s' (%s)", job_id, cron, self._tz.key)

    def add_interval_job(
        self,
        job_id: str,
        seconds: float,
        job_func: Callable[[], Awaitable],
        run_immediately: bool = False,
    ):
        options = {}
        if run_immediately:
            options["next_run_time"] = datetime.now(self._tz)
        self._scheduler.add_job(
            _guarded(job_id, job_func),
            trigger=IntervalTrigger(seconds=seconds, timezone=self._tz),
            id=job_id,
            name=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **options,
        )

    def get_job(self, job_id: str):
        return self._scheduler.get_job(job_id)

    def start(self):
        """Start firing jobs on the running event loop"""
        self._scheduler.start()

    def stop(self):
        """Stop without waiting for running jobs. No-op if never started"""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
