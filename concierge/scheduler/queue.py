"""
Background job queue on APScheduler.

Jobs are zero-argument coroutine functions. `enqueue()` runs one as soon as
possible (or after a delay) and, when retry delays are given, re-enqueues a
failed job after each delay in turn. A ConfigurationError is never retried:
no amount of waiting gives a user a credential. A job stopped by shutdown
(SyncCancelledError) is not retried either.

Uses APScheduler AsyncIOScheduler so jobs run inside the existing asyncio
event loop without spawning threads.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from ..config import settings
from ..exceptions import ConfigurationError, SyncCancelledError

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


def _parse_cron(cron_str: str) -> CronTrigger:
    """Parse a 5-field cron string into an APScheduler CronTrigger."""
    parts = cron_str.split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron string (expected 5 fields): {cron_str!r}")
    minute, hour, day, month, day_of_week = parts
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=day_of_week,
        timezone=settings.scheduler_timezone,
    )


class JobQueue(ABC):
    """Queue contract used by the schedulers; the retry policy lives here."""

    @abstractmethod
    def _submit(self, job_id: str, job: Job, delay_seconds: float) -> None:
        """Run `job` once, no earlier than `delay_seconds` from now."""

    @abstractmethod
    def schedule_recurring(self, job_id: str, job: Job, cron: str) -> None:
        """Run `job` on a 5-field cron schedule."""

    def enqueue(
        self,
        job_id: str,
        job: Job,
        *,
        delay_seconds: float = 0.0,
        retry_delays: Sequence[float] = (),
    ) -> None:
        self._submit(job_id, self._with_retry(job_id, job, list(retry_delays), 1), delay_seconds)

    def _with_retry(self, job_id: str, job: Job, retry_delays: list[float], attempt: int) -> Job:
        async def _run() -> None:
            try:
                await job()
            except ConfigurationError as e:
                logger.error("Job %s aborted, not retrying: %s", job_id, e)
            except SyncCancelledError as e:
                logger.info("Job %s stopped: %s", job_id, e)
            except Exception as e:
                if attempt <= len(retry_delays):
                    delay = retry_delays[attempt - 1]
                    logger.warning(
                        "Job %s failed (attempt %d/%d): %s. Retrying in %.0fs",
                        job_id, attempt, len(retry_delays) + 1, e, delay,
                    )
                    self._submit(
                        f"{job_id}:retry{attempt}",
                        self._with_retry(job_id, job, retry_delays, attempt + 1),
                        delay,
                    )
                else:
                    logger.error(
                        "Job %s failed after %d attempt(s): %s", job_id, attempt, e, exc_info=True
                    )
        return _run


class APSchedulerJobQueue(JobQueue):
    """
    JobQueue backed by an AsyncIOScheduler.

    Usage:
        queue = APSchedulerJobQueue()
        queue.start()
        queue.schedule_recurring("sync_incremental", job, "*/15 * * * *")
        # ... service runs ...
        queue.stop()
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self._scheduler = scheduler or AsyncIOScheduler(timezone=settings.scheduler_timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Job queue started (tz: %s)", settings.scheduler_timezone)

    def pause(self) -> None:
        """Stop starting jobs; jobs already running carry on."""
        if self._scheduler.running:
            self._scheduler.pause()
            logger.info("Job queue paused")

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Job queue stopped")

    def _submit(self, job_id: str, job: Job, delay_seconds: float) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        self._scheduler.add_job(
            job,
            trigger=DateTrigger(run_date=run_date),
            id=job_id,
            replace_existing=True,
            misfire_grace_time=3600,
        )
        logger.debug("Queued job %s (delay %.0fs)", job_id, delay_seconds)

    def schedule_recurring(self, job_id: str, job: Job, cron: str) -> None:
        self._scheduler.add_job(
            job,
            trigger=_parse_cron(cron),
            id=job_id,
            replace_existing=True,
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Scheduled recurring job %s (cron: %s)", job_id, cron)
