"""
SyncScheduler — fans sync work out to the job queue, one unit per user.

A unit runs the stages for one user in a fixed order:

  Mail → Calendar → CRM contacts → CRM companies → CRM deals → Vector

with a short pause between stages. Each stage is isolated: a failing stage
is logged and recorded, and the next stage still runs. After the last stage
the unit raises the first Mail or Calendar failure, if any, so the queue
retries the whole unit; CRM and Vector failures are only logged.

Full syncs for many users are staggered so they do not all hit the remote
APIs at once, and each full unit is wrapped in an "all" umbrella run record.

On shutdown the scheduler sets one stop event shared by every run it
starts: in-flight runs end Failed after their current chunk, and the unit
raises SyncCancelledError without running its remaining stages.
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..cache.runs import SyncRunStore
from ..cache.users import UserStore
from ..config import settings
from ..exceptions import ConfigurationError, SyncCancelledError, VectorUnavailableError
from ..models import (
    FULL_UMBRELLA,
    VECTOR_STAGE,
    RunStatus,
    SourceKind,
    SyncMode,
    SyncRunRecord,
)
from ..sync.engine import SyncEngine
from ..vector.projector import VectorProjector
from .queue import JobQueue

logger = logging.getLogger(__name__)

STAGE_ORDER = (
    SourceKind.MAIL,
    SourceKind.CALENDAR,
    SourceKind.CRM_CONTACTS,
    SourceKind.CRM_COMPANIES,
    SourceKind.CRM_DEALS,
)

# Failures of these stages make the queue retry the unit
RETRYABLE_STAGES = frozenset({SourceKind.MAIL.value, SourceKind.CALENDAR.value})


@dataclass
class StageOutcome:
    stage: str
    record: SyncRunRecord | None = None
    error: Exception | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class SyncScheduler:
    def __init__(
        self,
        *,
        engine: SyncEngine,
        projector: VectorProjector,
        run_store: SyncRunStore,
        user_store: UserStore,
        queue: JobQueue,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._projector = projector
        self._runs = run_store
        self._users = user_store
        self._queue = queue
        self._sleep = sleep
        # Set once on shutdown; every sync run checks it after each committed chunk
        self._stop = asyncio.Event()
        self._units: set[asyncio.Task] = set()

    def start(self) -> None:
        """Register the recurring fan-out jobs."""
        self._queue.schedule_recurring(
            "sync_incremental_all", self.trigger_all, settings.incremental_sync_cron
        )
        self._queue.schedule_recurring(
            "sync_full_all", self.trigger_full_all, settings.full_sync_cron
        )

    async def shutdown(self, timeout: float) -> int:
        """
        Ask in-flight units to stop and wait up to `timeout` seconds for them.

        A running sync stops after its current chunk is committed and its run
        ends Failed. Units still running after the timeout are cancelled.
        Returns the number of units that had to be cancelled.
        """
        self._stop.set()
        units = [t for t in self._units if not t.done()]
        if not units:
            return 0
        logger.info("Waiting up to %.0fs for %d sync unit(s) to stop", timeout, len(units))
        _, pending = await asyncio.wait(units, timeout=timeout)
        if pending:
            logger.warning(
                "%d sync unit(s) still running after %.0fs, cancelling", len(pending), timeout
            )
            for task in pending:
                task.cancel()
            await asyncio.wait(pending)
        return len(pending)

    @contextmanager
    def _in_flight(self):
        if self._stop.is_set():
            raise SyncCancelledError("Sync scheduler is shutting down")
        task = asyncio.current_task()
        self._units.add(task)
        try:
            yield
        finally:
            self._units.discard(task)

    # ── Fan-out ───────────────────────────────────────────────────────────────

    def trigger_incremental(self, user_id: int, delay_seconds: float = 0.0) -> None:
        self._queue.enqueue(
            f"sync_incremental_{user_id}",
            lambda: self.run_incremental(user_id),
            delay_seconds=delay_seconds,
            retry_delays=settings.job_retry_delays,
        )

    def trigger_full(self, user_id: int, delay_seconds: float = 0.0) -> None:
        self._queue.enqueue(
            f"sync_full_{user_id}",
            lambda: self.run_full(user_id),
            delay_seconds=delay_seconds,
            retry_delays=settings.job_retry_delays,
        )

    async def trigger_all(self) -> int:
        """Enqueue an incremental unit for every user with a mail/calendar credential."""
        user_ids = await self._users.list_sync_eligible()
        for user_id in user_ids:
            self.trigger_incremental(user_id)
        logger.info("Queued incremental sync for %d user(s)", len(user_ids))
        return len(user_ids)

    async def trigger_full_all(self) -> int:
        user_ids = await self._users.list_sync_eligible()
        stagger = settings.full_sync_stagger_minutes * 60
        for index, user_id in enumerate(user_ids):
            self.trigger_full(user_id, delay_seconds=index * stagger)
        logger.info("Queued full sync for %d user(s), %d min apart", len(user_ids), settings.full_sync_stagger_minutes)
        return len(user_ids)

    # ── Units ─────────────────────────────────────────────────────────────────

    async def run_incremental(self, user_id: int) -> list[StageOutcome]:
        with self._in_flight():
            outcomes = await self._run_stages(
                user_id, SyncMode.INCREMENTAL, settings.incremental_step_delay_seconds
            )
        self._raise_for_retry(user_id, outcomes)
        return outcomes

    async def run_full(self, user_id: int) -> list[StageOutcome]:
        with self._in_flight():
            return await self._run_full(user_id)

    async def _run_full(self, user_id: int) -> list[StageOutcome]:
        umbrella = await self._runs.start(user_id, FULL_UMBRELLA, SyncMode.FULL)
        try:
            outcomes = await self._run_stages(
                user_id, SyncMode.FULL, settings.full_step_delay_seconds
            )
        except BaseException as e:
            await self._runs.finish(umbrella, RunStatus.FAILED, str(e) or type(e).__name__)
            raise

        for o in outcomes:
            if o.record is not None:
                umbrella.items_processed += o.record.items_processed
                umbrella.items_added += o.record.items_added
                umbrella.items_updated += o.record.items_updated
                umbrella.items_failed += o.record.items_failed
        failed = [o for o in outcomes if not o.ok]
        if failed:
            summary = "; ".join(f"{o.stage}: {o.error}" for o in failed)
            await self._runs.finish(umbrella, RunStatus.FAILED, summary)
        else:
            await self._runs.finish(umbrella, RunStatus.SUCCESS)
        logger.info(
            "Full sync for user %d finished: processed=%d added=%d updated=%d failed stages=%d",
            user_id, umbrella.items_processed, umbrella.items_added,
            umbrella.items_updated, len(failed),
        )
        self._raise_for_retry(user_id, outcomes)
        return outcomes

    async def _run_stages(
        self, user_id: int, mode: SyncMode, step_delay: float
    ) -> list[StageOutcome]:
        user = await self._users.get(user_id)
        if user is None:
            raise ConfigurationError(f"Unknown user {user_id}")

        outcomes: list[StageOutcome] = []
        for index, kind in enumerate(STAGE_ORDER):
            if kind.is_crm and not user.has_hubspot:
                logger.debug("User %d has no CRM connection, skipping %s", user_id, kind.value)
                outcomes.append(StageOutcome(kind.value, skipped=True))
                continue
            if index:
                await self._sleep(step_delay)
            self._check_stop(user_id, kind.value)
            try:
                record = await self._engine.run(user_id, kind, mode, stop_event=self._stop)
            except (ConfigurationError, SyncCancelledError):
                raise
            except Exception as e:
                logger.error(
                    "%s sync (%s) failed for user %d: %s", kind.value, mode.value, user_id, e,
                    exc_info=True,
                )
                outcomes.append(StageOutcome(kind.value, error=e))
                continue
            outcomes.append(StageOutcome(kind.value, record=record))

        await self._sleep(step_delay)
        self._check_stop(user_id, VECTOR_STAGE)
        outcomes.append(await self._project(user_id, mode))
        return outcomes

    def _check_stop(self, user_id: int, stage: str) -> None:
        if self._stop.is_set():
            raise SyncCancelledError(f"Sync for user {user_id} stopped before {stage}")

    async def _project(self, user_id: int, mode: SyncMode) -> StageOutcome:
        record = await self._runs.start(user_id, VECTOR_STAGE, mode)
        try:
            result = await self._projector.project_user(user_id)
        except VectorUnavailableError as e:
            logger.warning("Vector stage skipped for user %d: %s", user_id, e)
            await self._runs.finish(record, RunStatus.FAILED, str(e))
            return StageOutcome(VECTOR_STAGE, record=record, error=e)
        except Exception as e:
            logger.error("Vector stage failed for user %d: %s", user_id, e, exc_info=True)
            await self._runs.finish(record, RunStatus.FAILED, str(e))
            return StageOutcome(VECTOR_STAGE, record=record, error=e)

        record.items_processed = result.projected + result.skipped + result.failed
        record.items_added = result.projected
        record.items_failed = result.failed
        await self._runs.finish(record, RunStatus.SUCCESS)
        return StageOutcome(VECTOR_STAGE, record=record)

    @staticmethod
    def _raise_for_retry(user_id: int, outcomes: list[StageOutcome]) -> None:
        for o in outcomes:
            if o.error is not None and o.stage in RETRYABLE_STAGES:
                logger.warning("User %d: %s stage failed, unit will be retried", user_id, o.stage)
                raise o.error
