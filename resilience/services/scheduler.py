"""
In-process scheduler for the retry and retention jobs.

Uses APScheduler to run:
- the failed job retry batch (every RETRY_INTERVAL_SECONDS)
- the retention sweep (daily at RETENTION_CRON_HOUR)

With multiple uvicorn workers, distributed locking via Redis ensures only
one worker executes each run. The conditional job claim keeps retries
correct even when Redis is down and several workers run at once.
"""

import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.core.config import settings as app_settings
from resilience.core.redis import get_redis
from resilience.services.alerts import AlertDispatcher, AlertKind, build_alert_dispatcher
from resilience.services.policy import RetentionPolicy
from resilience.services.retention import RetentionSweeper
from resilience.services.retry_scheduler import build_retry_scheduler

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()

RETRY_LOCK = "scheduler:retry_failed_jobs"
RETENTION_LOCK = "scheduler:retention"


class SchedulerService:
    """Service for managing scheduled background jobs."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        alerts: AlertDispatcher | None = None,
    ):
        self._session_factory = session_factory
        self._alerts = alerts

    def _get_session_factory(self) -> Callable[[], AsyncSession]:
        """Lazy so importing this module never touches the database engine."""
        if self._session_factory is None:
            from resilience.db.session import async_session_maker

            self._session_factory = async_session_maker
        return self._session_factory

    def _get_alerts(self) -> AlertDispatcher:
        if self._alerts is None:
            self._alerts = build_alert_dispatcher(self._get_session_factory())
        return self._alerts

    def start(self):
        """Register jobs and start the scheduler."""
        if scheduler.running:
            return
        self._schedule_retry_job()
        self._schedule_retention_job()
        scheduler.start()
        logger.info("Scheduler started")

    def stop(self):
        """Stop the scheduler."""
        if scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def _schedule_retry_job(self):
        scheduler.add_job(
            self._run_retry_with_lock,
            trigger=IntervalTrigger(seconds=app_settings.RETRY_INTERVAL_SECONDS),
            id="retry_failed_jobs",
            name="failed job retries",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=app_settings.RETRY_INTERVAL_SECONDS,
        )
        logger.info("Scheduled retry_failed_jobs job (every %ss)", app_settings.RETRY_INTERVAL_SECONDS)

    def _schedule_retention_job(self):
        scheduler.add_job(
            self._run_retention_with_lock,
            trigger=CronTrigger(hour=app_settings.RETENTION_CRON_HOUR, minute=0),
            id="retention_sweep",
            name="retention sweep",
            replace_existing=True,
            misfire_grace_time=3600,  # 1 hour grace period
        )
        logger.info("Scheduled retention_sweep job (daily at %02d:00)", app_settings.RETENTION_CRON_HOUR)

    async def _run_with_lock(self, lock_name: str, timeout: int, job_func: Callable[[], Awaitable[None]]):
        """
        Execute a job function with distributed locking.

        Only one worker will execute the job; others will skip.

        Args:
            lock_name: Unique name for the lock (e.g., "scheduler:retention")
            timeout: Lock timeout in seconds
            job_func: Async function to execute if lock acquired
        """
        try:
            redis = await get_redis()
        except Exception as e:
            logger.warning("Redis unavailable, running job without lock: %s", e)
            await job_func()
            return

        lock = redis.lock(lock_name, timeout=timeout, blocking=False)

        try:
            acquired = await lock.acquire(blocking=False)
            if not acquired:
                logger.debug("Lock %s held by another worker, skipping", lock_name)
                return

            try:
                await job_func()
            finally:
                try:
                    await lock.release()
                except Exception as e:
                    logger.debug("Lock %s already released: %s", lock_name, e)  # may have expired
        except Exception as e:
            logger.error("Error in locked job %s: %s", lock_name, e)

    async def _run_retry_with_lock(self):
        await self._run_with_lock(
            RETRY_LOCK,
            timeout=app_settings.RETRY_CLAIM_TIMEOUT_SECONDS,
            job_func=self._execute_retry,
        )

    async def _run_retention_with_lock(self):
        await self._run_with_lock(RETENTION_LOCK, timeout=1800, job_func=self._execute_retention)

    async def _execute_retry(self):
        """One retry batch (extracted for testability)."""
        retry_scheduler = build_retry_scheduler(self._get_alerts())
        async with self._get_session_factory()() as session:
            result = await retry_scheduler.run(session)
        if result.processed or result.released:
            logger.info("Scheduled retry run: %s", result.to_dict())

    async def _execute_retention(self):
        sweeper = RetentionSweeper(RetentionPolicy.from_settings())
        async with self._get_session_factory()() as session:
            result = await sweeper.run(session)
        logger.info("Scheduled retention sweep removed %d rows", result.total_deleted)
        if not result.ok:
            await self._get_alerts().notify(AlertKind.RETENTION_FAILED, {"errors": result.errors})


scheduler_service = SchedulerService()
