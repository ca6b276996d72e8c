"""
Retry scheduler for failed jobs.

One run:
1. Releases claims abandoned by crashed runs.
2. Selects a batch of due jobs.
3. Claims each job atomically and skips the ones another run got first.
4. Executes the handler for the job type and writes the outcome.

Failures back off exponentially (2^attempts * base, capped). A job that
exhausts its attempts, or whose handler raises JobPermanentFailure, becomes
terminal and raises a critical alert. One job's failure never stops the batch.
"""

import logging
import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.core.exceptions import JobPermanentFailure
from resilience.db.base import utc_now
from resilience.services.alerts import AlertDispatcher, AlertKind
from resilience.services.job_handlers import JobHandlerRegistry, build_default_registry
from resilience.services.job_queue import JobQueue
from resilience.services.policy import RetryPolicy
from resilience.services.system_log import LogCategory, system_log_service

logger = logging.getLogger(__name__)


def compute_backoff(attempt_count: int, base_seconds: int = 60, max_seconds: int = 3600) -> int:
    """Delay before the next attempt once ``attempt_count`` attempts have failed."""
    return min(2 ** attempt_count * base_seconds, max_seconds)


@dataclass
class RetryRunResult:
    processed: int = 0
    succeeded: int = 0
    requeued: int = 0
    failed: int = 0
    skipped: int = 0
    released: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _ClaimedJob:
    """Values read at selection time; ORM rows go stale once the claim commits."""

    id: Any
    job_type: str
    job_name: str
    attempt_count: int
    max_attempts: int
    source: str | None = None

    @classmethod
    def of(cls, job) -> "_ClaimedJob":
        return cls(
            job.id,
            job.job_type,
            job.job_name,
            job.attempt_count,
            job.max_attempts,
            (job.job_metadata or {}).get("source"),
        )


class RetryScheduler:
    def __init__(
        self,
        queue: JobQueue,
        registry: JobHandlerRegistry,
        alerts: AlertDispatcher,
        policy: RetryPolicy | None = None,
    ):
        self.queue = queue
        self.registry = registry
        self.alerts = alerts
        self.policy = policy or RetryPolicy()

    def backoff(self, attempt_count: int) -> int:
        return compute_backoff(attempt_count, self.policy.base_delay_seconds, self.policy.max_delay_seconds)

    async def run(self, db: AsyncSession, now: datetime | None = None) -> RetryRunResult:
        now = now or utc_now()
        result = RetryRunResult()

        await self._release_stale_claims(db, now, result)

        due = await self.queue.due(db, now, self.policy.batch_size)
        snapshot = [_ClaimedJob.of(job) for job in due]
        logger.info("Found %d failed jobs due for retry", len(snapshot))

        for claimed in snapshot:
            try:
                await self._process(db, claimed, now, result)
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error("Store error while processing job %s: %s", claimed.id, e)
                result.errors.append({"job_id": str(claimed.id), "error": str(e)})
            except Exception as e:
                await db.rollback()
                logger.exception("Unexpected error while processing job %s", claimed.id)
                result.errors.append({"job_id": str(claimed.id), "error": str(e) or e.__class__.__name__})

        logger.info(
            "Retry run complete: %d processed, %d succeeded, %d requeued, %d failed, %d skipped",
            result.processed,
            result.succeeded,
            result.requeued,
            result.failed,
            result.skipped,
        )
        return result

    async def _process(self, db: AsyncSession, claimed: _ClaimedJob, now: datetime, result: RetryRunResult) -> None:
        if not await self.queue.claim(db, claimed.id, claimed.attempt_count, now):
            await db.rollback()
            result.skipped += 1
            logger.debug("Job %s already claimed elsewhere, skipping", claimed.id)
            return
        await db.commit()
        result.processed += 1

        logger.info(
            "Retrying job %s (attempt %d/%d)",
            claimed.job_name,
            claimed.attempt_count + 1,
            claimed.max_attempts,
        )

        job = await self.queue.get(db, claimed.id)
        error_message: str | None = None
        error_stack: str | None = None
        try:
            handler = self.registry.get(claimed.job_type)
            succeeded = await handler.execute(db, job)
        except JobPermanentFailure as e:
            await db.rollback()
            await self._fail_permanently(db, claimed, now, result, str(e), traceback.format_exc())
            return
        except Exception as e:
            await db.rollback()
            logger.warning("Job %s raised: %s", claimed.job_name, e)
            succeeded = False
            error_message = str(e) or e.__class__.__name__
            error_stack = traceback.format_exc()
            result.errors.append({"job_id": str(claimed.id), "error": error_message})

        if succeeded:
            if await self.queue.mark_succeeded(db, claimed.id, claimed.attempt_count, now):
                await db.commit()
                result.succeeded += 1
                logger.info("Job %s succeeded", claimed.job_name)
            else:
                await self._lost_ownership(db, claimed, result)
            return

        await self._record_failure(
            db, claimed, now, result, error_message or "Handler reported failure", error_stack
        )

    async def _record_failure(
        self,
        db: AsyncSession,
        claimed: _ClaimedJob,
        now: datetime,
        result: RetryRunResult,
        error_message: str,
        error_stack: str | None,
    ) -> None:
        attempts = claimed.attempt_count + 1
        if attempts < claimed.max_attempts:
            next_retry_at = now + timedelta(seconds=self.backoff(attempts))
            if await self.queue.reschedule(
                db, claimed.id, claimed.attempt_count, next_retry_at, error_message, error_stack
            ):
                await db.commit()
                result.requeued += 1
                logger.info("Job %s will retry at %s", claimed.job_name, next_retry_at.isoformat())
            else:
                await self._lost_ownership(db, claimed, result)
            return

        if await self.queue.mark_failed(db, claimed.id, claimed.attempt_count, now, error_message, error_stack):
            await self._after_terminal(db, claimed, result, error_message)
        else:
            await self._lost_ownership(db, claimed, result)

    async def _fail_permanently(
        self,
        db: AsyncSession,
        claimed: _ClaimedJob,
        now: datetime,
        result: RetryRunResult,
        error_message: str,
        error_stack: str | None,
    ) -> None:
        logger.warning("Job %s cannot succeed: %s", claimed.job_name, error_message)
        result.errors.append({"job_id": str(claimed.id), "error": error_message})
        if await self.queue.mark_failed(
            db, claimed.id, claimed.attempt_count, now, error_message, error_stack, consume_all_attempts=True
        ):
            await self._after_terminal(db, claimed, result, error_message)
        else:
            await self._lost_ownership(db, claimed, result)

    async def _after_terminal(
        self, db: AsyncSession, claimed: _ClaimedJob, result: RetryRunResult, error_message: str
    ) -> None:
        details = {
            "job_id": str(claimed.id),
            "job_name": claimed.job_name,
            "job_type": claimed.job_type,
            "max_attempts": claimed.max_attempts,
            "error": error_message,
        }
        if claimed.source:
            details["source"] = claimed.source
        await system_log_service.log_error(
            db,
            category=LogCategory.JOBS,
            service="retry_scheduler",
            message=f"Job {claimed.job_name} ({claimed.job_type}) permanently failed",
            details=details,
        )
        await db.commit()
        result.failed += 1
        logger.error("Job %s permanently failed after %d attempts", claimed.job_name, claimed.max_attempts)
        await self.alerts.notify(AlertKind.JOB_PERMANENT_FAILURE, details)

    async def _lost_ownership(self, db: AsyncSession, claimed: _ClaimedJob, result: RetryRunResult) -> None:
        await db.rollback()
        logger.warning("Job %s changed while it was being retried, result discarded", claimed.id)
        result.errors.append({"job_id": str(claimed.id), "error": "claim lost before result was recorded"})

    async def _release_stale_claims(self, db: AsyncSession, now: datetime, result: RetryRunResult) -> None:
        """A claim older than the timeout belongs to a run that died; count it as a failed attempt."""
        stale = await self.queue.stale_claims(db, now, self.policy.claim_timeout_seconds)
        for job in stale:
            claimed = _ClaimedJob.of(job)
            logger.warning("Releasing stale claim on job %s", claimed.job_name)
            try:
                await self._record_failure(
                    db, claimed, now, result, "Claim expired before a result was recorded", None
                )
            except Exception as e:
                await db.rollback()
                logger.error("Failed to release stale job %s: %s", claimed.id, e)
                result.errors.append({"job_id": str(claimed.id), "error": str(e)})
                continue
            result.released += 1


def build_retry_scheduler(alerts: AlertDispatcher, registry: JobHandlerRegistry | None = None) -> RetryScheduler:
    policy = RetryPolicy.from_settings()
    return RetryScheduler(
        queue=JobQueue(default_max_attempts=policy.default_max_attempts),
        registry=registry or build_default_registry(),
        alerts=alerts,
        policy=policy,
    )

