"""
Durable queue of failed background operations.

Ownership of a job during a scheduler run comes from a conditional UPDATE:
a claim only succeeds if the row is still pending with the attempt count the
caller saw. Every result write is guarded by ``status='retrying'`` and the
claimed attempt count, so a stale writer can never overwrite a newer outcome.
Nothing here commits; callers own the transaction.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.core.exceptions import InvalidJobStateError
from resilience.db.base import utc_now
from resilience.models.failed_job import FailedJob, JobStatus, JobType

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000
MAX_STACK_LENGTH = 10000


class JobQueue:
    def __init__(self, default_max_attempts: int = 5):
        self.default_max_attempts = default_max_attempts

    async def enqueue(
        self,
        db: AsyncSession,
        job_type: JobType | str,
        job_name: str,
        payload: dict[str, Any],
        max_attempts: int | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> FailedJob:
        """Add a job that is due immediately."""
        job_type = JobType(job_type)
        max_attempts = max_attempts or self.default_max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        now = now or utc_now()
        job = FailedJob(
            job_type=job_type.value,
            job_name=job_name,
            payload=payload,
            job_metadata=metadata,
            status=JobStatus.PENDING.value,
            attempt_count=0,
            max_attempts=max_attempts,
            next_retry_at=now,
            created_at=now,
        )
        db.add(job)
        await db.flush()
        logger.info("Enqueued %s job %s (%s)", job_type.value, job_name, job.id)
        return job

    async def due(self, db: AsyncSession, now: datetime, limit: int) -> list[FailedJob]:
        """Pending jobs whose retry time has passed, oldest first."""
        result = await db.execute(
            select(FailedJob)
            .where(
                FailedJob.status == JobStatus.PENDING.value,
                FailedJob.next_retry_at <= now,
                FailedJob.attempt_count < FailedJob.max_attempts,
            )
            .order_by(FailedJob.next_retry_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def claim(self, db: AsyncSession, job_id: uuid.UUID, attempt_count: int, now: datetime) -> bool:
        """
        Move a job from pending to retrying if nobody else has.

        ``attempt_count`` is the value the caller read when it selected the
        job; a concurrent run that already processed the job will have
        changed it or the status.
        """
        result = await db.execute(
            update(FailedJob)
            .where(
                FailedJob.id == job_id,
                FailedJob.status == JobStatus.PENDING.value,
                FailedJob.attempt_count == attempt_count,
                FailedJob.next_retry_at <= now,
            )
            .values(status=JobStatus.RETRYING.value, last_attempted_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_succeeded(
        self, db: AsyncSession, job_id: uuid.UUID, attempt_count: int, now: datetime
    ) -> bool:
        result = await db.execute(
            update(FailedJob)
            .where(*self._owned(job_id, attempt_count))
            .values(status=JobStatus.SUCCEEDED.value, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def reschedule(
        self,
        db: AsyncSession,
        job_id: uuid.UUID,
        attempt_count: int,
        next_retry_at: datetime,
        error_message: str | None = None,
        error_stack: str | None = None,
    ) -> bool:
        """Record a failed attempt and put the job back to pending."""
        result = await db.execute(
            update(FailedJob)
            .where(*self._owned(job_id, attempt_count))
            .values(
                status=JobStatus.PENDING.value,
                attempt_count=attempt_count + 1,
                next_retry_at=next_retry_at,
                error_message=_truncate(error_message, MAX_ERROR_LENGTH),
                error_stack=_truncate(error_stack, MAX_STACK_LENGTH),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_failed(
        self,
        db: AsyncSession,
        job_id: uuid.UUID,
        attempt_count: int,
        now: datetime,
        error_message: str | None = None,
        error_stack: str | None = None,
        consume_all_attempts: bool = False,
    ) -> bool:
        """
        Record a failed attempt and make the job terminal.

        ``consume_all_attempts`` is used for permanent failures so the row
        shows that no attempts remain.
        """
        values: dict[str, Any] = {
            "status": JobStatus.FAILED.value,
            "attempt_count": FailedJob.max_attempts if consume_all_attempts else attempt_count + 1,
            "completed_at": now,
            "error_message": _truncate(error_message, MAX_ERROR_LENGTH),
            "error_stack": _truncate(error_stack, MAX_STACK_LENGTH),
        }
        result = await db.execute(
            update(FailedJob)
            .where(*self._owned(job_id, attempt_count))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def stale_claims(self, db: AsyncSession, now: datetime, timeout_seconds: int) -> list[FailedJob]:
        """Jobs left in ``retrying`` by a run that never wrote a result."""
        cutoff = now - timedelta(seconds=timeout_seconds)
        result = await db.execute(
            select(FailedJob).where(
                FailedJob.status == JobStatus.RETRYING.value,
                FailedJob.last_attempted_at < cutoff,
            )
        )
        return list(result.scalars().all())

    async def get(self, db: AsyncSession, job_id: uuid.UUID) -> FailedJob | None:
        result = await db.execute(
            select(FailedJob).where(FailedJob.id == job_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        db: AsyncSession,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[FailedJob], int]:
        """List jobs newest first, with the total for pagination."""
        query = select(FailedJob)
        if status:
            query = query.where(FailedJob.status == status)
        if job_type:
            query = query.where(FailedJob.job_type == job_type)

        total_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = total_result.scalar() or 0

        result = await db.execute(
            query.order_by(FailedJob.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total

    async def stats(self, db: AsyncSession) -> dict[str, int]:
        """Job counts per status."""
        result = await db.execute(
            select(FailedJob.status, func.count()).group_by(FailedJob.status)
        )
        counts = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            counts[status] = count
        counts["total"] = sum(counts.values())
        return counts

    async def requeue(self, db: AsyncSession, job_id: uuid.UUID, now: datetime | None = None) -> FailedJob:
        """
        Manually retry a permanently failed job.

        The terminal row stays untouched; a fresh pending job is created that
        points back at it through ``metadata.requeued_from``.
        """
        original = await self.get(db, job_id)
        if original is None:
            raise LookupError(f"Job {job_id} not found")
        if original.status != JobStatus.FAILED.value:
            raise InvalidJobStateError(job_id, original.status, JobStatus.FAILED.value)

        metadata = dict(original.job_metadata or {})
        metadata["requeued_from"] = str(original.id)
        return await self.enqueue(
            db,
            job_type=original.job_type,
            job_name=original.job_name,
            payload=dict(original.payload or {}),
            max_attempts=original.max_attempts,
            metadata=metadata,
            now=now,
        )

    @staticmethod
    def _owned(job_id: uuid.UUID, attempt_count: int) -> tuple:
        return (
            FailedJob.id == job_id,
            FailedJob.status == JobStatus.RETRYING.value,
            FailedJob.attempt_count == attempt_count,
        )


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None or len(value) <= limit:
        return value
    return value[:limit]
