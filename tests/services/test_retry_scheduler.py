"""Tests for the failed job retry scheduler."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from resilience.core.exceptions import JobPermanentFailure
from resilience.db.base import Base
from resilience.models.failed_job import JobStatus, JobType
from resilience.models.system_log import SystemLog
from resilience.services.alerts import AlertDispatcher, AlertKind
from resilience.services.job_handlers import JobHandlerRegistry
from resilience.services.job_queue import JobQueue
from resilience.services.policy import RetryPolicy
from resilience.services.retry_scheduler import RetryScheduler, compute_backoff


class TestComputeBackoff:
    def test_doubles_per_attempt(self):
        assert compute_backoff(0) == 60
        assert compute_backoff(1) == 120
        assert compute_backoff(3) == 480

    def test_capped_at_one_hour(self):
        assert compute_backoff(6) == 3600
        assert compute_backoff(20) == 3600

    def test_custom_base_and_cap(self):
        assert compute_backoff(2, base_seconds=10, max_seconds=30) == 30
        assert compute_backoff(1, base_seconds=10, max_seconds=30) == 20


class _BrokenAlerts(AlertDispatcher):
    async def notify(self, kind, payload):
        raise RuntimeError("alert channel down")


def _scheduler(alerts, *handlers, **policy) -> RetryScheduler:
    return RetryScheduler(
        JobQueue(),
        JobHandlerRegistry(list(handlers)),
        alerts,
        RetryPolicy(**policy),
    )


class TestRun:
    @pytest.mark.asyncio
    async def test_successful_retry(self, db_session, alerts, handler_factory, now):
        handler = handler_factory(JobType.EDGE_FUNCTION, True)
        queue = JobQueue()
        job = await queue.enqueue(db_session, JobType.EDGE_FUNCTION, "stock-sync", {"function_name": "sync"}, now=now)
        await db_session.commit()

        result = await _scheduler(alerts, handler).run(db_session, now=now)

        assert (result.processed, result.succeeded, result.requeued, result.failed) == (1, 1, 0, 0)
        assert len(handler.calls) == 1
        job = await queue.get(db_session, job.id)
        assert job.status == JobStatus.SUCCEEDED.value
        assert job.completed_at == now
        assert job.attempt_count == 0
        assert alerts.sent == []

    @pytest.mark.asyncio
    async def test_failure_is_rescheduled_with_backoff(self, db_session, alerts, handler_factory, now):
        handler = handler_factory(JobType.EMAIL, False)
        queue = JobQueue()
        job = await queue.enqueue(db_session, JobType.EMAIL, "receipt", {"to": "a@example.com"}, now=now)
        await db_session.commit()

        result = await _scheduler(alerts, handler).run(db_session, now=now)

        assert result.requeued == 1
        job = await queue.get(db_session, job.id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempt_count == 1
        assert job.next_retry_at == now + timedelta(seconds=120)
        assert job.error_message == "Handler reported failure"

        # Not due again until the backoff has passed
        result = await _scheduler(alerts, handler).run(db_session, now=now + timedelta(seconds=60))
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_exception_is_recorded_with_stack(self, db_session, alerts, handler_factory, now):
        handler = handler_factory(JobType.EMAIL, RuntimeError("smtp timeout"))
        queue = JobQueue()
        job = await queue.enqueue(db_session, JobType.EMAIL, "receipt", {"to": "a@example.com"}, now=now)
        await db_session.commit()

        result = await _scheduler(alerts, handler).run(db_session, now=now)

        assert result.requeued == 1
        assert result.errors[0]["error"] == "smtp timeout"
        job = await queue.get(db_session, job.id)
        assert job.error_message == "smtp timeout"
        assert "RuntimeError" in job.error_stack

    @pytest.mark.asyncio
    async def test_exhausted_job_fails_and_is_never_selected_again(self, db_session, alerts, handler_factory, now):
        handler = handler_factory(JobType.EMAIL, False)
        queue = JobQueue()
        job = await queue.enqueue(db_session, JobType.EMAIL, "receipt", {"to": "a@example.com"}, max_attempts=2, now=now)
        await db_session.commit()
        scheduler = _scheduler(alerts, handler)

        await scheduler.run(db_session, now=now)
        result = await scheduler.run(db_session, now=now + timedelta(seconds=120))

        assert result.failed == 1
        job = await queue.get(db_session, job.id)
        assert job.status == JobStatus.FAILED.value
        assert job.attempt_count == 2
        assert job.completed_at == now + timedelta(seconds=120)

        assert alerts.kinds() == [AlertKind.JOB_PERMANENT_FAILURE]
        assert alerts.sent[0][1]["job_name"] == "receipt"

        logs = (await db_session.execute(select(SystemLog))).scalars().all()
        assert len(logs) == 1
        assert logs[0].level == "ERROR"
        assert logs[0].details["job_id"] == str(job.id)

        result = await scheduler.run(db_session, now=now + timedelta(days=1))
        assert result.processed == 0
        assert len(handler.calls) == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_skips_remaining_attempts(self, db_session, alerts, handler_factory, now):
        handler = handler_factory(JobType.EDGE_FUNCTION, JobPermanentFailure("payload.function_name is required"))
        queue = JobQueue()
        job = await queue.enqueue(db_session, JobType.EDGE_FUNCTION, "broken", {}, now=now)
        await db_session.commit()

        result = await _scheduler(alerts, handler).run(db_session, now=now)

        assert result.failed == 1
        job = await queue.get(db_session, job.id)
        assert job.status == JobStatus.FAILED.value
        assert job.attempt_count == job.max_attempts
        assert job.error_message == "payload.function_name is required"
        assert alerts.kinds() == [AlertKind.JOB_PERMANENT_FAILURE]

    @pytest.mark.asyncio
    async def test_unknown_job_type_fails_permanently(self, db_session, alerts, handler_factory, now):
        queue = JobQueue()
        job = await queue.enqueue(db_session, JobType.NOTIFICATION, "orphan", {"title": "t", "message": "m"}, now=now)
        await db_session.commit()

        result = await _scheduler(alerts, handler_factory(JobType.EMAIL, True)).run(db_session, now=now)

        assert result.failed == 1
        job = await queue.get(db_session, job.id)
        assert job.status == JobStatus.FAILED.value
        assert "notification" in job.error_message

    @pytest.mark.asyncio
    async def test_one_bad_job_does_not_stop_the_batch(self, db_session, alerts, handler_factory, now):
        broken = handler_factory(JobType.EMAIL, ValueError("bad template"))
        working = handler_factory(JobType.EDGE_FUNCTION, True)
        queue = JobQueue()
        await queue.enqueue(db_session, JobType.EMAIL, "first", {"to": "a@example.com"}, now=now - timedelta(seconds=2))
        second = await queue.enqueue(db_session, JobType.EDGE_FUNCTION, "second", {"function_name": "f"}, now=now)
        await db_session.commit()

        result = await _scheduler(alerts, broken, working).run(db_session, now=now)

        assert result.processed == 2
        assert result.requeued == 1
        assert result.succeeded == 1
        assert (await queue.get(db_session, second.id)).status == JobStatus.SUCCEEDED.value

    @pytest.mark.asyncio
    async def test_alert_failure_does_not_stop_the_batch(self, db_session, handler_factory, now):
        handler = handler_factory(JobType.EMAIL, False)
        queue = JobQueue()
        first = await queue.enqueue(
            db_session, JobType.EMAIL, "first", {"to": "a@example.com"}, max_attempts=1, now=now - timedelta(seconds=2)
        )
        second = await queue.enqueue(db_session, JobType.EMAIL, "second", {"to": "b@example.com"}, max_attempts=1, now=now)
        await db_session.commit()

        result = await _scheduler(_BrokenAlerts(), handler).run(db_session, now=now)

        assert len(handler.calls) == 2
        assert result.failed == 2
        assert len(result.errors) == 2
        assert (await queue.get(db_session, first.id)).status == JobStatus.FAILED.value
        assert (await queue.get(db_session, second.id)).status == JobStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_permanent_failure_alert_carries_job_source(self, db_session, alerts, handler_factory, now):
        handler = handler_factory(JobType.API_CALL, JobPermanentFailure("Target host is not public"))
        queue = JobQueue()
        await queue.enqueue(
            db_session,
            JobType.API_CALL,
            "alert:ip_auto_blocked",
            {"url": "http://10.0.0.5/hook"},
            metadata={"source": "alerts"},
            now=now,
        )
        await db_session.commit()

        await _scheduler(alerts, handler).run(db_session, now=now)

        assert alerts.kinds() == [AlertKind.JOB_PERMANENT_FAILURE]
        assert alerts.sent[0][1]["source"] == "alerts"

    @pytest.mark.asyncio
    async def test_batch_size_limits_work_per_run(self, db_session, alerts, handler_factory, now):
        handler = handler_factory(JobType.EMAIL, True)
        queue = JobQueue()
        for i in range(5):
            await queue.enqueue(db_session, JobType.EMAIL, f"job-{i}", {"to": "a@example.com"}, now=now)
        await db_session.commit()

        result = await _scheduler(alerts, handler, batch_size=3).run(db_session, now=now)

        assert result.processed == 3
        stats = await queue.stats(db_session)
        assert stats["succeeded"] == 3
        assert stats["pending"] == 2

    @pytest.mark.asyncio
    async def test_stale_claim_is_released_as_failed_attempt(self, db_session, alerts, handler_factory, now):
        handler = handler_factory(JobType.EMAIL, True)
        queue = JobQueue()
        crashed_at = now - timedelta(hours=1)
        job = await queue.enqueue(db_session, JobType.EMAIL, "receipt", {"to": "a@example.com"}, now=crashed_at)
        await queue.claim(db_session, job.id, 0, crashed_at)
        await db_session.commit()

        result = await _scheduler(alerts, handler, claim_timeout_seconds=900).run(db_session, now=now)

        assert result.released == 1
        assert result.processed == 0
        job = await queue.get(db_session, job.id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempt_count == 1
        assert job.next_retry_at == now + timedelta(seconds=120)
        assert handler.calls == []


class TestConcurrentRuns:
    @pytest.mark.asyncio
    async def test_job_runs_once_when_two_runs_share_a_snapshot(self, tmp_path, alerts, handler_factory, now):
        """A run that selected a job after another run processed it must not execute it again."""
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        handler = handler_factory(JobType.EDGE_FUNCTION, True)
        queue = JobQueue()
        scheduler = _scheduler(alerts, handler)

        try:
            async with factory() as setup:
                await queue.enqueue(setup, JobType.EDGE_FUNCTION, "stock-sync", {"function_name": "sync"}, now=now)
                await setup.commit()

            async with factory() as run_a, factory() as run_b:
                snapshot = [(job.id, job.attempt_count) for job in await queue.due(run_a, now, limit=10)]
                await run_a.rollback()

                result_b = await scheduler.run(run_b, now=now)
                assert result_b.succeeded == 1

                job_id, attempt_count = snapshot[0]
                assert await queue.claim(run_a, job_id, attempt_count, now) is False
                await run_a.rollback()

                result_a = await scheduler.run(run_a, now=now)
                assert result_a.processed == 0
        finally:
            await engine.dispose()

        assert len(handler.calls) == 1
