"""
Retention sweep.

Deletes aged rows table by table. Each table is its own transaction, so a
failure on one is logged and the sweep moves on. A summary row goes to
system_logs at the end, at ERROR level when any step failed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy import and_, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.db.base import utc_now
from resilience.models.auth_session import AuthSession
from resilience.models.failed_job import FailedJob, JobStatus
from resilience.models.notification import Notification
from resilience.models.system_log import SystemLog
from resilience.services.blocklist import AutoBlocklist
from resilience.services.policy import RetentionPolicy
from resilience.services.rate_limit import cleanup_old_attempts
from resilience.services.system_log import LogCategory, LogLevel, system_log_service

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    deleted: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted": dict(self.deleted),
            "total_deleted": self.total_deleted,
            "errors": dict(self.errors),
        }


class RetentionSweeper:
    def __init__(self, policy: RetentionPolicy | None = None):
        self.policy = policy or RetentionPolicy()

    def _steps(self) -> list[tuple[str, Callable[[AsyncSession, datetime], Awaitable[int]]]]:
        return [
            ("login_attempts", self._login_attempts),
            ("blocked_ips", self._blocked_ips),
            ("notifications", self._notifications),
            ("system_logs", self._system_logs),
            ("auth_sessions", self._auth_sessions),
            ("failed_jobs", self._succeeded_jobs),
        ]

    async def run(self, db: AsyncSession, now: datetime | None = None) -> SweepResult:
        now = now or utc_now()
        result = SweepResult()
        logger.info("Starting retention sweep")

        for table, step in self._steps():
            try:
                count = await step(db, now)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error("Retention sweep failed for %s: %s", table, e)
                result.errors[table] = str(e)
                continue
            result.deleted[table] = count
            logger.info("Deleted %d rows from %s", count, table)

        await self._write_summary(db, result)
        return result

    async def _write_summary(self, db: AsyncSession, result: SweepResult) -> None:
        level = LogLevel.INFO if result.ok else LogLevel.ERROR
        message = f"Retention sweep completed: {result.total_deleted} rows removed"
        if not result.ok:
            message += f" ({len(result.errors)} tables failed)"
        try:
            await system_log_service.log(
                db, level, LogCategory.RETENTION, "retention_sweeper", message, result.to_dict()
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Failed to write retention summary: %s", e)

    async def _login_attempts(self, db: AsyncSession, now: datetime) -> int:
        return await cleanup_old_attempts(db, now - timedelta(days=self.policy.login_attempts_days))

    async def _blocked_ips(self, db: AsyncSession, now: datetime) -> int:
        return await AutoBlocklist().purge_expired(db, now)

    async def _notifications(self, db: AsyncSession, now: datetime) -> int:
        cutoff = now - timedelta(days=self.policy.notifications_days)
        result = await db.execute(
            delete(Notification).where(
                Notification.created_at < cutoff,
                Notification.status.in_(self.policy.notification_statuses),
            )
        )
        return result.rowcount

    async def _system_logs(self, db: AsyncSession, now: datetime) -> int:
        cutoff = now - timedelta(days=self.policy.system_logs_days)
        result = await db.execute(
            delete(SystemLog).where(
                SystemLog.timestamp < cutoff,
                SystemLog.level != LogLevel.ERROR.value,
            )
        )
        return result.rowcount

    async def _auth_sessions(self, db: AsyncSession, now: datetime) -> int:
        result = await db.execute(delete(AuthSession).where(AuthSession.expires_at < now))
        return result.rowcount

    async def _succeeded_jobs(self, db: AsyncSession, now: datetime) -> int:
        # Terminal failures stay for manual review
        cutoff = now - timedelta(days=self.policy.succeeded_jobs_days)
        result = await db.execute(
            delete(FailedJob).where(
                and_(
                    FailedJob.status == JobStatus.SUCCEEDED.value,
                    FailedJob.completed_at < cutoff,
                )
            )
        )
        return result.rowcount
