"""
System log service for operational records that operators review later.

Usage:
    from resilience.services.system_log import system_log_service, LogCategory

    await system_log_service.log_error(
        db,
        category=LogCategory.JOBS,
        service="retry_scheduler",
        message="Job permanently failed: send-welcome-email",
        details={"job_id": "...", "error": "..."}
    )
"""

import logging
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from resilience.models.system_log import SystemLog

logger = logging.getLogger(__name__)


class LogCategory(str, Enum):
    JOBS = "jobs"
    RETENTION = "retention"


class LogLevel(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


class SystemLogService:
    """Writes rows to system_logs in the caller's transaction."""

    async def log_error(
        self,
        db: AsyncSession,
        category: LogCategory,
        service: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> SystemLog:
        return await self.log(db, LogLevel.ERROR, category, service, message, details)

    async def log(
        self,
        db: AsyncSession,
        level: LogLevel,
        category: LogCategory,
        service: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> SystemLog:
        log = SystemLog(
            level=level.value,
            category=category.value,
            service=service,
            message=message,
            details=details if details else None,
        )
        db.add(log)
        await db.flush()
        logger.debug("System log %s/%s from %s: %s", level.value, category.value, service, message)
        return log


system_log_service = SystemLogService()
