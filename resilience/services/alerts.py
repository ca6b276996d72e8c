"""
Operator alerting.

``notify`` is fire-and-forget: delivery problems are logged and, for the
webhook dispatcher, parked in the failed-job queue as an ``api_call`` job so
the retry scheduler delivers the alert later. Callers never see an exception.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.core.config import settings
from resilience.models.failed_job import JobType
from resilience.services.job_queue import JobQueue

logger = logging.getLogger(__name__)


class AlertKind:
    LOGIN_FAILURE_MILESTONE = "login_failure_milestone"
    IP_AUTO_BLOCKED = "ip_auto_blocked"
    JOB_PERMANENT_FAILURE = "job_permanent_failure"
    RETENTION_FAILED = "retention_failed"


CRITICAL_KINDS = {AlertKind.JOB_PERMANENT_FAILURE, AlertKind.RETENTION_FAILED}

# metadata.source of jobs that redeliver an undelivered alert
ALERT_JOB_SOURCE = "alerts"


class AlertDispatcher:
    """Default dispatcher: writes alerts to the application log only."""

    async def notify(self, kind: str, payload: dict[str, Any]) -> None:
        level = logging.CRITICAL if kind in CRITICAL_KINDS else logging.WARNING
        logger.log(level, "Alert %s: %s", kind, payload)


class WebhookAlertDispatcher(AlertDispatcher):
    """POSTs alerts as JSON to a webhook, queueing failed deliveries for retry."""

    def __init__(
        self,
        url: str,
        session_factory: Callable[[], AsyncSession],
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        queue: JobQueue | None = None,
    ):
        self.url = url
        self.session_factory = session_factory
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport
        self.queue = queue or JobQueue(default_max_attempts=settings.RETRY_DEFAULT_MAX_ATTEMPTS)

    async def notify(self, kind: str, payload: dict[str, Any]) -> None:
        await super().notify(kind, payload)
        body = {
            "type": "alert",
            "kind": kind,
            "severity": "critical" if kind in CRITICAL_KINDS else "warning",
            "timestamp": datetime.now(UTC).isoformat(),
            **payload,
        }

        success, error = await self._send(body)
        if success:
            return

        if payload.get("source") == ALERT_JOB_SOURCE:
            # Alerts about alert-delivery jobs are never queued again
            logger.error("Alert webhook still failing (%s), not queueing %s about an alert job", error, kind)
            return

        logger.warning("Alert webhook delivery failed (%s), queueing for retry", error)
        try:
            async with self.session_factory() as session:
                await self.queue.enqueue(
                    session,
                    job_type=JobType.API_CALL,
                    job_name=f"alert:{kind}",
                    payload={"url": self.url, "method": "POST", "body": body},
                    metadata={"source": ALERT_JOB_SOURCE, "first_error": error},
                )
                await session.commit()
        except Exception as e:
            logger.error("Failed to queue undelivered alert %s: %s", kind, e)

    async def _send(self, body: dict[str, Any]) -> tuple[bool, str | None]:
        """Send payload to the webhook. Returns (success, error)."""
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(self.url, json=body)
                if response.is_success:
                    return True, None
                return False, f"HTTP {response.status_code}"
        except httpx.TimeoutException:
            return False, "Timeout"
        except httpx.HTTPError as e:
            return False, str(e)
        except Exception as e:
            logger.error("Alert webhook request could not be built: %s", e)
            return False, str(e) or e.__class__.__name__


def build_alert_dispatcher(session_factory: Callable[[], AsyncSession]) -> AlertDispatcher:
    if settings.ALERT_WEBHOOK_URL:
        return WebhookAlertDispatcher(settings.ALERT_WEBHOOK_URL, session_factory)
    return AlertDispatcher()
