"""
Job handlers, one class per job type.

A handler returns True when the retried operation succeeded and False (or
raises) when it should be tried again later. Raising JobPermanentFailure
means no later attempt can succeed, e.g. a payload missing required fields.
"""

import ipaddress
import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlparse

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.core.config import settings
from resilience.core.exceptions import JobPermanentFailure, UnknownJobTypeError
from resilience.models.failed_job import FailedJob, JobType
from resilience.models.notification import Notification
from resilience.services.alerts import ALERT_JOB_SOURCE

logger = logging.getLogger(__name__)

ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}

# Private/internal IP ranges that outbound api_call jobs may not target
BLOCKED_IP_RANGES = [
    ipaddress.ip_network("127.0.0.0/8"),       # Loopback
    ipaddress.ip_network("10.0.0.0/8"),        # Private Class A
    ipaddress.ip_network("172.16.0.0/12"),     # Private Class B
    ipaddress.ip_network("192.168.0.0/16"),    # Private Class C
    ipaddress.ip_network("169.254.0.0/16"),    # Link-local (cloud metadata)
    ipaddress.ip_network("::1/128"),           # IPv6 loopback
    ipaddress.ip_network("fc00::/7"),          # IPv6 private
    ipaddress.ip_network("fe80::/10"),         # IPv6 link-local
]


def validate_target_url(url: Any) -> str:
    """Reject anything that is not an http(s) URL to a public host literal."""
    if not isinstance(url, str) or not url:
        raise JobPermanentFailure("payload.url is required")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise JobPermanentFailure(f"Unsupported URL: {url}")

    hostname = parsed.hostname
    if hostname in ("localhost", "0.0.0.0"):
        raise JobPermanentFailure("Localhost URLs are not allowed")

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return url  # a hostname, not a literal address

    if any(ip in blocked for blocked in BLOCKED_IP_RANGES):
        raise JobPermanentFailure("URL points to a private/internal IP address")
    return url


class JobHandler(ABC):
    job_type: JobType

    @abstractmethod
    async def execute(self, db: AsyncSession, job: FailedJob) -> bool:
        """Retry the operation described by ``job.payload``."""


class HTTPJobHandler(JobHandler):
    """Shared client plumbing for handlers that call out over HTTP."""

    def __init__(self, timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport

    async def _request(
        self,
        method: str,
        url: str,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> bool:
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            response = await client.request(method, url, json=json, headers=headers)
        if not response.is_success:
            logger.info("%s %s returned HTTP %d", method, url, response.status_code)
        return response.is_success


class EdgeFunctionHandler(HTTPJobHandler):
    """Re-invokes a serverless function by name with the original body."""

    job_type = JobType.EDGE_FUNCTION

    def __init__(
        self,
        base_url: str | None = None,
        service_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.base_url = base_url if base_url is not None else settings.FUNCTIONS_BASE_URL
        self.service_key = service_key if service_key is not None else settings.SERVICE_ROLE_KEY

    def _function_name(self, job: FailedJob) -> str:
        name = (job.payload or {}).get("function_name")
        if not isinstance(name, str) or not name:
            raise JobPermanentFailure("payload.function_name is required")
        return name

    def _body(self, job: FailedJob) -> Any:
        return (job.payload or {}).get("body") or {}

    async def execute(self, db: AsyncSession, job: FailedJob) -> bool:
        function_name = self._function_name(job)
        if not self.base_url:
            raise JobPermanentFailure("FUNCTIONS_BASE_URL is not configured")

        url = f"{self.base_url.rstrip('/')}/{function_name}"
        return await self._request(
            "POST",
            url,
            json=self._body(job),
            headers={"Authorization": f"Bearer {self.service_key}"},
        )


class EmailHandler(EdgeFunctionHandler):
    """Hands the stored payload to the notification-sending function."""

    job_type = JobType.EMAIL
    function_name = "send-notification"

    def _function_name(self, job: FailedJob) -> str:
        return self.function_name

    def _body(self, job: FailedJob) -> Any:
        payload = job.payload or {}
        if not payload:
            raise JobPermanentFailure("email payload is empty")
        return payload


class NotificationHandler(JobHandler):
    """Writes the in-app notification that originally failed to insert."""

    job_type = JobType.NOTIFICATION

    async def execute(self, db: AsyncSession, job: FailedJob) -> bool:
        payload = job.payload or {}
        title = payload.get("title")
        message = payload.get("message")
        if not title or not message:
            raise JobPermanentFailure("notification payload needs 'title' and 'message'")

        db.add(
            Notification(
                user_id=payload.get("user_id"),
                notification_type=payload.get("type", "system"),
                title=title,
                message=message,
                data=payload.get("data"),
                status=payload.get("status", "sent"),
            )
        )
        await db.flush()
        return True


class ApiCallHandler(HTTPJobHandler):
    """
    Replays an arbitrary outbound HTTP call.

    Targets must be public hosts, except for alert redeliveries to the
    configured alert webhook, which usually lives on the internal network.
    """

    job_type = JobType.API_CALL

    def __init__(
        self,
        alert_webhook_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.alert_webhook_url = alert_webhook_url if alert_webhook_url is not None else settings.ALERT_WEBHOOK_URL

    def _is_alert_redelivery(self, job: FailedJob, url: Any) -> bool:
        source = (job.job_metadata or {}).get("source")
        return source == ALERT_JOB_SOURCE and bool(self.alert_webhook_url) and url == self.alert_webhook_url

    async def execute(self, db: AsyncSession, job: FailedJob) -> bool:
        payload = job.payload or {}
        url = payload.get("url")
        if not self._is_alert_redelivery(job, url):
            url = validate_target_url(url)
        method = str(payload.get("method") or "POST").upper()
        if method not in ALLOWED_METHODS:
            raise JobPermanentFailure(f"Unsupported HTTP method: {method}")

        headers = payload.get("headers") or {}
        if not isinstance(headers, dict):
            raise JobPermanentFailure("payload.headers must be an object")

        return await self._request(method, url, json=payload.get("body"), headers=headers)


class JobHandlerRegistry:
    def __init__(self, handlers: list[JobHandler] | None = None):
        self._handlers: dict[str, JobHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: JobHandler) -> None:
        self._handlers[handler.job_type.value] = handler

    def get(self, job_type: str) -> JobHandler:
        handler = self._handlers.get(job_type)
        if handler is None:
            raise UnknownJobTypeError(job_type)
        return handler


def build_default_registry(transport: httpx.AsyncBaseTransport | None = None) -> JobHandlerRegistry:
    return JobHandlerRegistry(
        [
            EdgeFunctionHandler(transport=transport),
            EmailHandler(transport=transport),
            NotificationHandler(),
            ApiCallHandler(transport=transport),
        ]
    )
