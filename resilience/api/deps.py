import hmac
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.core.config import settings
from resilience.core.errors import forbidden, unauthorized
from resilience.core.exceptions import TransientStoreError
from resilience.db.session import async_session_maker, get_db
from resilience.services.alerts import AlertDispatcher, build_alert_dispatcher
from resilience.services.attempt_recorder import AttemptRecorder
from resilience.services.guard import LoginGuard
from resilience.services.job_handlers import JobHandlerRegistry, build_default_registry
from resilience.services.job_queue import JobQueue
from resilience.services.policy import RetentionPolicy, RetryPolicy, ThrottlePolicy, load_throttle_policy
from resilience.services.retention import RetentionSweeper
from resilience.services.retry_scheduler import RetryScheduler

security = HTTPBearer(auto_error=False)


async def require_service_role(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> None:
    """Only the trusted scheduler and operators hold the service-role key."""
    if credentials is None:
        raise unauthorized("Missing bearer token")
    if not hmac.compare_digest(credentials.credentials.encode(), settings.SERVICE_ROLE_KEY.encode()):
        raise forbidden("Service role required")


_alert_dispatcher: AlertDispatcher | None = None


def get_alert_dispatcher() -> AlertDispatcher:
    global _alert_dispatcher
    if _alert_dispatcher is None:
        _alert_dispatcher = build_alert_dispatcher(async_session_maker)
    return _alert_dispatcher


def get_job_registry() -> JobHandlerRegistry:
    return build_default_registry()


async def get_throttle_policy(db: Annotated[AsyncSession, Depends(get_db)]) -> ThrottlePolicy:
    try:
        return await load_throttle_policy(db)
    except SQLAlchemyError as e:
        raise TransientStoreError("load_throttle_policy", str(e)) from e


def get_login_guard(
    policy: Annotated[ThrottlePolicy, Depends(get_throttle_policy)],
    alerts: Annotated[AlertDispatcher, Depends(get_alert_dispatcher)],
) -> LoginGuard:
    return LoginGuard(policy, alerts)


def get_attempt_recorder(
    policy: Annotated[ThrottlePolicy, Depends(get_throttle_policy)],
    alerts: Annotated[AlertDispatcher, Depends(get_alert_dispatcher)],
) -> AttemptRecorder:
    return AttemptRecorder(policy, alerts)


def get_job_queue() -> JobQueue:
    return JobQueue(default_max_attempts=settings.RETRY_DEFAULT_MAX_ATTEMPTS)


def get_retry_scheduler(
    queue: Annotated[JobQueue, Depends(get_job_queue)],
    registry: Annotated[JobHandlerRegistry, Depends(get_job_registry)],
    alerts: Annotated[AlertDispatcher, Depends(get_alert_dispatcher)],
) -> RetryScheduler:
    return RetryScheduler(queue, registry, alerts, RetryPolicy.from_settings())


def get_retention_sweeper() -> RetentionSweeper:
    return RetentionSweeper(RetentionPolicy.from_settings())
