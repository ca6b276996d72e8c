"""
Policy objects shared by the guard, the recorder and the background jobs.

Every caller receives the same ThrottlePolicy instead of carrying its own
thresholds. Defaults come from environment settings; the ``login_throttle``
row in the settings table overrides them at runtime.
"""

import logging
from dataclasses import dataclass, field, replace

from sqlalchemy.ext.asyncio import AsyncSession

from resilience.core.config import settings
from resilience.services.settings import LOGIN_THROTTLE_KEY, get_setting

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThrottlePolicy:
    """Login throttling thresholds."""

    email_threshold: int = 3
    ip_threshold: int = 10
    window_seconds: int = 900
    block_duration_seconds: int = 1800
    alert_milestones: tuple[int, ...] = (3, 5, 10)

    @classmethod
    def from_settings(cls) -> "ThrottlePolicy":
        return cls(
            email_threshold=settings.LOGIN_EMAIL_THRESHOLD,
            ip_threshold=settings.LOGIN_IP_THRESHOLD,
            window_seconds=settings.LOGIN_WINDOW_SECONDS,
            block_duration_seconds=settings.IP_BLOCK_DURATION_SECONDS,
            alert_milestones=tuple(settings.LOGIN_ALERT_MILESTONES),
        )

    def with_overrides(self, overrides: dict) -> "ThrottlePolicy":
        """Apply a settings-table override, ignoring unknown or invalid keys."""
        changes = {}
        for name in ("email_threshold", "ip_threshold", "window_seconds", "block_duration_seconds"):
            value = overrides.get(name)
            if isinstance(value, int) and not isinstance(value, bool) and value > 0:
                changes[name] = value
            elif value is not None:
                logger.warning("Ignoring invalid %s override: %r", name, value)

        milestones = overrides.get("alert_milestones")
        if isinstance(milestones, list) and all(isinstance(m, int) and m > 0 for m in milestones):
            changes["alert_milestones"] = tuple(sorted(set(milestones)))
        elif milestones is not None:
            logger.warning("Ignoring invalid alert_milestones override: %r", milestones)

        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule and batch sizing for the retry scheduler."""

    batch_size: int = 10
    default_max_attempts: int = 5
    base_delay_seconds: int = 60
    max_delay_seconds: int = 3600
    claim_timeout_seconds: int = 900

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            batch_size=settings.RETRY_BATCH_SIZE,
            default_max_attempts=settings.RETRY_DEFAULT_MAX_ATTEMPTS,
            base_delay_seconds=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay_seconds=settings.RETRY_MAX_DELAY_SECONDS,
            claim_timeout_seconds=settings.RETRY_CLAIM_TIMEOUT_SECONDS,
        )


@dataclass(frozen=True)
class RetentionPolicy:
    """Age cutoffs (in days) for the retention sweep."""

    login_attempts_days: int = 90
    notifications_days: int = 30
    system_logs_days: int = 60
    succeeded_jobs_days: int = 30
    notification_statuses: tuple[str, ...] = field(default=("sent", "read"))

    @classmethod
    def from_settings(cls) -> "RetentionPolicy":
        return cls(
            login_attempts_days=settings.RETENTION_LOGIN_ATTEMPTS_DAYS,
            notifications_days=settings.RETENTION_NOTIFICATIONS_DAYS,
            system_logs_days=settings.RETENTION_SYSTEM_LOGS_DAYS,
            succeeded_jobs_days=settings.RETENTION_SUCCEEDED_JOBS_DAYS,
        )


async def load_throttle_policy(db: AsyncSession) -> ThrottlePolicy:
    """Environment defaults merged with the ``login_throttle`` settings row."""
    policy = ThrottlePolicy.from_settings()
    overrides = await get_setting(db, LOGIN_THROTTLE_KEY)
    if overrides:
        policy = policy.with_overrides(overrides)
    return policy
