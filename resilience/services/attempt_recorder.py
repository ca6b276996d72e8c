"""
Records login outcomes after credentials have been checked.

A success wipes the account's failure history. A failure is appended and
the rolling count recomputed inside the same transaction, serialized per
email, so concurrent failures each observe a distinct count and a milestone
alert fires exactly once.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.core.exceptions import TransientStoreError
from resilience.db.base import utc_now
from resilience.services import rate_limit
from resilience.services.alerts import AlertDispatcher, AlertKind
from resilience.services.blocklist import Whitelist
from resilience.services.policy import ThrottlePolicy

logger = logging.getLogger(__name__)


class AttemptRecorder:
    def __init__(self, policy: ThrottlePolicy, alerts: AlertDispatcher, whitelist: Whitelist | None = None):
        self.policy = policy
        self.alerts = alerts
        self.whitelist = whitelist or Whitelist()

    async def record(
        self,
        db: AsyncSession,
        email: str,
        success: bool,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Persist one attempt.

        Returns the rolling failure count for the email after this attempt
        (always 0 for a success).
        """
        now = now or utc_now()
        email = email.lower()
        milestone_hit = False

        try:
            await rate_limit.lock_subject(db, "email", email)
            await rate_limit.record_attempt(db, email, success, ip_address, user_agent, now)

            if success:
                cleared = await rate_limit.clear_failed_attempts(db, email)
                failed_count = 0
                if cleared:
                    logger.info("Cleared %d failed attempts for %s after successful login", cleared, email)
            else:
                failed_count = await rate_limit.count_failed_by_email(
                    db, email, self.policy.window_seconds, now
                )
                if failed_count in self.policy.alert_milestones:
                    milestone_hit = not await self.whitelist.contains(db, ip_address)

            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Failed to record login attempt for %s: %s", email, e)
            raise TransientStoreError("login_record", str(e)) from e

        if milestone_hit:
            logger.warning("Login failure milestone for %s: %d failures", email, failed_count)
            await self.alerts.notify(
                AlertKind.LOGIN_FAILURE_MILESTONE,
                {
                    "email": email,
                    "ip_address": ip_address,
                    "user_agent": user_agent,
                    "failed_attempts": failed_count,
                    "window_seconds": self.policy.window_seconds,
                },
            )
        return failed_count
