"""
Login guard.

Decides whether a login attempt may proceed, before credentials are checked.
Order of evaluation: whitelist, active IP block, per-email rolling window,
per-IP rolling window. The guard never records an attempt; it only writes an
automatic IP block when the per-IP threshold trips.

Any store failure raises TransientStoreError. Callers must deny in that case.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.core.exceptions import TransientStoreError
from resilience.db.base import utc_now
from resilience.models.blocked_ip import BlockedIP
from resilience.services import rate_limit
from resilience.services.alerts import AlertDispatcher, AlertKind
from resilience.services.blocklist import AutoBlocklist, Whitelist
from resilience.services.policy import ThrottlePolicy

logger = logging.getLogger(__name__)


class DecisionReason:
    WHITELISTED = "whitelisted"
    IP_BLOCKED = "ip_blocked"
    EMAIL_THRESHOLD = "email_threshold"
    IP_THRESHOLD = "ip_threshold"
    UNDER_THRESHOLD = "under_threshold"


@dataclass
class GuardDecision:
    allowed: bool
    reason: str
    message: str
    failed_attempts: int = 0
    remaining_attempts: int | None = None
    remaining_seconds: int | None = None

    @property
    def blocked(self) -> bool:
        return not self.allowed


def _seconds_until(moment: datetime, now: datetime) -> int:
    return max(0, math.ceil((moment - now).total_seconds()))


def _minutes_label(seconds: int) -> str:
    minutes = max(1, math.ceil(seconds / 60))
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


class LoginGuard:
    def __init__(
        self,
        policy: ThrottlePolicy,
        alerts: AlertDispatcher,
        blocklist: AutoBlocklist | None = None,
        whitelist: Whitelist | None = None,
    ):
        self.policy = policy
        self.alerts = alerts
        self.blocklist = blocklist or AutoBlocklist()
        self.whitelist = whitelist or Whitelist()

    async def check(
        self,
        db: AsyncSession,
        email: str,
        ip_address: str | None = None,
        now: datetime | None = None,
    ) -> GuardDecision:
        now = now or utc_now()
        email = email.lower()
        try:
            decision, block, created = await self._evaluate(db, email, ip_address, now)
            blocked_until = block.blocked_until if block is not None else None
            if block is not None:
                await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Login guard store failure for %s: %s", email, e)
            raise TransientStoreError("login_check", str(e)) from e

        # Only the check that created the block alerts; a racing check merely extends it
        if created:
            await self.alerts.notify(
                AlertKind.IP_AUTO_BLOCKED,
                {
                    "ip_address": ip_address,
                    "email": email,
                    "failed_attempts": decision.failed_attempts,
                    "blocked_until": blocked_until.isoformat(),
                },
            )
        return decision

    async def _evaluate(
        self, db: AsyncSession, email: str, ip_address: str | None, now: datetime
    ) -> tuple[GuardDecision, BlockedIP | None, bool]:
        policy = self.policy

        if ip_address and await self.whitelist.contains(db, ip_address):
            return GuardDecision(
                allowed=True,
                reason=DecisionReason.WHITELISTED,
                message="IP is whitelisted",
                remaining_attempts=policy.email_threshold,
            ), None, False

        if ip_address:
            block = await self.blocklist.active_block(db, ip_address, now)
            if block:
                remaining = _seconds_until(block.blocked_until, now)
                return GuardDecision(
                    allowed=False,
                    reason=DecisionReason.IP_BLOCKED,
                    message=f"Too many failed attempts from this IP. Try again in {_minutes_label(remaining)}.",
                    remaining_seconds=remaining,
                ), None, False

        failed_by_email = await rate_limit.count_failed_by_email(db, email, policy.window_seconds, now)
        if failed_by_email >= policy.email_threshold:
            oldest = await rate_limit.oldest_failed_in_window(db, email, policy.window_seconds, now)
            # The lock lifts when the oldest failure in the window ages out
            remaining = policy.window_seconds
            if oldest is not None:
                remaining = _seconds_until(oldest + timedelta(seconds=policy.window_seconds), now)
            logger.info("Login blocked for %s: %d failures in window", email, failed_by_email)
            return GuardDecision(
                allowed=False,
                reason=DecisionReason.EMAIL_THRESHOLD,
                message=f"Account temporarily locked. Try again in {_minutes_label(remaining)}.",
                failed_attempts=failed_by_email,
                remaining_attempts=0,
                remaining_seconds=remaining,
            ), None, False

        if ip_address:
            failed_by_ip = await rate_limit.count_failed_by_ip(db, ip_address, policy.window_seconds, now)
            if failed_by_ip >= policy.ip_threshold:
                block, created = await self.blocklist.block(
                    db,
                    ip_address,
                    reason=f"Auto-blocked: {failed_by_ip} failed login attempts in {policy.window_seconds}s",
                    duration_seconds=policy.block_duration_seconds,
                    now=now,
                )
                remaining = _seconds_until(block.blocked_until, now)
                return GuardDecision(
                    allowed=False,
                    reason=DecisionReason.IP_THRESHOLD,
                    message=f"Too many failed attempts from this IP. Try again in {_minutes_label(remaining)}.",
                    failed_attempts=failed_by_email,
                    remaining_seconds=remaining,
                ), block, created

        return GuardDecision(
            allowed=True,
            reason=DecisionReason.UNDER_THRESHOLD,
            message="Login allowed",
            failed_attempts=failed_by_email,
            remaining_attempts=policy.email_threshold - failed_by_email,
        ), None, False
