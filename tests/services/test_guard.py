"""Tests for the login guard."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from resilience.core.exceptions import TransientStoreError
from resilience.models.blocked_ip import BlockedIP
from resilience.services import rate_limit
from resilience.services.alerts import AlertKind
from resilience.services.blocklist import AutoBlocklist, Whitelist
from resilience.services.guard import DecisionReason, LoginGuard
from resilience.services.policy import ThrottlePolicy

POLICY = ThrottlePolicy(email_threshold=3, ip_threshold=10, window_seconds=900, block_duration_seconds=1800)


class _LateBlocklist(AutoBlocklist):
    """Misses the active block on the first lookup, as a check racing another one would."""

    def __init__(self):
        self.lookups = 0

    async def active_block(self, db, ip_address, now):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return await super().active_block(db, ip_address, now)


async def _fail(db, email, ip, at, count=1):
    for _ in range(count):
        await rate_limit.record_attempt(db, email, False, ip, "pytest", at)
    await db.commit()


class TestEmailThreshold:
    @pytest.mark.asyncio
    async def test_allowed_below_threshold(self, db_session, alerts, now):
        await _fail(db_session, "user@example.com", "203.0.113.5", now - timedelta(minutes=1), count=2)

        decision = await LoginGuard(POLICY, alerts).check(db_session, "user@example.com", "203.0.113.5", now=now)

        assert decision.allowed is True
        assert decision.reason == DecisionReason.UNDER_THRESHOLD
        assert decision.failed_attempts == 2
        assert decision.remaining_attempts == 1

    @pytest.mark.asyncio
    async def test_blocked_at_threshold(self, db_session, alerts, now):
        await _fail(db_session, "user@example.com", "203.0.113.5", now - timedelta(minutes=1), count=3)

        decision = await LoginGuard(POLICY, alerts).check(db_session, "user@example.com", "203.0.113.5", now=now)

        assert decision.blocked is True
        assert decision.reason == DecisionReason.EMAIL_THRESHOLD
        assert decision.remaining_attempts == 0

    @pytest.mark.asyncio
    async def test_remaining_seconds_counts_from_oldest_failure(self, db_session, alerts, now):
        """Three failures in the last two minutes leave 13 of 15 minutes to wait."""
        for offset in (120, 60, 30):
            await _fail(db_session, "a@b.com", "1.1.1.1", now - timedelta(seconds=offset))

        decision = await LoginGuard(POLICY, alerts).check(db_session, "a@b.com", "1.1.1.1", now=now)

        assert decision.blocked is True
        assert decision.remaining_seconds == 780
        assert "13 minutes" in decision.message

    @pytest.mark.asyncio
    async def test_failures_outside_window_are_ignored(self, db_session, alerts, now):
        await _fail(db_session, "user@example.com", None, now - timedelta(minutes=16), count=5)

        decision = await LoginGuard(POLICY, alerts).check(db_session, "user@example.com", None, now=now)

        assert decision.allowed is True
        assert decision.failed_attempts == 0

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, db_session, alerts, now):
        await _fail(db_session, "User@Example.com", None, now - timedelta(minutes=1), count=3)

        decision = await LoginGuard(POLICY, alerts).check(db_session, "USER@example.COM", None, now=now)

        assert decision.blocked is True

    @pytest.mark.asyncio
    async def test_successes_do_not_count(self, db_session, alerts, now):
        for _ in range(5):
            await rate_limit.record_attempt(db_session, "user@example.com", True, None, None, now)
        await db_session.commit()

        decision = await LoginGuard(POLICY, alerts).check(db_session, "user@example.com", None, now=now)

        assert decision.allowed is True


class TestWhitelist:
    @pytest.mark.asyncio
    async def test_whitelisted_ip_bypasses_every_threshold(self, db_session, alerts, now):
        await Whitelist().add(db_session, "10.1.2.3", "office")
        await _fail(db_session, "user@example.com", "10.1.2.3", now - timedelta(minutes=1), count=POLICY.email_threshold + 5)
        await _fail(db_session, "other@example.com", "10.1.2.3", now - timedelta(minutes=1), count=POLICY.ip_threshold)

        decision = await LoginGuard(POLICY, alerts).check(db_session, "user@example.com", "10.1.2.3", now=now)

        assert decision.allowed is True
        assert decision.reason == DecisionReason.WHITELISTED
        blocks = (await db_session.execute(select(BlockedIP))).scalars().all()
        assert blocks == []
        assert alerts.sent == []

    @pytest.mark.asyncio
    async def test_whitelist_checked_before_active_block(self, db_session, alerts, now):
        await AutoBlocklist().insert(db_session, "10.1.2.3", "manual", 1800, now=now)
        await Whitelist().add(db_session, "10.1.2.3")
        await db_session.commit()

        decision = await LoginGuard(POLICY, alerts).check(db_session, "user@example.com", "10.1.2.3", now=now)

        assert decision.allowed is True


class TestIPThreshold:
    @pytest.mark.asyncio
    async def test_auto_block_after_ip_threshold(self, db_session, alerts, now):
        for i in range(POLICY.ip_threshold):
            await _fail(db_session, f"user{i}@example.com", "2.2.2.2", now - timedelta(minutes=2))

        decision = await LoginGuard(POLICY, alerts).check(db_session, "fresh@example.com", "2.2.2.2", now=now)

        assert decision.blocked is True
        assert decision.reason == DecisionReason.IP_THRESHOLD
        assert decision.remaining_seconds == 1800

        blocks = (await db_session.execute(select(BlockedIP))).scalars().all()
        assert len(blocks) == 1
        assert blocks[0].auto_blocked is True
        assert blocks[0].blocked_until == now + timedelta(seconds=1800)

        assert alerts.kinds() == [AlertKind.IP_AUTO_BLOCKED]
        assert alerts.sent[0][1]["ip_address"] == "2.2.2.2"

    @pytest.mark.asyncio
    async def test_racing_check_extends_block_without_second_alert(self, db_session, alerts, now):
        for i in range(POLICY.ip_threshold):
            await _fail(db_session, f"user{i}@example.com", "2.2.2.2", now - timedelta(minutes=2))
        await AutoBlocklist().insert(db_session, "2.2.2.2", "first check", 1800, now=now - timedelta(seconds=60))
        await db_session.commit()

        guard = LoginGuard(POLICY, alerts, blocklist=_LateBlocklist())
        decision = await guard.check(db_session, "fresh@example.com", "2.2.2.2", now=now)

        assert decision.reason == DecisionReason.IP_THRESHOLD
        assert alerts.sent == []
        blocks = (await db_session.execute(select(BlockedIP))).scalars().all()
        assert len(blocks) == 1
        assert blocks[0].blocked_until == now + timedelta(seconds=1800)

    @pytest.mark.asyncio
    async def test_blocked_ip_is_denied_for_any_email(self, db_session, alerts, now):
        await AutoBlocklist().insert(db_session, "2.2.2.2", "test", 1800, now=now - timedelta(minutes=10))
        await db_session.commit()

        decision = await LoginGuard(POLICY, alerts).check(db_session, "someone@example.com", "2.2.2.2", now=now)

        assert decision.blocked is True
        assert decision.reason == DecisionReason.IP_BLOCKED
        assert decision.remaining_seconds == 1200
        assert alerts.sent == []

    @pytest.mark.asyncio
    async def test_expired_block_no_longer_applies(self, db_session, alerts, now):
        await AutoBlocklist().insert(db_session, "2.2.2.2", "test", 60, now=now - timedelta(hours=1))
        await db_session.commit()

        decision = await LoginGuard(POLICY, alerts).check(db_session, "someone@example.com", "2.2.2.2", now=now)

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_check_without_ip_skips_ip_rules(self, db_session, alerts, now):
        decision = await LoginGuard(POLICY, alerts).check(db_session, "someone@example.com", None, now=now)

        assert decision.allowed is True
        assert decision.remaining_attempts == POLICY.email_threshold


class TestStoreFailure:
    @pytest.mark.asyncio
    async def test_store_error_fails_closed(self, db_session, alerts, now):
        guard = LoginGuard(POLICY, alerts)
        error = OperationalError("SELECT", {}, Exception("connection refused"))

        with patch.object(rate_limit, "count_failed_by_email", side_effect=error):
            with pytest.raises(TransientStoreError) as exc_info:
                await guard.check(db_session, "user@example.com", None, now=now)

        assert exc_info.value.operation == "login_check"
