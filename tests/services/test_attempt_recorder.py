"""Tests for recording login outcomes."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from resilience.core.exceptions import TransientStoreError
from resilience.models.login_attempt import LoginAttempt
from resilience.services import rate_limit
from resilience.services.alerts import AlertKind
from resilience.services.attempt_recorder import AttemptRecorder
from resilience.services.blocklist import Whitelist
from resilience.services.guard import LoginGuard
from resilience.services.policy import ThrottlePolicy

POLICY = ThrottlePolicy()


class TestRecordFailure:
    @pytest.mark.asyncio
    async def test_failure_is_appended_and_counted(self, db_session, alerts, now):
        recorder = AttemptRecorder(POLICY, alerts)

        first = await recorder.record(db_session, "User@Example.com", False, "203.0.113.5", "Mozilla", now=now)
        second = await recorder.record(db_session, "user@example.com", False, "203.0.113.5", "Mozilla", now=now)

        assert (first, second) == (1, 2)
        rows = (await db_session.execute(select(LoginAttempt))).scalars().all()
        assert len(rows) == 2
        assert {row.email for row in rows} == {"user@example.com"}
        assert all(row.user_agent == "Mozilla" for row in rows)

    @pytest.mark.asyncio
    async def test_milestone_alert_fires_once_per_milestone(self, db_session, alerts, now):
        recorder = AttemptRecorder(POLICY, alerts)

        for i in range(11):
            await recorder.record(db_session, "user@example.com", False, "203.0.113.5", now=now + timedelta(seconds=i))

        assert alerts.kinds() == [AlertKind.LOGIN_FAILURE_MILESTONE] * 3
        assert [payload["failed_attempts"] for _, payload in alerts.sent] == [3, 5, 10]
        assert alerts.sent[0][1]["email"] == "user@example.com"
        assert alerts.sent[0][1]["ip_address"] == "203.0.113.5"

    @pytest.mark.asyncio
    async def test_whitelisted_ip_never_alerts(self, db_session, alerts, now):
        await Whitelist().add(db_session, "10.0.0.8")
        await db_session.commit()
        recorder = AttemptRecorder(POLICY, alerts)

        for _ in range(5):
            await recorder.record(db_session, "user@example.com", False, "10.0.0.8", now=now)

        assert alerts.sent == []


class TestRecordSuccess:
    @pytest.mark.asyncio
    async def test_success_forgives_prior_failures(self, db_session, alerts, now):
        recorder = AttemptRecorder(POLICY, alerts)
        guard = LoginGuard(POLICY, alerts)
        for _ in range(3):
            await recorder.record(db_session, "user@example.com", False, "203.0.113.5", now=now)
        assert (await guard.check(db_session, "user@example.com", "203.0.113.5", now=now)).blocked

        result = await recorder.record(db_session, "user@example.com", True, "203.0.113.5", now=now)

        assert result == 0
        decision = await guard.check(db_session, "user@example.com", "203.0.113.5", now=now)
        assert decision.allowed is True
        assert decision.failed_attempts == 0

    @pytest.mark.asyncio
    async def test_success_row_is_kept(self, db_session, alerts, now):
        recorder = AttemptRecorder(POLICY, alerts)
        await recorder.record(db_session, "user@example.com", False, None, now=now)

        await recorder.record(db_session, "user@example.com", True, None, now=now)

        rows = (await db_session.execute(select(LoginAttempt))).scalars().all()
        assert [row.success for row in rows] == [True]

    @pytest.mark.asyncio
    async def test_success_only_clears_that_email(self, db_session, alerts, now):
        recorder = AttemptRecorder(POLICY, alerts)
        await recorder.record(db_session, "a@example.com", False, None, now=now)
        await recorder.record(db_session, "b@example.com", False, None, now=now)

        await recorder.record(db_session, "a@example.com", True, None, now=now)

        assert await rate_limit.count_failed_by_email(db_session, "b@example.com", 900, now) == 1


class TestStoreFailure:
    @pytest.mark.asyncio
    async def test_store_error_raises_transient_error(self, db_session, alerts, now):
        recorder = AttemptRecorder(POLICY, alerts)
        error = OperationalError("INSERT", {}, Exception("disk full"))

        with patch.object(rate_limit, "record_attempt", side_effect=error):
            with pytest.raises(TransientStoreError) as exc_info:
                await recorder.record(db_session, "user@example.com", False, None, now=now)

        assert exc_info.value.operation == "login_record"
        assert alerts.sent == []
