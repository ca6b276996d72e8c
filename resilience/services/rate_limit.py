"""
Login attempt store.

Append-only ledger of authentication attempts plus the rolling-window
queries the guard and recorder are built on. Functions here flush but never
commit; callers own the transaction.
"""

from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.models.login_attempt import LoginAttempt


async def lock_subject(db: AsyncSession, kind: str, subject: str) -> None:
    """
    Serialize writers for one subject (an email or an IP) until the
    current transaction ends.

    Uses a Postgres transaction-scoped advisory lock. Other dialects have no
    equivalent and run unserialized.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    await db.execute(select(func.pg_advisory_xact_lock(func.hashtext(f"{kind}:{subject}"))))


async def record_attempt(
    db: AsyncSession,
    email: str,
    success: bool,
    ip_address: str | None,
    user_agent: str | None,
    attempt_time: datetime,
) -> LoginAttempt:
    """Append one login attempt."""
    attempt = LoginAttempt(
        email=email.lower(),
        success=success,
        ip_address=ip_address,
        user_agent=user_agent,
        attempt_time=attempt_time,
    )
    db.add(attempt)
    await db.flush()
    return attempt


async def count_failed_by_email(db: AsyncSession, email: str, window_seconds: int, now: datetime) -> int:
    """Count failed attempts for an account within [now - window, now]."""
    cutoff = now - timedelta(seconds=window_seconds)
    result = await db.execute(
        select(func.count()).select_from(LoginAttempt).where(
            LoginAttempt.email == email.lower(),
            LoginAttempt.success.is_(False),
            LoginAttempt.attempt_time >= cutoff,
            LoginAttempt.attempt_time <= now,
        )
    )
    return result.scalar() or 0


async def count_failed_by_ip(db: AsyncSession, ip_address: str, window_seconds: int, now: datetime) -> int:
    """Count failed attempts from an IP, across all emails, within the window."""
    cutoff = now - timedelta(seconds=window_seconds)
    result = await db.execute(
        select(func.count()).select_from(LoginAttempt).where(
            LoginAttempt.ip_address == ip_address,
            LoginAttempt.success.is_(False),
            LoginAttempt.attempt_time >= cutoff,
            LoginAttempt.attempt_time <= now,
        )
    )
    return result.scalar() or 0


async def oldest_failed_in_window(
    db: AsyncSession, email: str, window_seconds: int, now: datetime
) -> datetime | None:
    """Timestamp of the oldest failure still inside the window, if any."""
    cutoff = now - timedelta(seconds=window_seconds)
    result = await db.execute(
        select(func.min(LoginAttempt.attempt_time)).where(
            LoginAttempt.email == email.lower(),
            LoginAttempt.success.is_(False),
            LoginAttempt.attempt_time >= cutoff,
            LoginAttempt.attempt_time <= now,
        )
    )
    return result.scalar()


async def clear_failed_attempts(db: AsyncSession, email: str) -> int:
    """Delete failed attempts for an account after a successful login. Returns count deleted."""
    result = await db.execute(
        delete(LoginAttempt).where(
            LoginAttempt.email == email.lower(),
            LoginAttempt.success.is_(False),
        )
    )
    return result.rowcount


async def cleanup_old_attempts(db: AsyncSession, older_than: datetime) -> int:
    """Remove login attempts older than the cutoff. Returns count deleted."""
    result = await db.execute(
        delete(LoginAttempt).where(LoginAttempt.attempt_time < older_than)
    )
    return result.rowcount
