"""
Login attempt ledger.

Every check-then-record cycle appends one row. Failed rows for an email are
deleted when that email later logs in successfully; everything else ages out
through the retention sweep.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from resilience.db.base import Base, utc_now


class LoginAttempt(Base):
    """One authentication attempt, successful or not."""

    __tablename__ = "login_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    attempt_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )

    __table_args__ = (
        Index("ix_login_attempts_email_time", "email", "attempt_time"),
        Index("ix_login_attempts_ip_time", "ip_address", "attempt_time"),
    )

    def __repr__(self) -> str:
        outcome = "ok" if self.success else "failed"
        return f"<LoginAttempt {self.email} {outcome} at {self.attempt_time}>"
