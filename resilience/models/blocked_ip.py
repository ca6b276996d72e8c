from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from resilience.db.base import Base, UUIDMixin, utc_now


class BlockedIP(Base, UUIDMixin):
    """A time-boxed block on a client IP. Active while blocked_until is in the future."""

    __tablename__ = "blocked_ips"

    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    blocked_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    auto_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    blocked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)  # operator for manual blocks
    blocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_blocked_ips_ip_until", "ip_address", "blocked_until"),
    )

    def __repr__(self) -> str:
        return f"<BlockedIP {self.ip_address} until {self.blocked_until}>"
