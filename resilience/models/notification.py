from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from resilience.db.base import Base, UUIDMixin, utc_now


class Notification(Base, UUIDMixin):
    """In-app notification for a shop user, written by the notification job handler."""

    __tablename__ = "notifications"

    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    notification_type: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="sent")  # pending, sent, read
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_notifications_status_created", "status", "created_at"),
    )
