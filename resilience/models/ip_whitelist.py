from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from resilience.db.base import Base, TimestampMixin, UUIDMixin


class IPWhitelistEntry(Base, UUIDMixin, TimestampMixin):
    """Trusted IP that bypasses every login throttle."""

    __tablename__ = "ip_whitelist"

    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    added_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<IPWhitelistEntry {self.ip_address}>"
