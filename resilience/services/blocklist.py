"""
IP blocklist and whitelist.

A block is active while ``blocked_until`` is in the future. At most one
active block exists per IP: inserting over an active block extends it to the
later of the two expiries instead of adding a second row.
"""

import ipaddress
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.db.base import utc_now
from resilience.models.blocked_ip import BlockedIP
from resilience.models.ip_whitelist import IPWhitelistEntry
from resilience.services.rate_limit import lock_subject

logger = logging.getLogger(__name__)


def normalize_ip(ip_address: str) -> str:
    """Canonical text form so '::1' and '0:0::1' are the same subject."""
    return str(ipaddress.ip_address(ip_address.strip()))


class AutoBlocklist:
    """Time-boxed IP blocks."""

    async def active_block(
        self, db: AsyncSession, ip_address: str, now: datetime | None = None
    ) -> BlockedIP | None:
        now = now or utc_now()
        result = await db.execute(
            select(BlockedIP)
            .where(BlockedIP.ip_address == ip_address, BlockedIP.blocked_until > now)
            .order_by(BlockedIP.blocked_until.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def insert(
        self,
        db: AsyncSession,
        ip_address: str,
        reason: str,
        duration_seconds: int,
        auto: bool = True,
        blocked_by: str | None = None,
        now: datetime | None = None,
    ) -> BlockedIP:
        """Block an IP for ``duration_seconds`` from now. The caller commits."""
        block, _ = await self.block(db, ip_address, reason, duration_seconds, auto, blocked_by, now)
        return block

    async def block(
        self,
        db: AsyncSession,
        ip_address: str,
        reason: str,
        duration_seconds: int,
        auto: bool = True,
        blocked_by: str | None = None,
        now: datetime | None = None,
    ) -> tuple[BlockedIP, bool]:
        """
        Like ``insert`` but also reports whether a new row was created
        (False when an active block was extended or left as is).

        Serialized per IP so two concurrent threshold trips produce one row.
        """
        now = now or utc_now()
        blocked_until = now + timedelta(seconds=duration_seconds)

        await lock_subject(db, "ip", ip_address)
        existing = await self.active_block(db, ip_address, now)

        if existing:
            if blocked_until > existing.blocked_until:
                existing.blocked_until = blocked_until
                existing.reason = reason
                await db.flush()
                logger.info("Extended block on %s until %s", ip_address, blocked_until.isoformat())
            return existing, False

        block = BlockedIP(
            ip_address=ip_address,
            blocked_until=blocked_until,
            reason=reason,
            auto_blocked=auto,
            blocked_by=blocked_by,
            blocked_at=now,
        )
        db.add(block)
        await db.flush()
        logger.warning(
            "Blocked IP %s until %s (%s)",
            ip_address,
            blocked_until.isoformat(),
            "auto" if auto else f"manual by {blocked_by}",
        )
        return block, True

    async def list_active(self, db: AsyncSession, now: datetime | None = None) -> list[BlockedIP]:
        now = now or utc_now()
        result = await db.execute(
            select(BlockedIP).where(BlockedIP.blocked_until > now).order_by(BlockedIP.blocked_at.desc())
        )
        return list(result.scalars().all())

    async def unblock(self, db: AsyncSession, ip_address: str, now: datetime | None = None) -> int:
        """End every active block on an IP. Rows are kept until retention removes them."""
        now = now or utc_now()
        result = await db.execute(
            update(BlockedIP)
            .where(BlockedIP.ip_address == ip_address, BlockedIP.blocked_until > now)
            .values(blocked_until=now)
        )
        if result.rowcount:
            logger.info("Unblocked IP %s", ip_address)
        return result.rowcount

    async def purge_expired(self, db: AsyncSession, now: datetime | None = None) -> int:
        now = now or utc_now()
        result = await db.execute(delete(BlockedIP).where(BlockedIP.blocked_until < now))
        return result.rowcount


class Whitelist:
    """Administrator-managed trusted IPs."""

    async def contains(self, db: AsyncSession, ip_address: str | None) -> bool:
        if not ip_address:
            return False
        result = await db.execute(
            select(IPWhitelistEntry.id).where(IPWhitelistEntry.ip_address == ip_address).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def add(
        self,
        db: AsyncSession,
        ip_address: str,
        description: str | None = None,
        added_by: str | None = None,
    ) -> IPWhitelistEntry | None:
        """
        Add an IP. Returns None when it is already whitelisted. The caller commits.

        A concurrent add of the same IP trips the unique constraint; the
        session is rolled back and None is returned.
        """
        if await self.contains(db, ip_address):
            return None
        entry = IPWhitelistEntry(ip_address=ip_address, description=description, added_by=added_by)
        db.add(entry)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.info("IP %s was whitelisted concurrently", ip_address)
            return None
        logger.info("Whitelisted IP %s (added by %s)", ip_address, added_by or "unknown")
        return entry

    async def remove(self, db: AsyncSession, entry_id: uuid.UUID) -> bool:
        result = await db.execute(delete(IPWhitelistEntry).where(IPWhitelistEntry.id == entry_id))
        return bool(result.rowcount)

    async def list(self, db: AsyncSession) -> list[IPWhitelistEntry]:
        result = await db.execute(select(IPWhitelistEntry).order_by(IPWhitelistEntry.created_at.desc()))
        return list(result.scalars().all())
