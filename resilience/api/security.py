"""IP whitelist and blocklist administration."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.api.deps import get_db, require_service_role
from resilience.core.errors import conflict, not_found, validation_error
from resilience.schemas.security import (
    BlockedIPCreate,
    BlockedIPResponse,
    WhitelistEntryCreate,
    WhitelistEntryResponse,
)
from resilience.services.blocklist import AutoBlocklist, Whitelist, normalize_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["security"], dependencies=[Depends(require_service_role)])

whitelist = Whitelist()
blocklist = AutoBlocklist()


@router.get("/whitelist", response_model=list[WhitelistEntryResponse])
async def list_whitelist(db: Annotated[AsyncSession, Depends(get_db)]):
    return await whitelist.list(db)


@router.post("/whitelist", response_model=WhitelistEntryResponse, status_code=status.HTTP_201_CREATED)
async def add_whitelist_entry(
    data: WhitelistEntryCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    entry = await whitelist.add(db, data.ip_address, data.description, data.added_by)
    if entry is None:
        raise conflict("IP is already whitelisted", {"ip_address": data.ip_address})
    await db.commit()
    return entry


@router.delete("/whitelist/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_whitelist_entry(
    entry_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    if not await whitelist.remove(db, entry_id):
        raise not_found("Whitelist entry", {"id": str(entry_id)})
    await db.commit()
    logger.info("Removed whitelist entry %s", entry_id)


@router.get("/blocked-ips", response_model=list[BlockedIPResponse])
async def list_blocked_ips(db: Annotated[AsyncSession, Depends(get_db)]):
    """Currently active blocks."""
    return await blocklist.list_active(db)


@router.post("/blocked-ips", response_model=BlockedIPResponse, status_code=status.HTTP_201_CREATED)
async def block_ip(
    data: BlockedIPCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    block = await blocklist.insert(
        db,
        data.ip_address,
        reason=data.reason,
        duration_seconds=data.duration_seconds,
        auto=False,
        blocked_by=data.blocked_by,
    )
    await db.commit()
    return block


@router.delete("/blocked-ips/{ip_address}", status_code=status.HTTP_204_NO_CONTENT)
async def unblock_ip(
    ip_address: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        ip_address = normalize_ip(ip_address)
    except ValueError:
        raise validation_error("Invalid IP address", {"ip_address": ip_address})

    if not await blocklist.unblock(db, ip_address):
        raise not_found("Active block", {"ip_address": ip_address})
    await db.commit()
