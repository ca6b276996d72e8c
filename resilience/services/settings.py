"""Settings service for retrieving runtime configuration from the database."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.models.setting import Setting

logger = logging.getLogger(__name__)

LOGIN_THROTTLE_KEY = "login_throttle"


async def get_setting(db: AsyncSession, key: str) -> dict | None:
    """Get a setting value by key."""
    result = await db.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()
    return setting.value if setting else None


async def set_setting(db: AsyncSession, key: str, value: dict) -> Setting:
    """Set a setting value by key (create or update)."""
    result = await db.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()

    if setting:
        setting.value = value
    else:
        setting = Setting(key=key, value=value)
        db.add(setting)

    await db.commit()
    await db.refresh(setting)
    logger.info("Setting %s updated", key)
    return setting
