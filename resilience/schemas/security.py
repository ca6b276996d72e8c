"""Schemas for IP whitelist/blocklist administration and the retention trigger."""

import ipaddress
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _IPField(BaseModel):
    ip_address: str = Field(max_length=45)

    @field_validator("ip_address")
    @classmethod
    def validate_ip(cls, v: str) -> str:
        try:
            return str(ipaddress.ip_address(v.strip()))
        except ValueError:
            raise ValueError("ip_address must be a valid IPv4 or IPv6 address")


class WhitelistEntryCreate(_IPField):
    description: str | None = Field(default=None, max_length=500)
    added_by: str | None = Field(default=None, max_length=255)


class WhitelistEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ip_address: str
    description: str | None = None
    added_by: str | None = None
    created_at: datetime


class BlockedIPCreate(_IPField):
    reason: str = Field(min_length=1, max_length=500)
    duration_seconds: int = Field(default=1800, ge=60, le=60 * 60 * 24 * 30)
    blocked_by: str | None = Field(default=None, max_length=255)


class BlockedIPResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ip_address: str
    blocked_until: datetime
    reason: str
    auto_blocked: bool
    blocked_by: str | None = None
    blocked_at: datetime


class RetentionRunResponse(BaseModel):
    deleted: dict[str, int]
    total_deleted: int
    errors: dict[str, str]
