"""
Schemas for the login throttling endpoints.

Request bodies use snake_case; responses use the camelCase keys the login
frontend already consumes.
"""

import ipaddress

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def _normalize_ip(value: str | None) -> str | None:
    if value is None or value.strip() == "":
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        raise ValueError("ip_address must be a valid IPv4 or IPv6 address")


class LoginCheckRequest(BaseModel):
    email: EmailStr
    ip_address: str | None = Field(default=None, max_length=255)
    user_agent: str | None = Field(default=None, max_length=500)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("ip_address")
    @classmethod
    def validate_ip(cls, v: str | None) -> str | None:
        return _normalize_ip(v)


class LoginRecordRequest(LoginCheckRequest):
    success: bool


class LoginCheckResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    blocked: bool
    message: str
    failed_attempts: int | None = Field(default=None, serialization_alias="failedAttempts")
    remaining_attempts: int | None = Field(default=None, serialization_alias="remainingAttempts")
    remaining_seconds: int | None = Field(default=None, serialization_alias="remainingSeconds")


class LoginRecordResponse(BaseModel):
    success: bool = True
