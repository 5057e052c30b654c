from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Envelope(BaseModel):
    """Response envelope shared by every route and error handler."""

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None


class RevokeRequest(BaseModel):
    # Presence and shape are checked by the revocation service so that a
    # missing token gets its own message instead of a generic 400.
    token: Optional[str] = Field(default=None, max_length=8192)

    model_config = ConfigDict(extra="forbid")


class UnrevokeRequest(RevokeRequest):
    pass


class RateLimitResetRequest(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=512)

    model_config = ConfigDict(extra="forbid")

    @field_validator("identifier")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("identifier must not be blank")
        return value


class UserSummary(BaseModel):
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    is_admin: bool = False


class QuotaResponse(BaseModel):
    limit: int
    remaining: int
    reset_time: datetime


class ValidateResponse(BaseModel):
    valid: bool = True
    user: UserSummary
    expires_at: Optional[datetime] = None


class SessionResponse(BaseModel):
    user: UserSummary
    authenticated_at: datetime
    expires_at: Optional[datetime] = None
    ip: str
    rate_limit: Optional[QuotaResponse] = None


class WhoAmIResponse(BaseModel):
    authenticated: bool
    user: Optional[UserSummary] = None


class RateLimitResetResponse(BaseModel):
    identifier: str
    reset: bool


class RateLimitInfoResponse(BaseModel):
    identifier: str
    allowed: bool
    limit: int
    remaining: int
    reset_time: datetime
    degraded: bool = False
