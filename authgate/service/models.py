from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional


def _freeze(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Claims:
    """Identity claims with explicit optional role locations.

    ``role`` is the user-level role, ``app_role`` the application-level role
    and ``is_admin`` the boolean admin flag. ``raw`` keeps the provider's
    original document for display only.
    """

    role: Optional[str] = None
    app_role: Optional[str] = None
    is_admin: Optional[bool] = None
    email: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=lambda: _freeze(None))

    @classmethod
    def from_user_document(cls, user: Mapping[str, Any]) -> "Claims":
        """Build claims from a provider user document.

        Reads ``user_metadata.role``, ``app_metadata.role`` and
        ``user_metadata.admin``; anything not of the expected type is treated
        as absent.
        """
        user_meta = user.get("user_metadata")
        app_meta = user.get("app_metadata")
        user_meta = user_meta if isinstance(user_meta, Mapping) else {}
        app_meta = app_meta if isinstance(app_meta, Mapping) else {}
        role = user_meta.get("role")
        app_role = app_meta.get("role")
        admin_flag = user_meta.get("admin")
        email = user.get("email")
        return cls(
            role=role if isinstance(role, str) else None,
            app_role=app_role if isinstance(app_role, str) else None,
            is_admin=admin_flag if isinstance(admin_flag, bool) else None,
            email=email if isinstance(email, str) else None,
            raw=_freeze(user),
        )


@dataclass(frozen=True)
class VerifiedIdentity:
    subject_id: str
    claims: Claims = field(default_factory=Claims)
    expires_at: Optional[datetime] = None
    banned_until: Optional[datetime] = None

    def is_banned(self, now: datetime) -> bool:
        if self.banned_until is None:
            return False
        banned_until = self.banned_until
        if banned_until.tzinfo is None:
            banned_until = banned_until.replace(tzinfo=timezone.utc)
        return banned_until > now


@dataclass(frozen=True)
class RequestInfo:
    """The slice of an inbound request the gateway looks at."""

    authorization: Optional[str]
    ip: str = "unknown"
    user_agent: str = "unknown"


@dataclass(frozen=True)
class AuthContext:
    subject_id: str
    claims: Claims
    ip: str
    user_agent: str
    authenticated_at: datetime
    token_expires_at: Optional[datetime] = None
