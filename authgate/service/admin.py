from __future__ import annotations

from typing import Optional

from authgate.logging import get_logger
from authgate.service.errors import (
    AdminRequiredError,
    AuthenticationRequiredError,
    ServerError,
)
from authgate.service.events import SecurityEventLogger, SecurityEventType
from authgate.service.models import AuthContext, Claims
from authgate.service.results import Continue, Deny, StageResult

logger = get_logger(__name__)

ADMIN_ROLE = "admin"


def has_admin_claim(claims: Claims) -> bool:
    """Admin if any of the three claim locations says so, in priority order."""
    if claims.role == ADMIN_ROLE:
        return True
    if claims.app_role == ADMIN_ROLE:
        return True
    return claims.is_admin is True


class AdminAuthorizer:
    """Decides admin access from an already-verified context; performs no I/O."""

    def __init__(self, events: Optional[SecurityEventLogger] = None) -> None:
        self.events = events or SecurityEventLogger()

    def authorize(self, context: Optional[AuthContext]) -> StageResult[AuthContext]:
        if context is None:
            self.events.emit(SecurityEventType.ADMIN_CHECK_UNAUTHENTICATED)
            return Deny(AuthenticationRequiredError("Authentication required"))
        try:
            allowed = has_admin_claim(context.claims)
        except Exception as exc:
            logger.exception("admin_check_failed", user_id=context.subject_id)
            self.events.emit(
                SecurityEventType.ADMIN_CHECK_ERROR,
                user_id=context.subject_id,
                error_type=type(exc).__name__,
            )
            return Deny(ServerError("Authorization check failed"))
        if not allowed:
            self.events.emit(
                SecurityEventType.UNAUTHORIZED_ADMIN_ACCESS,
                user_id=context.subject_id,
                email=context.claims.email,
                ip=context.ip,
            )
            return Deny(AdminRequiredError("Admin privileges required"))
        return Continue(context)
