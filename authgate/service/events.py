from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from authgate.logging import get_logger

# User agents are clipped to this length in event details
USER_AGENT_LOG_LENGTH = 50


class SecurityEventType(str, Enum):
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    MISSING_AUTH_HEADER = "MISSING_AUTH_HEADER"
    INVALID_TOKEN_FORMAT = "INVALID_TOKEN_FORMAT"
    BLACKLISTED_TOKEN_USED = "BLACKLISTED_TOKEN_USED"
    FAILED_AUTH_ATTEMPT = "FAILED_AUTH_ATTEMPT"
    BANNED_USER_ATTEMPT = "BANNED_USER_ATTEMPT"
    AUTH_SYSTEM_ERROR = "AUTH_SYSTEM_ERROR"
    OPTIONAL_AUTH_ERROR = "OPTIONAL_AUTH_ERROR"
    ADMIN_CHECK_UNAUTHENTICATED = "ADMIN_CHECK_UNAUTHENTICATED"
    UNAUTHORIZED_ADMIN_ACCESS = "UNAUTHORIZED_ADMIN_ACCESS"
    ADMIN_CHECK_ERROR = "ADMIN_CHECK_ERROR"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    TOKEN_REVOCATION_FAILED = "TOKEN_REVOCATION_FAILED"
    REVOKE_TOKEN_MISSING = "REVOKE_TOKEN_MISSING"
    REVOKE_INVALID_TOKEN = "REVOKE_INVALID_TOKEN"
    TOKEN_UNREVOKED = "TOKEN_UNREVOKED"
    API_RATE_LIMIT_EXCEEDED = "API_RATE_LIMIT_EXCEEDED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


@dataclass(frozen=True)
class SecurityEvent:
    type: SecurityEventType
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)


def clip_user_agent(user_agent: Optional[str]) -> str:
    return (user_agent or "unknown")[:USER_AGENT_LOG_LENGTH]


class SecurityEventLogger:
    """Fire-and-forget emitter for security-relevant gateway events.

    Emission is synchronous and side-effect only. A failure while building or
    writing an event is dropped so that telemetry can never change the
    outcome of a request.
    """

    def __init__(self, logger: Any = None) -> None:
        self.logger = logger or get_logger("authgate.security")

    def emit(self, event_type: SecurityEventType, **details: Any) -> Optional[SecurityEvent]:
        try:
            event = SecurityEvent(type=SecurityEventType(event_type), details=dict(details))
            log_fn = (
                self.logger.error
                if event.type
                in (SecurityEventType.AUTH_SYSTEM_ERROR, SecurityEventType.ADMIN_CHECK_ERROR)
                else self.logger.warning
            )
            log_fn(
                "security_event",
                security_event=event.type.value,
                event_timestamp=event.timestamp.isoformat(),
                **event.details,
            )
            return event
        except Exception:  # noqa: BLE001
            return None
