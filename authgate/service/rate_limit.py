from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Callable, Dict, Optional

from authgate.config import FailPolicy
from authgate.logging import get_logger, sanitize_error_message
from authgate.service.errors import RateLimitedError
from authgate.service.events import SecurityEventLogger, SecurityEventType
from authgate.service.models import AuthContext
from authgate.service.results import Continue, Deny, StageResult
from authgate.storage.common import GatewayStore
from authgate.storage.errors import StoreUnavailable

logger = get_logger(__name__)

DEFAULT_WINDOW_MS = 60_000
# Client signature length folded into anonymous endpoint identifiers
ENDPOINT_USER_AGENT_LENGTH = 100


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: datetime
    limit: int
    # Set when the store was unreachable and the fail policy made the call
    degraded: bool = False


class RateLimiter:
    """Fixed-window request counting against the shared store.

    Each check is a single atomic round trip; the limiter itself holds no
    counters and takes no locks.
    """

    def __init__(
        self,
        store: GatewayStore,
        *,
        events: Optional[SecurityEventLogger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.events = events or SecurityEventLogger()
        self._clock = clock

    def _reset_at(self, ttl_ms: int) -> datetime:
        return datetime.fromtimestamp(
            self._clock() + max(0, ttl_ms) / 1000.0, tz=timezone.utc
        )

    @staticmethod
    def _window(identifier: str, window_ms: int) -> int:
        if window_ms <= 0:
            logger.warning(
                "rate_limit_invalid_window",
                identifier=identifier[:50],
                window_ms=window_ms,
                message="Invalid rate limit window; defaulting to 60 seconds",
            )
            return DEFAULT_WINDOW_MS
        return window_ms

    async def check_and_increment(
        self,
        identifier: str,
        limit: int,
        window_ms: int,
        *,
        fail_policy: Optional[FailPolicy],
    ) -> RateLimitResult:
        """Count one request for ``identifier`` and decide whether it may pass.

        Args:
            identifier: Rate limit subject, e.g. ``"ip:1.2.3.4"``
            limit: Maximum requests per window; ``<= 0`` disables the check
            window_ms: Window length in milliseconds
            fail_policy: Decision when the store is unreachable. ``None``
                means no policy was configured and is treated as closed.

        Returns:
            RateLimitResult; ``remaining`` is ``limit - count`` while allowed
            and 0 once the window is exhausted.
        """
        if limit <= 0:
            return RateLimitResult(True, limit, self._reset_at(0), limit)
        window_ms = self._window(identifier, window_ms)
        try:
            count, ttl_ms = await self.store.increment_rate_counter(
                identifier, limit, window_ms
            )
        except StoreUnavailable as exc:
            return self._apply_policy(identifier, limit, window_ms, fail_policy, exc)

        if count > limit:
            return RateLimitResult(False, 0, self._reset_at(ttl_ms), limit)
        return RateLimitResult(True, limit - count, self._reset_at(ttl_ms), limit)

    def _apply_policy(
        self,
        identifier: str,
        limit: int,
        window_ms: int,
        fail_policy: Optional[FailPolicy],
        exc: StoreUnavailable,
    ) -> RateLimitResult:
        policy = fail_policy or FailPolicy.CLOSED
        self.events.emit(
            SecurityEventType.STORE_UNAVAILABLE,
            operation=exc.operation or "increment_rate_counter",
            identifier=identifier[:50],
            fail_policy=policy.value,
            error=sanitize_error_message(str(exc)),
        )
        reset_time = self._reset_at(window_ms)
        if policy is FailPolicy.OPEN:
            return RateLimitResult(True, limit, reset_time, limit, degraded=True)
        return RateLimitResult(False, 0, reset_time, limit, degraded=True)

    async def peek(self, identifier: str, limit: int, window_ms: int) -> RateLimitResult:
        """Report the current window without counting a request."""
        window_ms = self._window(identifier, window_ms)
        try:
            count, ttl_ms = await self.store.get_rate_counter(identifier)
        except StoreUnavailable as exc:
            logger.warning(
                "rate_limit_peek_failed",
                identifier=identifier[:50],
                error=sanitize_error_message(str(exc)),
            )
            return RateLimitResult(True, limit, self._reset_at(window_ms), limit, degraded=True)
        reset_time = self._reset_at(ttl_ms if count else window_ms)
        return RateLimitResult(count < limit, max(0, limit - count), reset_time, limit)

    async def reset(self, identifier: str) -> bool:
        """Drop the counter for ``identifier``; True if one existed."""
        return await self.store.reset_rate_counter(identifier)


def quota_headers(result: RateLimitResult) -> Dict[str, str]:
    """Quota headers clients can use to throttle themselves."""
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(max(0, result.remaining)),
        "X-RateLimit-Reset": format_datetime(result.reset_time, usegmt=True),
    }


class EndpointRateLimiter:
    """Per-route limiter built from ``(max_requests, window_ms)``.

    Authenticated callers are counted by subject id; anonymous callers by
    network address plus a truncated user agent.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        max_requests: int = 100,
        window_ms: int = DEFAULT_WINDOW_MS,
        *,
        fail_policy: FailPolicy,
        scope: Optional[str] = None,
    ) -> None:
        self.limiter = limiter
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.fail_policy = fail_policy
        self.scope = scope

    def identifier_for(
        self, context: Optional[AuthContext], ip: Optional[str], user_agent: Optional[str]
    ) -> str:
        if context is not None:
            identifier = f"user:{context.subject_id}"
        else:
            ua = (user_agent or "unknown")[:ENDPOINT_USER_AGENT_LENGTH]
            identifier = f"ip:{ip or 'unknown'}:ua:{ua}"
        return f"{self.scope}|{identifier}" if self.scope else identifier

    async def check(
        self,
        context: Optional[AuthContext],
        ip: Optional[str],
        user_agent: Optional[str],
    ) -> StageResult[RateLimitResult]:
        identifier = self.identifier_for(context, ip, user_agent)
        result = await self.limiter.check_and_increment(
            identifier, self.max_requests, self.window_ms, fail_policy=self.fail_policy
        )
        if not result.allowed:
            self.limiter.events.emit(
                SecurityEventType.API_RATE_LIMIT_EXCEEDED,
                identifier=identifier[:50],
                user_id=context.subject_id if context else "anonymous",
                ip=ip or "unknown",
            )
            return Deny(
                RateLimitedError(
                    "Rate limit exceeded. Please try again later.",
                    detail={"headers": quota_headers(result)},
                )
            )
        return Continue(result)
