from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from authgate.config import FailPolicy
from authgate.logging import get_logger, sanitize_error_message
from authgate.service.blacklist import BlacklistStore
from authgate.service.errors import (
    AccountBannedError,
    AuthenticationError,
    BlacklistedError,
    MalformedTokenError,
    MissingHeaderError,
    RateLimitedError,
    VerificationFailedError,
)
from authgate.service.events import (
    SecurityEventLogger,
    SecurityEventType,
    clip_user_agent,
)
from authgate.service.identity import IdentityVerifier, VerificationError
from authgate.service.models import AuthContext, RequestInfo, VerifiedIdentity
from authgate.service.rate_limit import RateLimiter, quota_headers
from authgate.service.results import Continue, Deny, StageResult
from authgate.service.tokens import is_valid_token_format, token_fingerprint
from authgate.storage.errors import StoreUnavailable

logger = get_logger(__name__)

BEARER_PREFIX = "bearer "
# Client signature length folded into the pre-authentication rate-limit key
AUTH_USER_AGENT_LENGTH = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PipelineState:
    """Request-local values accumulated while the pipeline runs."""

    request: RequestInfo
    token: Optional[str] = None
    identity: Optional[VerifiedIdentity] = None


Stage = Callable[[PipelineState], Awaitable[StageResult[PipelineState]]]


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    if not header.lower().startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


class AuthGateway:
    """Admission pipeline for bearer-token requests.

    Stages run in a fixed order and each returns ``Continue`` or ``Deny``:

    1. coarse rate limit keyed by address and client signature
    2. bearer header present
    3. token shape
    4. blacklist lookup (before any remote call)
    5. identity verification
    6. account status (ban window)

    On success an immutable AuthContext is produced. The gateway holds no
    per-request state; everything shared lives in the store.
    """

    def __init__(
        self,
        *,
        limiter: RateLimiter,
        blacklist: BlacklistStore,
        verifier: IdentityVerifier,
        events: Optional[SecurityEventLogger] = None,
        auth_rate_limit_requests: int = 50,
        auth_rate_limit_window_ms: int = 60_000,
        auth_rate_limit_fail_policy: FailPolicy = FailPolicy.CLOSED,
        blacklist_fail_policy: FailPolicy = FailPolicy.CLOSED,
        verify_timeout_seconds: float = 5.0,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.limiter = limiter
        self.blacklist = blacklist
        self.verifier = verifier
        self.events = events or SecurityEventLogger()
        self.auth_rate_limit_requests = auth_rate_limit_requests
        self.auth_rate_limit_window_ms = auth_rate_limit_window_ms
        self.auth_rate_limit_fail_policy = auth_rate_limit_fail_policy
        self.blacklist_fail_policy = blacklist_fail_policy
        self.verify_timeout_seconds = verify_timeout_seconds
        self._now = now

    @property
    def stages(self) -> List[Stage]:
        return [
            self.check_rate_limit,
            self.require_bearer_header,
            self.check_token_format,
            self.check_blacklist,
            self.verify_identity,
            self.check_account_status,
        ]

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def check_rate_limit(self, state: PipelineState) -> StageResult[PipelineState]:
        request = state.request
        identifier = (
            f"{request.ip}:auth:{(request.user_agent or 'unknown')[:AUTH_USER_AGENT_LENGTH]}"
        )
        result = await self.limiter.check_and_increment(
            identifier,
            self.auth_rate_limit_requests,
            self.auth_rate_limit_window_ms,
            fail_policy=self.auth_rate_limit_fail_policy,
        )
        if result.allowed:
            return Continue(state)
        return Deny(
            RateLimitedError(
                "Too many authentication attempts. Please try again later.",
                detail={"headers": quota_headers(result)},
            ),
            event=SecurityEventType.RATE_LIMIT_EXCEEDED,
            details={
                "identifier": identifier[:50],
                "ip": request.ip,
                "user_agent": clip_user_agent(request.user_agent),
                "degraded": result.degraded,
            },
        )

    async def require_bearer_header(self, state: PipelineState) -> StageResult[PipelineState]:
        token = extract_bearer(state.request.authorization)
        if token is None:
            return Deny(
                MissingHeaderError("Access token required"),
                event=SecurityEventType.MISSING_AUTH_HEADER,
                details=self._client_details(state),
            )
        return Continue(replace(state, token=token))

    async def check_token_format(self, state: PipelineState) -> StageResult[PipelineState]:
        if not is_valid_token_format(state.token):
            return Deny(
                MalformedTokenError("Invalid token format"),
                event=SecurityEventType.INVALID_TOKEN_FORMAT,
                details=self._client_details(state),
            )
        return Continue(state)

    async def check_blacklist(self, state: PipelineState) -> StageResult[PipelineState]:
        try:
            revoked = await self.blacklist.contains(state.token)
        except StoreUnavailable as exc:
            self.events.emit(
                SecurityEventType.STORE_UNAVAILABLE,
                operation=exc.operation or "is_token_blacklisted",
                fail_policy=self.blacklist_fail_policy.value,
                ip=state.request.ip,
                error=sanitize_error_message(str(exc)),
            )
            if self.blacklist_fail_policy is FailPolicy.OPEN:
                return Continue(state)
            return Deny(AuthenticationError("Token validation failed"))
        if revoked:
            return Deny(
                BlacklistedError("Token has been revoked"),
                event=SecurityEventType.BLACKLISTED_TOKEN_USED,
                details={**self._client_details(state), "fingerprint": token_fingerprint(state.token)},
            )
        return Continue(state)

    async def verify_identity(self, state: PipelineState) -> StageResult[PipelineState]:
        reason: Optional[str] = None
        identity: Optional[VerifiedIdentity] = None
        try:
            identity = await asyncio.wait_for(
                self.verifier.verify(state.token), self.verify_timeout_seconds
            )
        except VerificationError as exc:
            reason = exc.message
        except asyncio.TimeoutError:
            reason = "identity provider timed out"
        if reason is None and (identity is None or not identity.subject_id):
            reason = "No user found"
        if reason is not None:
            return Deny(
                VerificationFailedError("Invalid or expired token"),
                event=SecurityEventType.FAILED_AUTH_ATTEMPT,
                details={
                    **self._client_details(state),
                    "fingerprint": token_fingerprint(state.token),
                    "error": reason,
                },
            )
        return Continue(replace(state, identity=identity))

    async def check_account_status(self, state: PipelineState) -> StageResult[PipelineState]:
        identity = state.identity
        if identity is not None and identity.is_banned(self._now()):
            return Deny(
                AccountBannedError("Account temporarily suspended"),
                event=SecurityEventType.BANNED_USER_ATTEMPT,
                details={
                    "user_id": identity.subject_id,
                    "ip": state.request.ip,
                    "banned_until": identity.banned_until.isoformat(),
                },
            )
        return Continue(state)

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    @staticmethod
    def _client_details(state: PipelineState) -> dict:
        return {
            "ip": state.request.ip,
            "user_agent": clip_user_agent(state.request.user_agent),
        }

    @staticmethod
    async def run_stages(
        state: PipelineState, stages: List[Stage]
    ) -> StageResult[PipelineState]:
        for stage in stages:
            result = await stage(state)
            if isinstance(result, Deny):
                return result
            state = result.value
        return Continue(state)

    def _emit_denial(self, denial: Deny) -> None:
        if denial.event is not None:
            self.events.emit(denial.event, **denial.details)

    def _build_context(self, state: PipelineState) -> AuthContext:
        identity = state.identity
        return AuthContext(
            subject_id=identity.subject_id,
            claims=identity.claims,
            ip=state.request.ip,
            user_agent=state.request.user_agent,
            authenticated_at=self._now(),
            token_expires_at=identity.expires_at,
        )

    async def authenticate(self, request: RequestInfo) -> StageResult[AuthContext]:
        """Run the full pipeline; every failure is terminal."""
        try:
            result = await self.run_stages(PipelineState(request), self.stages)
        except Exception as exc:
            logger.exception(
                "auth_pipeline_failed",
                error_type=type(exc).__name__,
                ip=request.ip,
            )
            self.events.emit(
                SecurityEventType.AUTH_SYSTEM_ERROR,
                error_type=type(exc).__name__,
                error=sanitize_error_message(str(exc)),
            )
            return Deny(AuthenticationError("Token validation failed"))
        if isinstance(result, Deny):
            self._emit_denial(result)
            return result
        return Continue(self._build_context(result.value))

    async def authenticate_optional(
        self, request: RequestInfo
    ) -> StageResult[Optional[AuthContext]]:
        """Like ``authenticate`` but failures after the rate limit fall back to anonymous."""
        stages = self.stages
        try:
            limited = await stages[0](PipelineState(request))
            if isinstance(limited, Deny):
                self._emit_denial(limited)
                return limited
            result = await self.run_stages(limited.value, stages[1:])
        except Exception as exc:
            logger.warning(
                "optional_auth_failed",
                error_type=type(exc).__name__,
                ip=request.ip,
            )
            self.events.emit(
                SecurityEventType.OPTIONAL_AUTH_ERROR,
                error_type=type(exc).__name__,
                error=sanitize_error_message(str(exc)),
            )
            return Continue(None)
        if isinstance(result, Deny):
            return Continue(None)
        return Continue(self._build_context(result.value))
