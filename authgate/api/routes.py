from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from authgate.api.schemas import (
    Envelope,
    QuotaResponse,
    RateLimitInfoResponse,
    RateLimitResetRequest,
    RateLimitResetResponse,
    RevokeRequest,
    SessionResponse,
    UnrevokeRequest,
    UserSummary,
    ValidateResponse,
    WhoAmIResponse,
)
from authgate.config import FailPolicy
from authgate.logging import get_logger
from authgate.service.admin import has_admin_claim
from authgate.service.errors import BadRequestError
from authgate.service.models import AuthContext, RequestInfo
from authgate.service.rate_limit import (
    EndpointRateLimiter,
    RateLimitResult,
    quota_headers,
)
from authgate.service.results import Deny
from authgate.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


def request_info(request: Request) -> RequestInfo:
    return RequestInfo(
        authorization=request.headers.get("Authorization"),
        ip=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("User-Agent") or "unknown",
    )


async def require_auth(request: Request) -> AuthContext:
    """Admit only requests that pass every gateway stage."""
    runtime = get_runtime()
    result = await runtime.gateway.authenticate(request_info(request))
    if isinstance(result, Deny):
        raise result.error
    request.state.auth_context = result.value
    return result.value


async def optional_auth(request: Request) -> Optional[AuthContext]:
    """Attach a context when the caller authenticates; otherwise continue anonymously."""
    runtime = get_runtime()
    result = await runtime.gateway.authenticate_optional(request_info(request))
    if isinstance(result, Deny):
        raise result.error
    request.state.auth_context = result.value
    return result.value


async def require_admin(
    request: Request, context: AuthContext = Depends(require_auth)
) -> AuthContext:
    result = get_runtime().admin.authorize(context)
    if isinstance(result, Deny):
        raise result.error
    return result.value


def endpoint_rate_limit(
    max_requests: Optional[int] = None,
    window_ms: Optional[int] = None,
    *,
    fail_policy: Optional[FailPolicy] = None,
    scope: Optional[str] = None,
    profile: str = "api",
):
    """Build a per-route rate limit dependency.

    Unset values come from the ``<profile>_rate_limit_*`` settings, read per
    request. Declare it after the route's auth dependency so authenticated
    callers are counted by subject rather than by address.
    """

    async def _enforce(request: Request, response: Response) -> RateLimitResult:
        runtime = get_runtime()
        settings = runtime.settings
        limiter = EndpointRateLimiter(
            runtime.limiter,
            max_requests
            if max_requests is not None
            else getattr(settings, f"{profile}_rate_limit_requests"),
            window_ms if window_ms is not None else getattr(settings, f"{profile}_rate_limit_window_ms"),
            fail_policy=fail_policy or getattr(settings, f"{profile}_rate_limit_fail_policy"),
            scope=scope,
        )
        info = request_info(request)
        context = getattr(request.state, "auth_context", None)
        result = await limiter.check(context, info.ip, info.user_agent)
        if isinstance(result, Deny):
            raise result.error
        for name, value in quota_headers(result.value).items():
            response.headers[name] = value
        return result.value

    return _enforce


revoke_rate_limit = endpoint_rate_limit(profile="revoke", scope="revoke")
api_rate_limit = endpoint_rate_limit(scope="api")
admin_rate_limit = endpoint_rate_limit(scope="admin")


def _user_summary(context: AuthContext) -> UserSummary:
    claims = context.claims
    return UserSummary(
        id=context.subject_id,
        email=claims.email,
        role=claims.role or claims.app_role,
        is_admin=has_admin_claim(claims),
    )


@router.post("/auth/revoke", response_model=Envelope, tags=["auth"])
async def revoke_token(
    body: Optional[RevokeRequest] = None,
    context: AuthContext = Depends(require_auth),
    quota: RateLimitResult = Depends(revoke_rate_limit),
):
    """Blacklist a token until it would have expired anyway."""
    await get_runtime().revocation.revoke(body.token if body else None, actor=context)
    return Envelope(success=True, data={"message": "Token revoked successfully"})


@router.post("/auth/validate", response_model=Envelope, tags=["auth"])
async def validate_token(
    context: AuthContext = Depends(require_auth),
    quota: RateLimitResult = Depends(api_rate_limit),
):
    return Envelope(
        success=True,
        data=ValidateResponse(
            user=_user_summary(context), expires_at=context.token_expires_at
        ),
    )


@router.get("/auth/session", response_model=Envelope, tags=["auth"])
async def session_info(
    context: AuthContext = Depends(require_auth),
    quota: RateLimitResult = Depends(api_rate_limit),
):
    return Envelope(
        success=True,
        data=SessionResponse(
            user=_user_summary(context),
            authenticated_at=context.authenticated_at,
            expires_at=context.token_expires_at,
            ip=context.ip,
            rate_limit=QuotaResponse(
                limit=quota.limit, remaining=quota.remaining, reset_time=quota.reset_time
            ),
        ),
    )


@router.get("/auth/whoami", response_model=Envelope, tags=["auth"])
async def whoami(
    context: Optional[AuthContext] = Depends(optional_auth),
    quota: RateLimitResult = Depends(api_rate_limit),
):
    return Envelope(
        success=True,
        data=WhoAmIResponse(
            authenticated=context is not None,
            user=_user_summary(context) if context is not None else None,
        ),
    )


@router.post("/admin/unrevoke", response_model=Envelope, tags=["admin"])
async def unrevoke_token(
    body: Optional[UnrevokeRequest] = None,
    context: AuthContext = Depends(require_admin),
    quota: RateLimitResult = Depends(admin_rate_limit),
):
    removed = await get_runtime().revocation.unrevoke(
        body.token if body else None, actor=context
    )
    return Envelope(success=True, data={"removed": removed})


@router.post("/admin/rate-limits/reset", response_model=Envelope, tags=["admin"])
async def reset_rate_limit(
    body: RateLimitResetRequest,
    context: AuthContext = Depends(require_admin),
    quota: RateLimitResult = Depends(admin_rate_limit),
):
    reset = await get_runtime().limiter.reset(body.identifier)
    logger.info(
        "rate_limit_reset",
        admin_id=context.subject_id,
        identifier=body.identifier[:50],
        reset=reset,
    )
    return Envelope(
        success=True,
        data=RateLimitResetResponse(identifier=body.identifier, reset=reset),
    )


@router.get("/admin/rate-limits/{identifier}", response_model=Envelope, tags=["admin"])
async def rate_limit_info(
    identifier: str,
    limit: Optional[int] = Query(None, ge=0),
    window_ms: Optional[int] = Query(None, ge=1),
    context: AuthContext = Depends(require_admin),
    quota: RateLimitResult = Depends(admin_rate_limit),
):
    """Current window for ``identifier`` without counting a request.

    ``limit`` and ``window_ms`` default to the general API profile.
    """
    identifier = identifier.strip()
    if not identifier:
        raise BadRequestError("identifier must not be blank")
    runtime = get_runtime()
    settings = runtime.settings
    result = await runtime.limiter.peek(
        identifier,
        limit if limit is not None else settings.api_rate_limit_requests,
        window_ms if window_ms is not None else settings.api_rate_limit_window_ms,
    )
    return Envelope(
        success=True,
        data=RateLimitInfoResponse(
            identifier=identifier,
            allowed=result.allowed,
            limit=result.limit,
            remaining=result.remaining,
            reset_time=result.reset_time,
            degraded=result.degraded,
        ),
    )
