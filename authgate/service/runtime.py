from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from authgate.config import Settings, get_settings, reset_settings_cache
from authgate.logging import get_logger
from authgate.service.admin import AdminAuthorizer
from authgate.service.blacklist import BlacklistStore
from authgate.service.events import SecurityEventLogger
from authgate.service.gateway import AuthGateway
from authgate.service.identity import (
    HttpIdentityVerifier,
    IdentityVerifier,
    UnconfiguredIdentityVerifier,
)
from authgate.service.rate_limit import RateLimiter
from authgate.service.revocation import RevocationService
from authgate.storage.common import GatewayStore
from authgate.storage.memory import MemoryCache
from authgate.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a store URL before it is logged.

    Example: redis://:secret@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


def _build_store(settings: Settings) -> GatewayStore:
    store: Optional[GatewayStore] = None
    redis_error: Exception | None = None
    if settings.redis_url:
        try:
            # Sync client in test mode avoids binding to a pytest event loop
            if settings.test_mode:
                candidate: GatewayStore = SyncRedisCache(
                    settings.redis_url, socket_timeout=settings.store_timeout_seconds
                )
            else:
                candidate = RedisCache(
                    settings.redis_url, socket_timeout=settings.store_timeout_seconds
                )
            candidate.verify_connection()
            store = candidate
        except Exception as exc:
            redis_error = exc

    if store is not None:
        return store

    if not settings.test_mode and not settings.allow_redis_fallback_dev:
        raise RuntimeError(
            "Redis is required for shared rate limits and the token blacklist; "
            "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
        ) from redis_error

    fallback_mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error) if redis_error else "redis_url_missing",
        message=(
            f"Running without Redis under {fallback_mode}; rate limits and revocations "
            "are per-process only."
        ),
        mode=fallback_mode,
    )
    return MemoryCache()


def _build_verifier(settings: Settings) -> IdentityVerifier:
    if settings.identity_url:
        return HttpIdentityVerifier(
            settings.identity_url,
            api_key=settings.identity_api_key,
            timeout=settings.identity_timeout_seconds,
        )
    logger.warning(
        "identity_provider_unconfigured",
        message="IDENTITY_URL is not set; every bearer token will be rejected.",
    )
    return UnconfiguredIdentityVerifier()


class Runtime:
    """Holds the singleton gateway components for the FastAPI app."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[GatewayStore] = None,
        verifier: Optional[IdentityVerifier] = None,
    ):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            test_mode=self.settings.test_mode,
            identity_configured=bool(self.settings.identity_url),
        )
        self.store = store if store is not None else _build_store(self.settings)
        self.verifier = verifier if verifier is not None else _build_verifier(self.settings)

        self.events = SecurityEventLogger()
        self.limiter = RateLimiter(self.store, events=self.events)
        self.blacklist = BlacklistStore(
            self.store, default_ttl_seconds=self.settings.blacklist_default_ttl_seconds
        )
        self.gateway = AuthGateway(
            limiter=self.limiter,
            blacklist=self.blacklist,
            verifier=self.verifier,
            events=self.events,
            auth_rate_limit_requests=self.settings.auth_rate_limit_requests,
            auth_rate_limit_window_ms=self.settings.auth_rate_limit_window_ms,
            auth_rate_limit_fail_policy=self.settings.auth_rate_limit_fail_policy,
            blacklist_fail_policy=self.settings.blacklist_fail_policy,
            verify_timeout_seconds=self.settings.identity_timeout_seconds,
        )
        self.admin = AdminAuthorizer(events=self.events)
        self.revocation = RevocationService(self.blacklist, events=self.events)

        logger.info(
            "runtime_initialized",
            store_type=type(self.store).__name__,
            verifier_type=type(self.verifier).__name__,
        )

    async def close(self) -> None:
        await self.verifier.close()
        await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def _close_quietly(previous: Runtime) -> None:
    try:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(previous.close())
        else:
            loop.create_task(previous.close())
    except Exception as exc:
        # Connections may already be closed
        logger.debug("runtime_close_failed", error_type=type(exc).__name__)


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime singleton from a freshly read environment."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            _close_quietly(runtime)
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
