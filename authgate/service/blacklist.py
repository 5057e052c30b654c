from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from authgate.logging import get_logger
from authgate.service.tokens import read_unverified_expiry, token_key
from authgate.storage.common import GatewayStore

logger = get_logger(__name__)

DEFAULT_BLACKLIST_TTL_SECONDS = 86_400


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BlacklistStore:
    """Revocation set keyed by the token's SHA-256, with per-entry expiry.

    Store failures propagate as ``StoreUnavailable`` so each caller can apply
    its own fail policy.
    """

    def __init__(
        self,
        store: GatewayStore,
        *,
        default_ttl_seconds: int = DEFAULT_BLACKLIST_TTL_SECONDS,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.default_ttl_seconds = max(1, int(default_ttl_seconds))
        self._now = now

    def ttl_for(self, token: str, expires_at: Optional[datetime] = None) -> int:
        """Seconds a revocation must outlive to cover the token's lifetime.

        Uses ``expires_at`` when given, otherwise the token's own ``exp``
        claim. The default applies only when neither is known. Returns 0 for
        an already-expired token.
        """
        expiry = expires_at or read_unverified_expiry(token)
        if expiry is None:
            return self.default_ttl_seconds
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        remaining = int((expiry - self._now()).total_seconds())
        if remaining <= 0:
            return 0
        return remaining

    async def add(self, token: str, *, expires_at: Optional[datetime] = None) -> None:
        """Blacklist ``token``; re-adding an existing entry is a no-op success."""
        ttl = self.ttl_for(token, expires_at)
        if ttl <= 0:
            logger.info("blacklist_skip_expired_token")
            return
        await self.store.blacklist_token(token_key(token), ttl)

    async def contains(self, token: str) -> bool:
        return await self.store.is_token_blacklisted(token_key(token))

    async def remove(self, token: str) -> bool:
        """Lift a revocation; True if an entry was present."""
        return await self.store.unblacklist_token(token_key(token))
