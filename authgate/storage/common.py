"""Store contract and key helpers shared by the Redis and in-memory backends."""

from __future__ import annotations

import hashlib
from typing import Protocol, Tuple

RATE_LIMIT_PREFIX = "rate_limit:"
BLACKLIST_PREFIX = "blacklisted_token:"
# Identifiers longer than this are truncated before hashing
MAX_IDENTIFIER_LENGTH = 256


def normalize_identifier(identifier: str) -> str:
    """Map equivalent rate-limit subjects to the same string.

    Strips surrounding whitespace, lower-cases and truncates so that, e.g.,
    an IPv6 address written in upper case and one in lower case share a key.
    """

    return identifier.strip().lower()[:MAX_IDENTIFIER_LENGTH]


def rate_limit_key(identifier: str) -> str:
    """Hash a normalized identifier so user input never shapes the key."""

    digest = hashlib.sha256(normalize_identifier(identifier).encode()).hexdigest()
    return f"{RATE_LIMIT_PREFIX}{digest}"


def blacklist_key(token_key: str) -> str:
    return f"{BLACKLIST_PREFIX}{token_key}"


class GatewayStore(Protocol):
    """Primitives the gateway needs from the shared key-value store.

    Every method raises ``StoreUnavailable`` when the store cannot be reached
    or does not answer within its timeout.
    """

    async def increment_rate_counter(
        self, identifier: str, limit: int, window_ms: int
    ) -> Tuple[int, int]:
        """Atomically count one hit; return ``(count, ttl_ms)``."""
        ...

    async def get_rate_counter(self, identifier: str) -> Tuple[int, int]: ...

    async def reset_rate_counter(self, identifier: str) -> bool: ...

    async def blacklist_token(self, token_key: str, ttl_seconds: int) -> None: ...

    async def is_token_blacklisted(self, token_key: str) -> bool: ...

    async def unblacklist_token(self, token_key: str) -> bool: ...

    def verify_connection(self) -> None: ...

    async def close(self) -> None: ...
