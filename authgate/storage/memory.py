from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Tuple

from authgate.logging import get_logger
from authgate.storage.common import blacklist_key, rate_limit_key


class MemoryCache:
    """In-process stand-in for Redis used in tests and local development.

    Mirrors the RedisCache contract: counters and blacklist entries expire by
    TTL, and every operation is atomic under one lock. State is not shared
    between processes, so this is never a production store.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self.logger = get_logger(__name__)
        self._clock = clock
        # key -> (value, expires_at in ms)
        self._counters: Dict[str, Tuple[int, int]] = {}
        self._entries: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _live_counter(self, key: str, now_ms: int) -> Tuple[int, int] | None:
        record = self._counters.get(key)
        if record is None:
            return None
        if record[1] <= now_ms:
            self._counters.pop(key, None)
            return None
        return record

    def _live_entry(self, key: str, now_ms: int) -> bool:
        expires_at = self._entries.get(key)
        if expires_at is None:
            return False
        if expires_at <= now_ms:
            self._entries.pop(key, None)
            return False
        return True

    def verify_connection(self) -> None:
        return None

    async def increment_rate_counter(
        self, identifier: str, limit: int, window_ms: int
    ) -> Tuple[int, int]:
        key = rate_limit_key(identifier)
        with self._lock:
            now_ms = self._now_ms()
            record = self._live_counter(key, now_ms)
            if record is None:
                count, expires_at = 1, now_ms + window_ms
            else:
                count, expires_at = record
                if count <= limit:
                    count += 1
            self._counters[key] = (count, expires_at)
            return count, expires_at - now_ms

    async def get_rate_counter(self, identifier: str) -> Tuple[int, int]:
        key = rate_limit_key(identifier)
        with self._lock:
            now_ms = self._now_ms()
            record = self._live_counter(key, now_ms)
            if record is None:
                return 0, 0
            return record[0], record[1] - now_ms

    async def reset_rate_counter(self, identifier: str) -> bool:
        key = rate_limit_key(identifier)
        with self._lock:
            return self._counters.pop(key, None) is not None

    async def blacklist_token(self, token_key: str, ttl_seconds: int) -> None:
        key = blacklist_key(token_key)
        with self._lock:
            self._entries[key] = self._now_ms() + max(1, int(ttl_seconds)) * 1000

    async def is_token_blacklisted(self, token_key: str) -> bool:
        key = blacklist_key(token_key)
        with self._lock:
            return self._live_entry(key, self._now_ms())

    async def unblacklist_token(self, token_key: str) -> bool:
        key = blacklist_key(token_key)
        with self._lock:
            present = self._live_entry(key, self._now_ms())
            self._entries.pop(key, None)
            return present

    async def close(self) -> None:
        with self._lock:
            self._counters.clear()
            self._entries.clear()
