from __future__ import annotations

from typing import Optional


class StoreUnavailable(Exception):
    """Raised when the shared key-value store cannot be reached in time.

    Wraps connection failures and timeouts so callers can apply their own
    fail-open or fail-closed policy without depending on client exceptions.
    """

    def __init__(self, message: str, *, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation


__all__ = ["StoreUnavailable"]
