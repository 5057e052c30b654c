from __future__ import annotations

from typing import Optional

from authgate.logging import get_logger, sanitize_error_message
from authgate.service.blacklist import BlacklistStore
from authgate.service.errors import BadRequestError, RevocationFailedError
from authgate.service.events import SecurityEventLogger, SecurityEventType
from authgate.service.models import AuthContext
from authgate.service.tokens import is_valid_token_format, token_fingerprint
from authgate.storage.errors import StoreUnavailable

logger = get_logger(__name__)


def _actor_id(actor: Optional[AuthContext]) -> str:
    return actor.subject_id if actor is not None else "anonymous"


class RevocationService:
    """Adds tokens to and lifts tokens from the blacklist on request.

    Input problems raise BadRequestError (400) and store failures raise
    RevocationFailedError (500); a revoke is never reported as done unless
    the store accepted it.
    """

    def __init__(
        self,
        blacklist: BlacklistStore,
        *,
        events: Optional[SecurityEventLogger] = None,
    ) -> None:
        self.blacklist = blacklist
        self.events = events or SecurityEventLogger()

    def _validate(self, token: Optional[str], actor: Optional[AuthContext]) -> str:
        if not token:
            self.events.emit(
                SecurityEventType.REVOKE_TOKEN_MISSING, user_id=_actor_id(actor)
            )
            raise BadRequestError("Token is required")
        if not is_valid_token_format(token):
            self.events.emit(
                SecurityEventType.REVOKE_INVALID_TOKEN, user_id=_actor_id(actor)
            )
            raise BadRequestError("Invalid token format")
        return token

    async def revoke(self, token: Optional[str], *, actor: Optional[AuthContext] = None) -> None:
        token = self._validate(token, actor)
        try:
            await self.blacklist.add(token)
        except StoreUnavailable as exc:
            logger.error(
                "token_revocation_failed",
                user_id=_actor_id(actor),
                error=sanitize_error_message(str(exc)),
            )
            self.events.emit(
                SecurityEventType.TOKEN_REVOCATION_FAILED,
                user_id=_actor_id(actor),
                fingerprint=token_fingerprint(token),
            )
            raise RevocationFailedError("Failed to revoke token") from exc
        self.events.emit(
            SecurityEventType.TOKEN_REVOKED,
            user_id=_actor_id(actor),
            fingerprint=token_fingerprint(token),
        )

    async def unrevoke(self, token: Optional[str], *, actor: Optional[AuthContext] = None) -> bool:
        """Lift a revocation; returns False when the token was not blacklisted."""
        token = self._validate(token, actor)
        try:
            removed = await self.blacklist.remove(token)
        except StoreUnavailable as exc:
            logger.error(
                "token_unrevoke_failed",
                user_id=_actor_id(actor),
                error=sanitize_error_message(str(exc)),
            )
            raise RevocationFailedError("Token revocation failed") from exc
        self.events.emit(
            SecurityEventType.TOKEN_UNREVOKED,
            user_id=_actor_id(actor),
            fingerprint=token_fingerprint(token),
            removed=removed,
        )
        return removed
