from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx

from authgate.logging import get_logger
from authgate.service.models import Claims, VerifiedIdentity
from authgate.service.tokens import read_unverified_expiry

logger = get_logger(__name__)


class VerificationError(Exception):
    """The identity provider did not accept the token."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> VerifiedIdentity:
        """Return the token's subject and claims or raise VerificationError."""
        ...

    async def close(self) -> None: ...


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HttpIdentityVerifier:
    """Verifies tokens against a Supabase-style ``/auth/v1/user`` endpoint.

    One request per call and no retries; the client's timeout bounds the
    call. Any failure is reported as VerificationError.
    """

    USER_PATH = "/auth/v1/user"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=False
        )

    async def verify(self, token: str) -> VerifiedIdentity:
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        try:
            response = await self._client.get(f"{self.base_url}{self.USER_PATH}", headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise VerificationError(
                "identity provider rejected token",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.TimeoutException as exc:
            raise VerificationError("identity provider timed out") from exc
        except httpx.HTTPError as exc:
            raise VerificationError(
                f"identity provider unreachable: {type(exc).__name__}"
            ) from exc

        try:
            user = response.json()
        except ValueError as exc:
            raise VerificationError("identity provider returned invalid JSON") from exc
        if isinstance(user, dict) and isinstance(user.get("user"), dict):
            user = user["user"]
        if not isinstance(user, dict):
            raise VerificationError("identity provider returned no user")

        subject_id = user.get("id")
        if not isinstance(subject_id, str) or not subject_id:
            raise VerificationError("No user found")

        return VerifiedIdentity(
            subject_id=subject_id,
            claims=Claims.from_user_document(user),
            expires_at=read_unverified_expiry(token),
            banned_until=_parse_timestamp(user.get("banned_until")),
        )

    async def close(self) -> None:
        await self._client.aclose()


class UnconfiguredIdentityVerifier:
    """Stand-in used when no identity provider URL is configured.

    Every token is rejected, so the gateway fails closed instead of admitting
    unverified callers.
    """

    async def verify(self, token: str) -> VerifiedIdentity:
        raise VerificationError("identity provider not configured")

    async def close(self) -> None:
        return None
