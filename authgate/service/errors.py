from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for gateway denials and faults mapped to HTTP responses.

    Each subclass carries the HTTP status_code it renders with and a stable
    error_code used in logs:
    - missing_header, malformed_token, blacklisted, verification_failed (401)
    - account_banned, admin_required (403)
    - rate_limited (429)
    - validation_error (400)
    - revocation_failed, server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class BadRequestError(ServiceError):
    """Request body is malformed or invalid (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class MissingHeaderError(AuthenticationError):
    error_code = "missing_header"


class MalformedTokenError(AuthenticationError):
    error_code = "malformed_token"


class BlacklistedError(AuthenticationError):
    error_code = "blacklisted"


class VerificationFailedError(AuthenticationError):
    error_code = "verification_failed"


class AuthenticationRequiredError(AuthenticationError):
    """An authorization check ran without a prior authenticated context."""
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class AccountBannedError(ForbiddenError):
    error_code = "account_banned"


class AdminRequiredError(ForbiddenError):
    error_code = "admin_required"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class RevocationFailedError(ServerError):
    error_code = "revocation_failed"


__all__ = [
    "ServiceError",
    "BadRequestError",
    "AuthenticationError",
    "MissingHeaderError",
    "MalformedTokenError",
    "BlacklistedError",
    "VerificationFailedError",
    "AuthenticationRequiredError",
    "ForbiddenError",
    "AccountBannedError",
    "AdminRequiredError",
    "RateLimitedError",
    "ServerError",
    "RevocationFailedError",
]
