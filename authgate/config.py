from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from authgate.logging import get_logger

logger = get_logger(__name__)


class FailPolicy(str, Enum):
    """What a call site does when the shared store cannot be reached.

    - OPEN: let the request through (generic API traffic, availability first)
    - CLOSED: deny the request (authentication-sensitive paths)
    """

    OPEN = "open"
    CLOSED = "closed"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Gateway settings resolved from the environment and an optional .env file."""

    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    store_timeout_seconds: float = env_field(
        2.0,
        "STORE_TIMEOUT_SECONDS",
        description="Upper bound for a single shared-store round trip",
    )
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Use the synchronous Redis client and allow the in-memory store",
    )
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")

    # Identity provider
    identity_url: str | None = env_field(None, "IDENTITY_URL")
    identity_api_key: str | None = env_field(None, "IDENTITY_API_KEY")
    identity_timeout_seconds: float = env_field(5.0, "IDENTITY_TIMEOUT_SECONDS")

    # Coarse pre-authentication limit keyed by address + client signature
    auth_rate_limit_requests: int = env_field(50, "AUTH_RATE_LIMIT_REQUESTS")
    auth_rate_limit_window_ms: int = env_field(60_000, "AUTH_RATE_LIMIT_WINDOW_MS")
    auth_rate_limit_fail_policy: FailPolicy = env_field(
        FailPolicy.CLOSED, "AUTH_RATE_LIMIT_FAIL_POLICY"
    )

    # Per-route limits for generic API traffic
    api_rate_limit_requests: int = env_field(100, "API_RATE_LIMIT_REQUESTS")
    api_rate_limit_window_ms: int = env_field(60_000, "API_RATE_LIMIT_WINDOW_MS")
    api_rate_limit_fail_policy: FailPolicy = env_field(
        FailPolicy.OPEN, "API_RATE_LIMIT_FAIL_POLICY"
    )

    # Token revocation endpoint
    revoke_rate_limit_requests: int = env_field(10, "REVOKE_RATE_LIMIT_REQUESTS")
    revoke_rate_limit_window_ms: int = env_field(
        15 * 60 * 1000, "REVOKE_RATE_LIMIT_WINDOW_MS"
    )
    revoke_rate_limit_fail_policy: FailPolicy = env_field(
        FailPolicy.CLOSED, "REVOKE_RATE_LIMIT_FAIL_POLICY"
    )

    blacklist_fail_policy: FailPolicy = env_field(
        FailPolicy.CLOSED,
        "BLACKLIST_FAIL_POLICY",
        description="Whether an unreachable blacklist denies (closed) or admits (open) tokens",
    )
    blacklist_default_ttl_seconds: int = env_field(
        86_400,
        "BLACKLIST_DEFAULT_TTL_SECONDS",
        description="Revocation lifetime when the token's own expiry is unknown",
    )

    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator(
        "auth_rate_limit_fail_policy",
        "api_rate_limit_fail_policy",
        "revoke_rate_limit_fail_policy",
        "blacklist_fail_policy",
        mode="before",
    )
    @classmethod
    def _validate_fail_policy(cls, value: Any) -> FailPolicy:
        if isinstance(value, str):
            value = value.strip().lower()
        return FailPolicy(value)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return list(value)

    @field_validator("store_timeout_seconds", "identity_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            logger.warning(
                "settings_invalid_timeout",
                value=value,
                message="Non-positive timeout replaced with 1 second",
            )
            return 1.0
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
