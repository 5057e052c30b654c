from __future__ import annotations

import base64
import hashlib
import json
import re
from datetime import datetime, timezone
from typing import Any, Optional

# Tokens longer than this are rejected before any hashing or I/O
MAX_TOKEN_LENGTH = 4096
TOKEN_SEGMENT_DELIMITER = "."

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def is_valid_token_format(token: Any) -> bool:
    """Return True when ``token`` looks like a compact JWS.

    Three non-empty, dot-separated base64url segments. This is a syntactic
    filter only; it says nothing about the signature.
    """

    if not token or not isinstance(token, str):
        return False
    if len(token) > MAX_TOKEN_LENGTH:
        return False
    parts = token.split(TOKEN_SEGMENT_DELIMITER)
    if len(parts) != 3:
        return False
    return all(_SEGMENT_RE.match(part) for part in parts)


def token_key(token: str) -> str:
    """SHA-256 of the token; the only form in which a token reaches the store."""

    return hashlib.sha256(token.encode()).hexdigest()


def token_fingerprint(token: str) -> str:
    """Short, non-reversible reference to a token for log lines."""

    return token_key(token)[:12]


def _decode_segment(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def read_unverified_expiry(token: str) -> Optional[datetime]:
    """Read the ``exp`` claim without checking the signature.

    Only used to size blacklist TTLs, never to make an admission decision.
    Returns None when the payload is undecodable or carries no numeric exp.
    """

    if not is_valid_token_format(token):
        return None
    payload_b64 = token.split(TOKEN_SEGMENT_DELIMITER)[1]
    try:
        payload = json.loads(_decode_segment(payload_b64))
    except (ValueError, TypeError):
        return None
    if not isinstance(payload, dict):
        return None
    exp = payload.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
