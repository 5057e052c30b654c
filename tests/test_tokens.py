"""Tests for bearer token shape checks and unverified expiry reads."""

import base64
from datetime import datetime, timezone

import pytest

from authgate.service.tokens import (
    MAX_TOKEN_LENGTH,
    is_valid_token_format,
    read_unverified_expiry,
    token_fingerprint,
    token_key,
)


class TestTokenFormat:
    def test_three_base64url_segments_accepted(self):
        assert is_valid_token_format("aaa.bbb.ccc") is True
        assert is_valid_token_format("eyJhbGciOiJIUzI1NiJ9.eyJzdWIiOiIxIn0.abc-_123") is True

    @pytest.mark.parametrize(
        "token",
        [
            "abc",
            "a.b",
            "a.b.c.d",
            "a..c",
            ".b.c",
            "a.b.",
            "a.b.c=",
            "a+b.c.d",
            "a/b.c.d",
            "a b.c.d",
            "",
            None,
        ],
    )
    def test_malformed_tokens_rejected(self, token):
        assert is_valid_token_format(token) is False

    def test_non_string_rejected(self):
        assert is_valid_token_format(12345) is False
        assert is_valid_token_format(b"a.b.c") is False

    def test_length_limit_is_inclusive(self):
        segment = "a" * ((MAX_TOKEN_LENGTH - 2) // 3)
        token = ".".join([segment, segment, segment])
        token = token + "a" * (MAX_TOKEN_LENGTH - len(token))
        assert len(token) == MAX_TOKEN_LENGTH
        assert is_valid_token_format(token) is True
        assert is_valid_token_format(token + "a") is False


class TestTokenKeys:
    def test_key_is_sha256_hex(self):
        key = token_key("a.b.c")
        assert len(key) == 64
        assert key == token_key("a.b.c")
        assert key != token_key("a.b.d")

    def test_fingerprint_is_key_prefix(self):
        assert token_fingerprint("a.b.c") == token_key("a.b.c")[:12]


class TestUnverifiedExpiry:
    def test_reads_exp_claim(self, make_token):
        token = make_token(exp=1_900_000_000)
        assert read_unverified_expiry(token) == datetime.fromtimestamp(
            1_900_000_000, tz=timezone.utc
        )

    def test_missing_exp_returns_none(self, make_token):
        assert read_unverified_expiry(make_token()) is None

    def test_non_numeric_exp_returns_none(self):
        header = base64.urlsafe_b64encode(b'{"alg":"none"}').rstrip(b"=").decode()
        for exp in (b'"soon"', b"true", b"null"):
            payload = base64.urlsafe_b64encode(b'{"exp":' + exp + b"}").rstrip(b"=").decode()
            assert read_unverified_expiry(f"{header}.{payload}.sig") is None

    def test_undecodable_payload_returns_none(self):
        assert read_unverified_expiry("aaa.!!!.ccc") is None
        assert read_unverified_expiry("aaa.bbbb.ccc") is None
