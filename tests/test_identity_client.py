"""Tests for the HTTP identity provider client."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from authgate.service.identity import (
    HttpIdentityVerifier,
    UnconfiguredIdentityVerifier,
    VerificationError,
)


def _verifier(handler, **kwargs) -> HttpIdentityVerifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpIdentityVerifier("https://id.example.com/", client=client, **kwargs)


USER = {
    "id": "8d7f",
    "email": "person@example.com",
    "user_metadata": {"role": "admin"},
    "app_metadata": {"provider": "email"},
    "banned_until": "2030-01-01T00:00:00Z",
}


async def test_verify_returns_identity(make_token):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["authorization"] = request.headers.get("Authorization")
        seen["apikey"] = request.headers.get("apikey")
        return httpx.Response(200, json=USER)

    token = make_token(exp=1_900_000_000)
    verifier = _verifier(handler, api_key="anon-key")
    identity = await verifier.verify(token)
    await verifier.close()

    assert seen["url"] == "https://id.example.com/auth/v1/user"
    assert seen["authorization"] == f"Bearer {token}"
    assert seen["apikey"] == "anon-key"
    assert identity.subject_id == "8d7f"
    assert identity.claims.role == "admin"
    assert identity.claims.email == "person@example.com"
    assert identity.claims.raw["app_metadata"] == {"provider": "email"}
    assert identity.expires_at == datetime.fromtimestamp(1_900_000_000, tz=timezone.utc)
    assert identity.banned_until == datetime(2030, 1, 1, tzinfo=timezone.utc)


async def test_wrapped_user_document(make_token):
    verifier = _verifier(lambda request: httpx.Response(200, json={"user": USER}))
    identity = await verifier.verify(make_token())
    assert identity.subject_id == "8d7f"


async def test_no_api_key_header_when_unset(make_token):
    seen = {}

    def handler(request):
        seen["apikey"] = request.headers.get("apikey")
        return httpx.Response(200, json=USER)

    await _verifier(handler).verify(make_token())
    assert seen["apikey"] is None


async def test_rejection_status(make_token):
    verifier = _verifier(lambda request: httpx.Response(401, json={"msg": "invalid JWT"}))
    with pytest.raises(VerificationError) as excinfo:
        await verifier.verify(make_token())
    assert excinfo.value.status_code == 401


async def test_transport_timeout(make_token):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(VerificationError) as excinfo:
        await _verifier(handler).verify(make_token())
    assert excinfo.value.message == "identity provider timed out"


async def test_connection_error(make_token):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(VerificationError) as excinfo:
        await _verifier(handler).verify(make_token())
    assert "unreachable" in excinfo.value.message


async def test_invalid_json(make_token):
    verifier = _verifier(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(VerificationError):
        await verifier.verify(make_token())


@pytest.mark.parametrize("body", [{}, {"id": ""}, {"id": 42}, []])
async def test_missing_subject(make_token, body):
    verifier = _verifier(lambda request: httpx.Response(200, content=json.dumps(body)))
    with pytest.raises(VerificationError):
        await verifier.verify(make_token())


async def test_unconfigured_verifier_rejects(make_token):
    verifier = UnconfiguredIdentityVerifier()
    with pytest.raises(VerificationError):
        await verifier.verify(make_token())
    await verifier.close()
