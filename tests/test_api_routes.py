"""HTTP contract tests for the gateway routes."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from authgate import app as app_module
from authgate.service.models import Claims
from authgate.storage.errors import StoreUnavailable


@pytest.fixture
def client(installed_runtime):
    return TestClient(app_module.app)


@pytest.fixture
def user_token(fake_verifier, make_token):
    token = make_token(sub="user-1")
    fake_verifier.register(token, "user-1", claims=Claims(role="member", email="u1@example.com"))
    return token


@pytest.fixture
def admin_token(fake_verifier, make_token):
    token = make_token(sub="admin-1", role="admin")
    fake_verifier.register(token, "admin-1", claims=Claims(role="admin"))
    return token


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


class TestAuthentication:
    def test_missing_header_envelope(self, client):
        response = client.get("/api/auth/session")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "Access token required",
            "data": None,
        }

    def test_malformed_token(self, client):
        response = client.get("/api/auth/session", headers=_auth("garbage"))
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid token format"

    def test_unknown_token(self, client, make_token):
        response = client.get("/api/auth/session", headers=_auth(make_token(sub="ghost")))
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid or expired token"

    def test_session_info(self, client, user_token):
        response = client.get("/api/auth/session", headers=_auth(user_token))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["error"] is None
        assert body["data"]["user"]["id"] == "user-1"
        assert body["data"]["user"]["is_admin"] is False
        assert body["data"]["rate_limit"]["limit"] == 100
        assert body["data"]["rate_limit"]["remaining"] == 99
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "99"
        assert response.headers["X-RateLimit-Reset"].endswith("GMT")

    def test_validate(self, client, user_token):
        response = client.post("/api/auth/validate", headers=_auth(user_token))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["valid"] is True
        assert data["user"]["email"] == "u1@example.com"

    def test_banned_account(self, client, fake_verifier, make_token):
        from datetime import datetime, timedelta, timezone

        token = make_token(sub="banned")
        fake_verifier.register(
            token, "banned", banned_until=datetime.now(timezone.utc) + timedelta(hours=1)
        )
        response = client.get("/api/auth/session", headers=_auth(token))
        assert response.status_code == 403
        assert response.json()["error"] == "Account temporarily suspended"

    def test_auth_rate_limit(self, client, installed_runtime, user_token):
        installed_runtime.gateway.auth_rate_limit_requests = 2
        for _ in range(2):
            assert client.get("/api/auth/session", headers=_auth(user_token)).status_code == 200
        response = client.get("/api/auth/session", headers=_auth(user_token))
        assert response.status_code == 429
        assert response.json()["error"] == (
            "Too many authentication attempts. Please try again later."
        )
        assert response.headers["X-RateLimit-Remaining"] == "0"


class TestOptionalAuth:
    def test_anonymous(self, client):
        response = client.get("/api/auth/whoami")
        assert response.status_code == 200
        assert response.json()["data"] == {"authenticated": False, "user": None}

    def test_bad_token_continues_anonymously(self, client):
        response = client.get("/api/auth/whoami", headers=_auth("a.b.c"))
        assert response.status_code == 200
        assert response.json()["data"]["authenticated"] is False

    def test_authenticated(self, client, user_token):
        response = client.get("/api/auth/whoami", headers=_auth(user_token))
        assert response.json()["data"]["user"]["id"] == "user-1"


class TestRevokeEndpoint:
    def test_revoke_then_reuse(self, client, user_token):
        response = client.post(
            "/api/auth/revoke", headers=_auth(user_token), json={"token": user_token}
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"message": "Token revoked successfully"}

        reuse = client.get("/api/auth/session", headers=_auth(user_token))
        assert reuse.status_code == 401
        assert reuse.json()["error"] == "Token has been revoked"

    def test_missing_token(self, client, user_token):
        response = client.post("/api/auth/revoke", headers=_auth(user_token), json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Token is required"

    def test_no_body(self, client, user_token):
        response = client.post("/api/auth/revoke", headers=_auth(user_token))
        assert response.status_code == 400
        assert response.json()["error"] == "Token is required"

    def test_invalid_format(self, client, user_token):
        response = client.post(
            "/api/auth/revoke", headers=_auth(user_token), json={"token": "nope"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid token format"

    def test_store_failure(self, client, installed_runtime, user_token, make_token):
        installed_runtime.blacklist.add = AsyncMock(side_effect=StoreUnavailable("down"))
        response = client.post(
            "/api/auth/revoke", headers=_auth(user_token), json={"token": make_token(sub="x")}
        )
        assert response.status_code == 500
        assert response.json()["error"] == "Failed to revoke token"

    def test_requires_authentication(self, client, make_token):
        response = client.post("/api/auth/revoke", json={"token": make_token()})
        assert response.status_code == 401

    def test_revoke_rate_limit(self, client, user_token, make_token):
        for index in range(10):
            response = client.post(
                "/api/auth/revoke",
                headers=_auth(user_token),
                json={"token": make_token(sub=f"other-{index}")},
            )
            assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"

        limited = client.post(
            "/api/auth/revoke",
            headers=_auth(user_token),
            json={"token": make_token(sub="one-more")},
        )
        assert limited.status_code == 429
        assert limited.json()["error"] == "Rate limit exceeded. Please try again later."


class TestAdminRoutes:
    def test_non_admin_forbidden(self, client, user_token):
        response = client.post(
            "/api/admin/unrevoke", headers=_auth(user_token), json={"token": user_token}
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Admin privileges required"

    def test_unrevoke(self, client, user_token, admin_token):
        client.post("/api/auth/revoke", headers=_auth(user_token), json={"token": user_token})

        response = client.post(
            "/api/admin/unrevoke", headers=_auth(admin_token), json={"token": user_token}
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"removed": True}
        assert client.get("/api/auth/session", headers=_auth(user_token)).status_code == 200

    def test_reset_rate_limit(self, client, user_token, admin_token, make_token):
        for index in range(11):
            client.post(
                "/api/auth/revoke",
                headers=_auth(user_token),
                json={"token": make_token(sub=f"t-{index}")},
            )

        response = client.post(
            "/api/admin/rate-limits/reset",
            headers=_auth(admin_token),
            json={"identifier": "revoke|user:user-1"},
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"identifier": "revoke|user:user-1", "reset": True}

        again = client.post(
            "/api/auth/revoke",
            headers=_auth(user_token),
            json={"token": make_token(sub="after-reset")},
        )
        assert again.status_code == 200

    def test_reset_rejects_blank_identifier(self, client, admin_token):
        response = client.post(
            "/api/admin/rate-limits/reset",
            headers=_auth(admin_token),
            json={"identifier": "   "},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid request body"

    def test_rate_limit_info_reports_without_counting(
        self, client, user_token, admin_token, make_token
    ):
        for index in range(3):
            client.post(
                "/api/auth/revoke",
                headers=_auth(user_token),
                json={"token": make_token(sub=f"t-{index}")},
            )
        url = "/api/admin/rate-limits/revoke%7Cuser%3Auser-1?limit=10&window_ms=900000"

        first = client.get(url, headers=_auth(admin_token))
        second = client.get(url, headers=_auth(admin_token))

        assert first.status_code == 200
        data = first.json()["data"]
        assert data["identifier"] == "revoke|user:user-1"
        assert data["allowed"] is True
        assert data["limit"] == 10
        assert data["remaining"] == 7
        assert second.json()["data"]["remaining"] == 7

    def test_rate_limit_info_defaults_to_api_profile(self, client, admin_token):
        response = client.get(
            "/api/admin/rate-limits/user%3Anobody", headers=_auth(admin_token)
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["limit"] == 100
        assert data["remaining"] == 100

    def test_rate_limit_info_requires_admin(self, client, user_token):
        response = client.get(
            "/api/admin/rate-limits/user%3Anobody", headers=_auth(user_token)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Admin privileges required"


class TestAppMiddleware:
    def test_request_id_echoed(self, client):
        response = client.get("/api/auth/whoami", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client):
        response = client.get("/api/auth/whoami")
        assert response.headers["X-Request-ID"]

    def test_security_headers_on_denials(self, client):
        response = client.get("/api/auth/session")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["store"]["type"] == "MemoryCache"
