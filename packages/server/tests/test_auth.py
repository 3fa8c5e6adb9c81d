"""
Tests for Authentication and Authorization.

Covers:
- Password hashing
- JWT creation, decoding, revocation
- CSRF middleware
- Security headers middleware
- Role-based authorization (require_member, require_admin)
- Org-scoping over HTTP
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import jwt as pyjwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from debtbook.core.auth import (
    AuthenticatedUser,
    create_jwt,
    decode_jwt,
    generate_csrf_token,
    hash_password,
    is_jwt_revoked,
    require_admin,
    require_member,
    revoke_jwt,
    verify_password,
)
from debtbook.core.errors import AuthorizationError
from debtbook.core.middleware import (
    CSRF_COOKIE,
    SECURITY_HEADERS,
    SESSION_COOKIE,
    CSRFMiddleware,
    SecurityHeadersMiddleware,
)

from conftest import PASSWORD, api_sign_up, bearer


# ---------------------------------------------------------------------------
# Unit Tests: Password hashing
# ---------------------------------------------------------------------------

class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("MySecureP@ssw0rd!")
        assert hashed != "MySecureP@ssw0rd!"
        assert verify_password("MySecureP@ssw0rd!", hashed)

    def test_wrong_password_fails(self):
        hashed = hash_password("correct-password")
        assert not verify_password("wrong-password", hashed)

    def test_salted(self):
        assert hash_password("same") != hash_password("same")


# ---------------------------------------------------------------------------
# Unit Tests: JWT
# ---------------------------------------------------------------------------

class TestJWT:
    def test_create_and_decode(self):
        uid = uuid.uuid4()
        token, jti = create_jwt(uid, "acme-4f2k")
        payload = decode_jwt(token)
        assert payload["sub"] == str(uid)
        assert payload["org"] == "acme-4f2k"
        assert payload["jti"] == jti
        assert "role" not in payload

    def test_expired_jwt_raises(self):
        token, _ = create_jwt(uuid.uuid4(), None, expires_delta=timedelta(seconds=-1))
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_jwt(token)

    def test_tampered_jwt_raises(self):
        token, _ = create_jwt(uuid.uuid4(), "acme")
        header, payload, _sig = token.split(".")
        with pytest.raises(pyjwt.InvalidSignatureError):
            decode_jwt(f"{header}.{payload}.{'A' * 43}")


class TestCSRFToken:
    def test_generates_unique_tokens(self):
        t1 = generate_csrf_token()
        assert t1 != generate_csrf_token()
        assert len(t1) > 20


# ---------------------------------------------------------------------------
# Unit Tests: JWT Revocation (mocked Redis)
# ---------------------------------------------------------------------------

class TestJWTRevocation:
    async def test_revoke_and_check(self):
        mock_redis = AsyncMock()
        mock_redis.exists = AsyncMock(return_value=1)

        with patch("debtbook.core.auth.get_redis", AsyncMock(return_value=mock_redis)):
            await revoke_jwt("test-jti-123", ttl_seconds=3600)
            mock_redis.setex.assert_called_once_with("jwt:revoked:test-jti-123", 3600, "1")
            assert await is_jwt_revoked("test-jti-123") is True

    async def test_non_revoked_jwt(self, fake_redis):
        assert await is_jwt_revoked("non-existent-jti") is False


# ---------------------------------------------------------------------------
# Integration Tests: Middleware
# ---------------------------------------------------------------------------

class TestSecurityHeadersMiddleware:
    def test_headers_present(self):
        app = FastAPI()
        app.add_middleware(SecurityHeadersMiddleware)

        @app.get("/test")
        async def test_endpoint():
            return {"ok": True}

        resp = TestClient(app).get("/test")
        assert resp.status_code == 200
        for header, value in SECURITY_HEADERS.items():
            assert resp.headers.get(header) == value


class TestCSRFMiddleware:
    def _make_app(self) -> FastAPI:
        app = FastAPI()
        app.add_middleware(CSRFMiddleware)

        @app.get("/test")
        async def get_test():
            return {"ok": True}

        @app.post("/test")
        async def post_test():
            return {"ok": True}

        return app

    def test_get_passes_without_csrf(self):
        assert TestClient(self._make_app()).get("/test").status_code == 200

    def test_bearer_skips_csrf(self):
        client = TestClient(self._make_app(), cookies={SESSION_COOKIE: "some-jwt"})
        resp = client.post("/test", headers={"Authorization": "Bearer some-jwt"})
        assert resp.status_code == 200

    def test_post_without_session_cookie_passes(self):
        assert TestClient(self._make_app()).post("/test").status_code == 200

    def test_post_with_session_but_no_csrf_fails(self):
        client = TestClient(self._make_app(), cookies={SESSION_COOKIE: "some-jwt"})
        resp = client.post("/test")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "CSRF_VALIDATION_FAILED"

    def test_post_with_matching_csrf_passes(self):
        client = TestClient(
            self._make_app(),
            cookies={SESSION_COOKIE: "some-jwt", CSRF_COOKIE: "token"},
        )
        assert client.post("/test", headers={"X-CSRF-Token": "token"}).status_code == 200

    def test_post_with_mismatched_csrf_fails(self):
        client = TestClient(
            self._make_app(),
            cookies={SESSION_COOKIE: "some-jwt", CSRF_COOKIE: "token-a"},
        )
        assert client.post("/test", headers={"X-CSRF-Token": "token-b"}).status_code == 403


# ---------------------------------------------------------------------------
# Unit Tests: Role-based auth matrix
# ---------------------------------------------------------------------------

class TestAuthorizationMatrix:
    def _mock_auth(self, role: str) -> AuthenticatedUser:
        user = MagicMock()
        user.id = uuid.uuid4()
        org = MagicMock()
        org.org_id = "acme"
        profile = MagicMock()
        profile.role = role
        profile.username = "someone"
        return AuthenticatedUser(user=user, org=org, profile=profile)

    async def test_member_allows_all_roles(self):
        for role in ("ADMIN", "STAFF"):
            auth = self._mock_auth(role)
            assert await require_member(auth) is auth

    async def test_admin_allows_admin(self):
        auth = self._mock_auth("ADMIN")
        assert await require_admin(auth) is auth

    async def test_admin_rejects_staff(self):
        with pytest.raises(AuthorizationError) as exc_info:
            await require_admin(self._mock_auth("STAFF"))
        assert exc_info.value.status_code == 403


# ---------------------------------------------------------------------------
# Integration Tests: Auth endpoints and org scoping
# ---------------------------------------------------------------------------

class TestAuthEndpoints:
    async def test_sign_in_and_me(self, client):
        owner = await api_sign_up(client, "owner@example.com", "Owner", org_name="acme")

        resp = await client.post(
            "/auth/sign-in", json={"email": "OWNER@example.com", "password": PASSWORD}
        )
        assert resp.status_code == 200
        signed_in = resp.json()
        assert signed_in["membership"]["status"] == "ACTIVE"
        assert SESSION_COOKIE in resp.cookies

        me = await client.get("/auth/me", headers=bearer(signed_in))
        assert me.status_code == 200
        assert me.json()["membership"]["org_id"] == owner["membership"]["org_id"]
        assert me.json()["membership"]["profile"]["display_org_name"] == "acme"

    async def test_bad_credentials(self, client):
        await api_sign_up(client, "owner@example.com", "Owner", org_name="acme")
        resp = await client.post(
            "/auth/sign-in", json={"email": "owner@example.com", "password": "nope-nope"}
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "NOT_AUTHENTICATED"

    async def test_sign_up_needs_exactly_one_intent(self, client):
        resp = await client.post(
            "/auth/sign-up",
            json={"email": "x@example.com", "password": PASSWORD, "username": "x"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_sign_out_revokes(self, client):
        owner = await api_sign_up(client, "owner@example.com", "Owner", org_name="acme")
        assert (await client.post("/auth/sign-out", headers=bearer(owner))).status_code == 200
        assert (await client.get("/auth/me", headers=bearer(owner))).status_code == 401

    async def test_password_reset_does_not_reveal_accounts(self, client, sent_emails):
        await api_sign_up(client, "owner@example.com", "Owner", org_name="acme")
        known = await client.post("/auth/password-reset", json={"email": "owner@example.com"})
        unknown = await client.post("/auth/password-reset", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 202
        assert known.json() == unknown.json()
        assert [m["to"] for m in sent_emails] == ["owner@example.com"]


class TestOrgScoping:
    async def test_missing_token(self, client):
        owner = await api_sign_up(client, "owner@example.com", "Owner", org_name="acme")
        org_id = owner["membership"]["org_id"]
        resp = await client.get(f"/api/v1/orgs/{org_id}/customers")
        assert resp.status_code == 401

    async def test_garbage_token(self, client):
        resp = await client.get(
            "/api/v1/orgs/acme/customers", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 401

    async def test_non_member_sees_not_found(self, client):
        owner = await api_sign_up(client, "owner@example.com", "Owner", org_name="acme")
        outsider = await api_sign_up(client, "out@example.com", "Out", org_name="globex")
        resp = await client.get(
            f"/api/v1/orgs/{owner['membership']['org_id']}/customers", headers=bearer(outsider)
        )
        assert resp.status_code == 404

    async def test_staff_cannot_use_admin_routes(self, client):
        owner = await api_sign_up(client, "owner@example.com", "Owner", org_name="acme")
        org_id = owner["membership"]["org_id"]
        staff = await api_sign_up(client, "staff@example.com", "Staff", join_org_id=org_id)

        pending = await client.get(f"/api/v1/orgs/{org_id}/join-requests", headers=bearer(owner))
        request_id = pending.json()["data"][0]["id"]
        await client.post(
            f"/api/v1/orgs/{org_id}/join-requests/{request_id}/approve", headers=bearer(owner)
        )

        resp = await client.get(f"/api/v1/orgs/{org_id}/join-requests", headers=bearer(staff))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "NOT_AUTHORIZED"
