"""
tests/test_api_auth.py -- Integration tests for the JSON auth API and the
middleware behaviour seen through it.

These tests exercise the full stack: AuthorizationMiddleware -> route ->
accounts / SessionManager -> AuthStore, with real cookies and real tokens.

Coverage:
  - register + login happy path, cookie attributes, Cache-Control: no-store
  - identical 401 body for unknown email and wrong password
  - 400 on malformed bodies, 409 on email collisions, OWNER not registrable
  - /api/auth/refresh rotation and failure, /api/auth/logout idempotence
  - /api/auth/me 401 / 404 / 200
  - /api/session through the middleware: 401 JSON, silent renewal with an
    expired access token, rotation cookies on a 403, storage error -> 500

Fixtures used (from conftest.py):
  - api_client: (client, sessions, accounts); accounts maps Role -> seeded principal
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from helpers import cookie_values, is_deleted, login, send, set_cookie_headers
from sqlalchemy.exc import OperationalError

from auth.models import Role, TokenKind
from auth.tokens import build_token_codec
from core.config import get_settings

SEED_PASSWORD = "correct-horse-1"


def _unique_email() -> str:
    return f"user-{uuid.uuid4().hex[:10]}@acme-freight.com"


def _register_body(**overrides) -> dict:
    body = {
        "email": _unique_email(),
        "password": "secret1",
        "firstName": "Ada",
        "lastName": "Admin",
        "role": "COMPANY_ADMIN",
        "companyId": "acme-logistics",
    }
    body.update(overrides)
    return body


def _expired_access_token(principal) -> str:
    """An access token signed with the live secret that expired an hour ago."""
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    stale = build_token_codec(get_settings(), clock=lambda: past)
    return stale.issue(TokenKind.ACCESS, principal.id, principal.email, principal.role, principal.company_id)


class TestRegisterAndLogin:
    def test_register_then_login(self, api_client) -> None:
        """A new company admin can register and then log in with the same credentials."""
        client, _, _ = api_client
        resp = send(client, "POST", "/api/auth/register", json=_register_body(email="a@b.com"))
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["success"] is True
        assert data["user"]["email"] == "a@b.com"
        assert data["user"]["role"] == "COMPANY_ADMIN"
        assert data["user"]["companyId"] == "acme-logistics"
        assert set(cookie_values(resp)) == {"token", "refreshToken", "session"}

        resp = send(client, "POST", "/api/auth/login", json={"email": "a@b.com", "password": "secret1"})
        assert resp.status_code == 200
        assert resp.json()["user"]["firstName"] == "Ada"

    def test_login_sets_cookie_attributes(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(
            client, "POST", "/api/auth/login", json={"email": "driver@acme-freight.com", "password": SEED_PASSWORD}
        )
        assert resp.status_code == 200
        headers = {name: value.lower() for name, value in set_cookie_headers(resp).items()}
        assert "httponly" in headers["token"]
        assert "max-age=900" in headers["token"]
        assert "samesite=lax" in headers["token"]
        assert "path=/" in headers["token"]
        assert "httponly" in headers["refreshToken"]
        assert "max-age=604800" in headers["refreshToken"]
        assert "httponly" not in headers["session"]
        assert "secure" not in [attr.strip() for attr in headers["token"].split(";")[1:]]
        assert cookie_values(resp)["session"] == "active"
        assert resp.headers["cache-control"] == "no-store"

    def test_login_email_case_insensitive(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(
            client, "POST", "/api/auth/login", json={"email": "Driver@ACME-freight.com", "password": SEED_PASSWORD}
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "DRIVER"

    def test_owner_login(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(
            client, "POST", "/api/auth/login", json={"email": "owner@freightdesk.io", "password": SEED_PASSWORD}
        )
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["role"] == "OWNER"
        assert user["companyId"] is None
        assert user["firstName"] == "Platform Ops"

    def test_unknown_email_and_wrong_password_identical(self, api_client) -> None:
        client, _, _ = api_client
        wrong = send(client, "POST", "/api/auth/login", json={"email": "admin@acme-freight.com", "password": "nope-1"})
        unknown = send(
            client, "POST", "/api/auth/login", json={"email": "ghost@acme-freight.com", "password": SEED_PASSWORD}
        )
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"
        assert not cookie_values(wrong)

    def test_inactive_account_forbidden(self, api_client) -> None:
        client, sessions, _ = api_client
        body = _register_body(role="DRIVER")
        resp = send(client, "POST", "/api/auth/register", json=body)
        assert resp.status_code == 201
        sessions.store.set_tenant_active(resp.json()["user"]["id"], False)

        resp = send(client, "POST", "/api/auth/login", json={"email": body["email"], "password": "secret1"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_disabled"


class TestValidation:
    def test_login_malformed_email(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(client, "POST", "/api/auth/login", json={"email": "not-an-email", "password": "secret1"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_login_missing_password(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(client, "POST", "/api/auth/login", json={"email": "a@b.com"})
        assert resp.status_code == 400

    def test_register_short_password(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(client, "POST", "/api/auth/register", json=_register_body(password="12345"))
        assert resp.status_code == 400

    def test_register_missing_names(self, api_client) -> None:
        client, _, _ = api_client
        body = _register_body()
        del body["firstName"]
        assert send(client, "POST", "/api/auth/register", json=body).status_code == 400
        assert send(client, "POST", "/api/auth/register", json=_register_body(lastName="")).status_code == 400

    def test_register_owner_role_refused(self, api_client) -> None:
        client, _, _ = api_client
        body = _register_body(role="OWNER")
        resp = send(client, "POST", "/api/auth/register", json=body)
        assert resp.status_code == 400
        assert not cookie_values(resp)
        login_resp = send(client, "POST", "/api/auth/login", json={"email": body["email"], "password": "secret1"})
        assert login_resp.status_code == 401

    def test_register_existing_tenant_email(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(client, "POST", "/api/auth/register", json=_register_body(email="agent@acme-freight.com"))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_in_use"

    def test_register_owner_email(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(client, "POST", "/api/auth/register", json=_register_body(email="owner@freightdesk.io"))
        assert resp.status_code == 409


class TestRefreshAndLogout:
    def test_refresh_rotates(self, api_client) -> None:
        client, _, _ = api_client
        cookies = login(client, "agent@acme-freight.com", SEED_PASSWORD)
        resp = send(client, "POST", "/api/auth/refresh", cookies={"refreshToken": cookies["refreshToken"]})
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        renewed = cookie_values(resp)
        assert renewed["refreshToken"] != cookies["refreshToken"]
        assert renewed["token"]
        assert resp.headers["cache-control"] == "no-store"

        # The old refresh token was consumed
        stale = send(client, "POST", "/api/auth/refresh", cookies={"refreshToken": cookies["refreshToken"]})
        assert stale.status_code == 401

    def test_refresh_failure_clears_cookies(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(client, "POST", "/api/auth/refresh", cookies={"refreshToken": "garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        headers = set_cookie_headers(resp)
        for name in ("token", "refreshToken", "session"):
            assert is_deleted(headers[name])

    def test_refresh_without_cookie(self, api_client) -> None:
        client, _, _ = api_client
        assert send(client, "POST", "/api/auth/refresh").status_code == 401

    def test_refresh_with_access_token_refused(self, api_client) -> None:
        client, _, _ = api_client
        cookies = login(client, "agent@acme-freight.com", SEED_PASSWORD)
        resp = send(client, "POST", "/api/auth/refresh", cookies={"refreshToken": cookies["token"]})
        assert resp.status_code == 401

    def test_logout_revokes_and_is_idempotent(self, api_client) -> None:
        client, sessions, _ = api_client
        cookies = login(client, "agent@acme-freight.com", SEED_PASSWORD)
        first = send(client, "POST", "/api/auth/logout", cookies=cookies)
        second = send(client, "POST", "/api/auth/logout", cookies=cookies)
        assert first.status_code == second.status_code == 200
        assert first.json() == {"success": True}
        assert all(is_deleted(h) for h in set_cookie_headers(first).values())
        assert sessions.store.get_refresh_token(cookies["refreshToken"]) is None

        resp = send(client, "POST", "/api/auth/refresh", cookies={"refreshToken": cookies["refreshToken"]})
        assert resp.status_code == 401

    def test_logout_without_cookies(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(client, "POST", "/api/auth/logout")
        assert resp.status_code == 200

    def test_logout_survives_storage_error(self, api_client) -> None:
        client, sessions, _ = api_client
        cookies = login(client, "agent@acme-freight.com", SEED_PASSWORD)
        boom = OperationalError("DELETE", {}, Exception("locked"))
        with patch.object(sessions, "destroy_session", side_effect=boom):
            resp = send(client, "POST", "/api/auth/logout", cookies=cookies)
        assert resp.status_code == 200
        assert is_deleted(set_cookie_headers(resp)["token"])


class TestMe:
    def test_me_requires_token(self, api_client) -> None:
        client, _, _ = api_client
        assert send(client, "GET", "/api/auth/me").status_code == 401
        assert send(client, "GET", "/api/auth/me", cookies={"token": "garbage"}).status_code == 401

    def test_me_rejects_expired_token(self, api_client) -> None:
        client, _, accounts = api_client
        token = _expired_access_token(accounts[Role.DRIVER])
        assert send(client, "GET", "/api/auth/me", cookies={"token": token}).status_code == 401

    def test_me_returns_profile(self, api_client) -> None:
        client, _, accounts = api_client
        cookies = login(client, "admin@acme-freight.com", SEED_PASSWORD)
        resp = send(client, "GET", "/api/auth/me", cookies={"token": cookies["token"]})
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["id"] == accounts[Role.COMPANY_ADMIN].id
        assert user["lastName"] == "Admin"
        assert "hashedPassword" not in user

    def test_me_deleted_principal_is_404(self, api_client) -> None:
        client, sessions, _ = api_client
        token = sessions.codec.issue(TokenKind.ACCESS, "no-such-user", "gone@acme-freight.com", Role.DRIVER)
        resp = send(client, "GET", "/api/auth/me", cookies={"token": token})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


class TestSessionThroughMiddleware:
    def test_no_cookies_is_401_json(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(client, "GET", "/api/session")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert not set_cookie_headers(resp)

    def test_bad_cookies_are_cleared(self, api_client) -> None:
        client, _, _ = api_client
        resp = send(client, "GET", "/api/session", cookies={"token": "junk", "refreshToken": "junk"})
        assert resp.status_code == 401
        assert all(is_deleted(h) for h in set_cookie_headers(resp).values())

    def test_valid_access_token(self, api_client) -> None:
        client, _, accounts = api_client
        cookies = login(client, "agent@acme-freight.com", SEED_PASSWORD)
        resp = send(client, "GET", "/api/session", cookies={"token": cookies["token"]})
        assert resp.status_code == 200
        assert resp.json() == {
            "userId": accounts[Role.WAREHOUSE_AGENT].id,
            "email": "agent@acme-freight.com",
            "role": "WAREHOUSE_AGENT",
            "companyId": "acme-logistics",
        }
        assert not set_cookie_headers(resp)

    def test_expired_access_token_renews_silently(self, api_client) -> None:
        """Expired access token + valid refresh token: the request succeeds and rotates the cookies."""
        client, sessions, accounts = api_client
        admin = accounts[Role.COMPANY_ADMIN]
        cookies = login(client, "admin@acme-freight.com", SEED_PASSWORD)
        resp = send(
            client,
            "GET",
            "/api/session",
            cookies={"token": _expired_access_token(admin), "refreshToken": cookies["refreshToken"]},
        )
        assert resp.status_code == 200
        assert resp.json()["userId"] == admin.id
        renewed = cookie_values(resp)
        assert renewed["refreshToken"] != cookies["refreshToken"]
        assert sessions.codec.verify(renewed["token"], TokenKind.ACCESS).principal_id == admin.id
        assert resp.headers["x-user-id"] == admin.id
        assert resp.headers["x-user-role"] == "COMPANY_ADMIN"
        assert sessions.store.get_refresh_token(cookies["refreshToken"]) is None

    def test_refresh_cookie_alone_renews(self, api_client) -> None:
        client, _, _ = api_client
        cookies = login(client, "driver@acme-freight.com", SEED_PASSWORD)
        resp = send(client, "GET", "/api/session", cookies={"refreshToken": cookies["refreshToken"]})
        assert resp.status_code == 200
        assert resp.json()["role"] == "DRIVER"
        assert "companyId" in resp.json()
        assert "x-company-id" not in resp.headers

    def test_forbidden_api_route_is_403_json(self, api_client) -> None:
        client, _, _ = api_client
        cookies = login(client, "driver@acme-freight.com", SEED_PASSWORD)
        resp = send(client, "GET", "/api/platform/tenants", cookies={"token": cookies["token"]})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_rotation_cookies_set_on_403(self, api_client) -> None:
        """A renewal consumed the old refresh token, so even a denial must carry the new cookies."""
        client, _, accounts = api_client
        cookies = login(client, "admin@acme-freight.com", SEED_PASSWORD)
        resp = send(
            client,
            "GET",
            "/api/platform/tenants",
            cookies={
                "token": _expired_access_token(accounts[Role.COMPANY_ADMIN]),
                "refreshToken": cookies["refreshToken"],
            },
        )
        assert resp.status_code == 403
        renewed = cookie_values(resp)
        assert renewed["refreshToken"] != cookies["refreshToken"]

        # The new refresh token is live
        follow_up = send(client, "POST", "/api/auth/refresh", cookies={"refreshToken": renewed["refreshToken"]})
        assert follow_up.status_code == 200

    def test_stale_refresh_token_after_rotation(self, api_client) -> None:
        client, _, _ = api_client
        cookies = login(client, "agent@acme-freight.com", SEED_PASSWORD)
        first = send(client, "GET", "/api/session", cookies={"refreshToken": cookies["refreshToken"]})
        assert first.status_code == 200
        second = send(client, "GET", "/api/session", cookies={"refreshToken": cookies["refreshToken"]})
        assert second.status_code == 401
        assert is_deleted(set_cookie_headers(second)["refreshToken"])

    def test_deactivated_user_loses_session_at_renewal(self, api_client) -> None:
        client, sessions, _ = api_client
        body = _register_body(role="WAREHOUSE_AGENT")
        resp = send(client, "POST", "/api/auth/register", json=body)
        cookies = cookie_values(resp)
        sessions.store.set_tenant_active(resp.json()["user"]["id"], False)

        resp = send(client, "GET", "/api/session", cookies={"refreshToken": cookies["refreshToken"]})
        assert resp.status_code == 401

    def test_storage_error_during_renewal_is_500(self, api_client) -> None:
        client, sessions, _ = api_client
        cookies = login(client, "agent@acme-freight.com", SEED_PASSWORD)
        boom = OperationalError("SELECT", {}, Exception("database is locked"))
        with patch.object(sessions, "refresh_session", side_effect=boom):
            resp = send(client, "GET", "/api/session", cookies={"refreshToken": cookies["refreshToken"]})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "internal_error"
        assert not set_cookie_headers(resp)
        assert sessions.store.get_refresh_token(cookies["refreshToken"]) is not None

