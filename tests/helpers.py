"""
tests/helpers.py -- Request and Set-Cookie helpers for the integration tests.

The TestClient keeps a cookie jar across requests. Tests here need exact
control over which auth cookies a request carries (an expired access token
next to a valid refresh token, a stale refresh token after rotation), so
send() empties the jar around every request and passes cookies explicitly
as a Cookie header.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from auth.store import AuthStore


def make_store(db_suffix: str | None = None) -> AuthStore:
    """Create an isolated named shared-memory SQLite store.

    Named URIs let every thread of the TestClient pool see the same
    in-memory database; a plain :memory: URI is per-connection.
    """
    suffix = db_suffix or uuid.uuid4().hex
    return AuthStore(db_url=f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")


def send(client: TestClient, method: str, url: str, cookies: dict[str, str] | None = None, **kwargs):
    """Issue one request carrying exactly `cookies` and nothing from the jar."""
    headers = dict(kwargs.pop("headers", None) or {})
    if cookies:
        headers["cookie"] = "; ".join(f"{name}={value}" for name, value in cookies.items())
    client.cookies.clear()
    try:
        return client.request(method, url, headers=headers, **kwargs)
    finally:
        client.cookies.clear()


def set_cookie_headers(resp) -> dict[str, str]:
    """Map cookie name -> raw Set-Cookie header for every cookie the response sets or deletes."""
    headers: dict[str, str] = {}
    for header in resp.headers.get_list("set-cookie"):
        name = header.split("=", 1)[0].strip()
        headers[name] = header
    return headers


def is_deleted(header: str) -> bool:
    return "max-age=0" in header.lower()


def cookie_values(resp) -> dict[str, str]:
    """Cookies the response sets (deletions excluded), name -> value."""
    values: dict[str, str] = {}
    for name, header in set_cookie_headers(resp).items():
        if is_deleted(header):
            continue
        values[name] = header.split(";", 1)[0].split("=", 1)[1].strip('"')
    return values


def login(client: TestClient, email: str, password: str) -> dict[str, str]:
    """Log in through the JSON API and return the auth cookies it set."""
    resp = send(client, "POST", "/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return cookie_values(resp)
