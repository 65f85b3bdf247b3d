"""
auth/cookies.py -- Cookie transport for the token pair.

Three cookies:
  token         -- access token, httpOnly, lives as long as the access token
  refreshToken  -- refresh token, httpOnly, lives as long as the refresh token
  session       -- the literal "active", readable by client script, same
                   lifetime as the access token

httponly=True: JS cannot read the token cookies (XSS mitigation).
samesite="lax": sent on same-site navigations and top-level GETs, not on
    cross-site POSTs.
secure: only over HTTPS when ENVIRONMENT=production.
path="/": every route sees them, the middleware included.

The session cookie is a presence hint for the UI. Nothing on the server
side reads it for an authorization decision.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.responses import Response

from auth.models import TokenPair

if TYPE_CHECKING:
    from core.config import Settings

ACCESS_COOKIE = "token"
REFRESH_COOKIE = "refreshToken"
SESSION_COOKIE = "session"
SESSION_FLAG = "active"

AUTH_COOKIES = (ACCESS_COOKIE, REFRESH_COOKIE, SESSION_COOKIE)


def set_auth_cookies(response: Response, pair: TokenPair, settings: Settings) -> Response:
    """Write the token pair (and the session flag) onto the response."""
    common = {"path": "/", "samesite": "lax", "secure": settings.cookie_secure}
    response.set_cookie(
        ACCESS_COOKIE,
        value=pair.access_token,
        max_age=settings.access_token_expire_seconds,
        httponly=True,
        **common,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        max_age=settings.refresh_token_expire_seconds,
        httponly=True,
        **common,
    )
    response.set_cookie(
        SESSION_COOKIE,
        value=SESSION_FLAG,
        max_age=settings.access_token_expire_seconds,
        httponly=False,
        **common,
    )
    return response


def clear_auth_cookies(response: Response, settings: Settings) -> Response:
    """Expire all three auth cookies. Attributes match set_auth_cookies()."""
    for name in AUTH_COOKIES:
        response.delete_cookie(
            name,
            path="/",
            samesite="lax",
            secure=settings.cookie_secure,
            httponly=name != SESSION_COOKIE,
        )
    return response


def read_access_token(request: Request) -> str | None:
    return request.cookies.get(ACCESS_COOKIE) or None


def read_refresh_token(request: Request) -> str | None:
    return request.cookies.get(REFRESH_COOKIE) or None
