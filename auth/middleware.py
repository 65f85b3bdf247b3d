"""
auth/middleware.py -- Per-request authentication and route-prefix authorization.

Every request runs the same state machine. The terminal outcomes are:
  forward                   -- identity resolved, role permitted
  redirect to login         -- page route, no usable session
  401 JSON                  -- API route, no usable session
  redirect to unauthorized  -- page route, role not permitted
  403 JSON                  -- API route, role not permitted

Flow:
  1. Open path (public or static prefix) -> forward.
  2. No access cookie and no refresh cookie -> unauthenticated.
  3. Access cookie verifies -> use its claims.
  4. Otherwise renew through the refresh cookie. Success sets the rotated
     cookies on the outgoing response; failure clears all auth cookies.
  5. policy.permits(path, role) or deny.
  6. Forward with the identity injected as request headers and as
     request.state.identity.

Security:
  [S4] Client-supplied x-user-* / x-company-id headers are always stripped,
       on open paths too. Downstream code may trust these headers only
       because this middleware is the sole writer.
  [S5] A rotation consumes the presented refresh token. The new cookies are
       therefore written on every response that follows a rotation,
       including 403 and the unauthorized redirect, or the browser would be
       left holding a dead token.
  The session cookie is never read here.

Storage errors during renewal are answered with a 500 envelope and the
cookies are left alone: the refresh token may still be valid.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from auth.cookies import clear_auth_cookies, read_access_token, read_refresh_token, set_auth_cookies
from auth.errors import AuthError, Forbidden, Unauthenticated, Unexpected
from auth.models import TokenClaims, TokenKind, TokenPair
from auth.policy import DEFAULT_POLICY, AccessPolicy
from auth.session import SessionManager
from auth.tokens import TokenError
from core.config import get_settings

logger = logging.getLogger("freightdesk.auth.middleware")

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"
USER_EMAIL_HEADER = "x-user-email"
COMPANY_ID_HEADER = "x-company-id"

IDENTITY_HEADERS = frozenset({USER_ID_HEADER, USER_ROLE_HEADER, USER_EMAIL_HEADER, COMPANY_ID_HEADER})


def identity_headers(claims: TokenClaims) -> list[tuple[str, str]]:
    """Header pairs describing an identity. x-company-id only when set."""
    pairs = [
        (USER_ID_HEADER, claims.principal_id),
        (USER_ROLE_HEADER, claims.role.value),
        (USER_EMAIL_HEADER, claims.email),
    ]
    if claims.company_id:
        pairs.append((COMPANY_ID_HEADER, claims.company_id))
    return pairs


def _strip_identity_headers(request: Request) -> None:
    request.scope["headers"] = [
        (name, value)
        for name, value in request.scope["headers"]
        if name.decode("latin-1").lower() not in IDENTITY_HEADERS
    ]


def _inject_identity(request: Request, claims: TokenClaims) -> None:
    # call_next() hands the same scope dict to the app, so downstream
    # Request objects see these headers and this state.
    request.scope["headers"].extend(
        (name.encode("latin-1"), value.encode("utf-8")) for name, value in identity_headers(claims)
    )
    request.state.identity = claims


def _mirror_identity(response: Response, claims: TokenClaims) -> None:
    for name, value in identity_headers(claims):
        response.raw_headers.append((name.encode("latin-1"), value.encode("utf-8")))


class AuthorizationMiddleware(BaseHTTPMiddleware):
    """Resolve the caller's identity from the auth cookies and enforce the access policy.

    The SessionManager is read from request.app.state.sessions on every
    request, so the lifespan (or a test) decides which store and codec are
    live.
    """

    def __init__(self, app: ASGIApp, policy: AccessPolicy = DEFAULT_POLICY) -> None:
        super().__init__(app)
        self.policy = policy

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        _strip_identity_headers(request)
        path = request.url.path

        if self.policy.is_open(path):
            return await call_next(request)

        access_token = read_access_token(request)
        refresh_token = read_refresh_token(request)
        if not access_token and not refresh_token:
            return self._unauthenticated(request, clear_cookies=False)

        sessions: SessionManager = request.app.state.sessions
        claims: TokenClaims | None = None
        rotated: TokenPair | None = None

        if access_token:
            try:
                claims = sessions.codec.verify(access_token, TokenKind.ACCESS)
            except TokenError as exc:
                logger.debug("Access token rejected on %s: %s", path, type(exc).__name__)

        if claims is None:
            if not refresh_token:
                return self._unauthenticated(request, clear_cookies=True)
            try:
                rotated = await run_in_threadpool(sessions.refresh_session, refresh_token)
            except SQLAlchemyError:
                logger.exception("Session renewal failed on %s %s", request.method, path)
                return JSONResponse(status_code=500, content={"error": Unexpected().to_dict()})
            if rotated is not None:
                claims = sessions.codec.decode_unverified(rotated.access_token)
            if claims is None:
                return self._unauthenticated(request, clear_cookies=True)

        if self.policy.permits(path, claims.role):
            _inject_identity(request, claims)
            response = await call_next(request)
        else:
            logger.warning("Access denied: %s %s for role %s", request.method, path, claims.role.value)
            response = self._deny(request, Forbidden(), self.policy.unauthorized_path)

        if rotated is not None:
            set_auth_cookies(response, rotated, get_settings())
            _mirror_identity(response, claims)
        return response

    # ------------------------------------------------------------------
    # Terminal responses
    # ------------------------------------------------------------------

    def _unauthenticated(self, request: Request, clear_cookies: bool) -> Response:
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        login_url = f"{self.policy.login_path}?{urlencode({'next': target})}"
        response = self._deny(request, Unauthenticated(), login_url)
        if clear_cookies:
            clear_auth_cookies(response, get_settings())
        return response

    def _deny(self, request: Request, error: AuthError, page_target: str) -> Response:
        if self.policy.is_api(request.url.path):
            return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})
        return RedirectResponse(page_target, status_code=302)
