"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/auth/login     -- password login; sets token / refreshToken / session cookies
  POST /api/auth/register  -- self-service tenant registration; 201 + cookies
  POST /api/auth/refresh   -- rotate the refresh token; 401 + cleared cookies on failure
  POST /api/auth/logout    -- revoke the refresh token, clear cookies; always 200
  GET  /api/auth/me        -- profile of the access-token holder
  GET  /api/session        -- identity resolved by AuthorizationMiddleware

/api/auth/* is an open prefix in the access policy: these handlers read and
verify the cookies themselves. /api/session is not open, so the middleware
has already authenticated (and possibly renewed) the caller.

Security:
  [H2] login and register are rate-limited per client IP (LOGIN_RATE_LIMIT).
  [C1] authenticate_principal() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that sets or clears auth cookies.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter, login_rate_limit
from api.models import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    SessionResponse,
    SuccessResponse,
    UserProfile,
)
from auth.accounts import authenticate_principal, load_principal, profile_of, register_tenant_user
from auth.cookies import clear_auth_cookies, read_access_token, read_refresh_token, set_auth_cookies
from auth.dependencies import get_identity
from auth.errors import AuthError, Unauthenticated
from auth.models import Role, TokenClaims, TokenKind
from auth.session import SessionManager
from auth.store import AuthStore
from auth.tokens import TokenError
from core.config import get_settings

logger = logging.getLogger("freightdesk.api.auth")

# Auth policy:
# - POST /api/auth/login:     public
# - POST /api/auth/register:  public
# - POST /api/auth/refresh:   public prefix, verifies the refreshToken cookie itself
# - POST /api/auth/logout:    public prefix, never fails
# - GET  /api/auth/me:        public prefix, verifies the token cookie itself
# - GET  /api/session:        authenticated by AuthorizationMiddleware
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _error(exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


# ---------------------------------------------------------------------------
# Credential endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(login_rate_limit)  # [H2] -- must be BELOW @router so FastAPI registers the limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the auth cookies.

    Unknown email and wrong password produce the same 401 body. An inactive
    tenant account gets 403 account_disabled.
    """
    store: AuthStore = request.app.state.store
    sessions: SessionManager = request.app.state.sessions

    try:
        principal = authenticate_principal(store, body.email, body.password)
    except AuthError as exc:
        logger.info("Login failed (%s)", exc.code)
        return _no_store(_error(exc))

    pair = sessions.create_session_for(principal)
    logger.info("Login succeeded for %s %s", principal.role.value, principal.id)
    resp = JSONResponse(
        status_code=200,
        content=AuthResponse(user=UserProfile.model_validate(profile_of(principal))).model_dump(by_alias=True),
    )
    set_auth_cookies(resp, pair, get_settings())
    return _no_store(resp)


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(login_rate_limit)  # [H2]
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a tenant account and sign it in. 409 email_in_use on any collision."""
    store: AuthStore = request.app.state.store
    sessions: SessionManager = request.app.state.sessions

    user = register_tenant_user(
        store,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=Role(body.role.value),
        phone=body.phone,
        company_id=body.company_id,
    )
    pair = sessions.create_session_for(user)
    resp = JSONResponse(
        status_code=201,
        content=AuthResponse(user=UserProfile.model_validate(profile_of(user))).model_dump(by_alias=True),
    )
    set_auth_cookies(resp, pair, get_settings())
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/refresh", response_model=SuccessResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refreshToken cookie for a new pair.

    Any failure -- missing cookie, bad signature, expired, already rotated --
    answers 401 and clears all auth cookies so the client cannot keep
    presenting a dead token.
    """
    sessions: SessionManager = request.app.state.sessions
    settings = get_settings()

    refresh_token = read_refresh_token(request)
    pair = sessions.refresh_session(refresh_token) if refresh_token else None
    if pair is None:
        resp = _error(Unauthenticated("Session expired. Please log in again."))
        clear_auth_cookies(resp, settings)
        return _no_store(resp)

    resp = JSONResponse(content=SuccessResponse().model_dump())
    set_auth_cookies(resp, pair, settings)
    return _no_store(resp)


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the refresh token and clear the cookies. Never fails observably."""
    sessions: SessionManager = request.app.state.sessions
    try:
        sessions.destroy_session(read_refresh_token(request))
    except SQLAlchemyError:
        # The cookies are cleared regardless; the orphaned row expires and is swept.
        logger.exception("Refresh token revocation failed during logout")
    resp = JSONResponse(content=SuccessResponse().model_dump())
    clear_auth_cookies(resp, get_settings())
    return _no_store(resp)


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request) -> JSONResponse:
    """Return the profile of the access-token holder.

    401 when the token cookie is missing or does not verify, 404 when the
    principal it names no longer exists.
    """
    store: AuthStore = request.app.state.store
    sessions: SessionManager = request.app.state.sessions

    token = read_access_token(request)
    if not token:
        raise Unauthenticated()
    try:
        claims = sessions.codec.verify(token, TokenKind.ACCESS)
    except TokenError as exc:
        raise Unauthenticated() from exc

    principal = load_principal(store, claims)
    if principal is None:
        return JSONResponse(
            status_code=404,
            content={"error": {"code": "not_found", "message": "User not found."}},
        )
    body = MeResponse(user=UserProfile.model_validate(profile_of(principal)))
    return JSONResponse(content=body.model_dump(by_alias=True))


@router.get("/session", response_model=SessionResponse)
async def session(identity: TokenClaims = Depends(get_identity)) -> SessionResponse:
    """Echo the identity AuthorizationMiddleware injected for this request."""
    return SessionResponse(
        user_id=identity.principal_id,
        email=identity.email,
        role=identity.role.value,
        company_id=identity.company_id,
    )

