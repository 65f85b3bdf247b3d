"""
web/routes.py -- Jinja2 template routes for the FreightDesk web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same store and session manager) but return HTML and redirects
instead of JSON. They exist so the middleware's page redirects have real
targets; business dashboards are stubs that render the resolved identity.

Role gating for /platform, /company, /warehouse and /driver is done by
AuthorizationMiddleware before these handlers run. Handlers only read
request.state.identity.

Routes:
  GET  /                      -- redirect to the caller's role home
  GET  /login                 -- login form
  POST /login                 -- handle password login, set cookies
  GET  /register              -- registration form
  POST /register              -- create tenant account, set cookies
  POST /logout                -- revoke refresh token, clear cookies, redirect /login
  GET  /unauthorized          -- role-denied page
  GET  /platform/dashboard    -- OWNER
  GET  /company/dashboard     -- OWNER, COMPANY_ADMIN
  GET  /warehouse/dashboard   -- OWNER, COMPANY_ADMIN, WAREHOUSE_AGENT
  GET  /driver/dashboard      -- DRIVER
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

import pydantic
from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError

from auth.accounts import REGISTRABLE_ROLES, authenticate_principal, register_tenant_user
from auth.cookies import clear_auth_cookies, read_access_token, read_refresh_token, set_auth_cookies
from auth.dependencies import try_get_identity
from auth.errors import AuthError, EmailInUse
from auth.models import Role, TokenClaims, TokenKind
from auth.passwords import PASSWORD_MAX_LENGTH, PASSWORD_MIN_LENGTH
from auth.session import SessionManager
from auth.store import AuthStore
from auth.tokens import TokenError
from core.config import get_settings

logger = logging.getLogger("freightdesk.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

ROLE_HOMES: dict[Role, str] = {
    Role.OWNER: "/platform/dashboard",
    Role.COMPANY_ADMIN: "/company/dashboard",
    Role.WAREHOUSE_AGENT: "/warehouse/dashboard",
    Role.DRIVER: "/driver/dashboard",
}

# Whitelist mapping for ?error= query params on /login [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
    "account_disabled": "Your account has been disabled. Contact your company administrator.",
    "session_expired": "Your session has expired. Please log in again.",
}

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def _safe_next(next_url: Optional[str]) -> Optional[str]:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Prevents open redirect attacks where an attacker crafts a URL like:
      /login?next=https://attacker.com  or  /login?next=//attacker.com

    Returns None for anything that is not a server-local path, so the
    caller falls back to the role home.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//") and "\\" not in next_url:
        return next_url
    return None


def _current_identity(request: Request) -> Optional[TokenClaims]:
    """Identity for pages on open paths, where the middleware does not run.

    Prefers what the middleware resolved; otherwise verifies the access
    cookie. Never renews -- an expired access token here just means
    "show the form".
    """
    identity = try_get_identity(request)
    if identity is not None:
        return identity
    token = read_access_token(request)
    if not token:
        return None
    sessions: SessionManager = request.app.state.sessions
    try:
        return sessions.codec.verify(token, TokenKind.ACCESS)
    except TokenError:
        return None


def _signed_in_redirect(target: str, pair) -> RedirectResponse:
    resp = RedirectResponse(target, status_code=302)
    set_auth_cookies(resp, pair, get_settings())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# GET / -- role home
# ---------------------------------------------------------------------------


@router.get("/")
def home(request: Request) -> RedirectResponse:
    identity = _current_identity(request)
    if identity is None:
        return RedirectResponse("/login", status_code=302)
    return RedirectResponse(ROLE_HOMES[identity.role], status_code=302)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page. Already signed-in visitors go to their role home."""
    identity = _current_identity(request)
    if identity is not None:
        return RedirectResponse(ROLE_HOMES[identity.role], status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)  # [M3]
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "next": _safe_next(request.query_params.get("next"))},
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
) -> RedirectResponse:
    """Handle the login form submission."""
    store: AuthStore = request.app.state.store
    sessions: SessionManager = request.app.state.sessions
    next_url = _safe_next(request.query_params.get("next"))  # [C2]

    try:
        principal = authenticate_principal(store, email, password)  # [C1] timing equalization
    except AuthError as exc:
        logger.info("Form login failed (%s)", exc.code)
        params = {"error": exc.code}
        if next_url:
            params["next"] = next_url
        return RedirectResponse(f"/login?{urlencode(params)}", status_code=302)

    pair = sessions.create_session_for(principal)
    return _signed_in_redirect(next_url or ROLE_HOMES[principal.role], pair)


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Revoke the refresh token, clear the cookies and redirect to the login page."""
    sessions: SessionManager = request.app.state.sessions
    try:
        sessions.destroy_session(read_refresh_token(request))
    except SQLAlchemyError:
        logger.exception("Refresh token revocation failed during logout")
    resp = RedirectResponse("/login", status_code=302)
    clear_auth_cookies(resp, get_settings())
    return resp


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

_ROLE_CHOICES = [Role.COMPANY_ADMIN.value, Role.WAREHOUSE_AGENT.value, Role.DRIVER.value]


class _RegistrationForm(BaseModel):
    """Same rules as the JSON register body, on snake_case form fields."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    role: Role
    phone: Optional[str] = Field(default=None, max_length=40)
    company_id: Optional[str] = Field(default=None, max_length=64)

    @field_validator("role")
    @classmethod
    def registrable(cls, value: Role) -> Role:
        if value not in REGISTRABLE_ROLES:
            raise ValueError("role cannot be self-registered")
        return value



def _register_page(request: Request, error_msg: Optional[str], form: dict, status_code: int = 200) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "register.html",
        {"error_msg": error_msg, "form": form, "roles": _ROLE_CHOICES},
        status_code=status_code,
    )


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request) -> HTMLResponse:
    return _register_page(request, None, {})


@router.post("/register", response_class=HTMLResponse)
def register_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    first_name: str = Form(...),
    last_name: str = Form(...),
    role: str = Form(...),
    phone: str = Form(""),
    company_id: str = Form(""),
) -> HTMLResponse:
    """Validate the form, create the account and sign it in."""
    store: AuthStore = request.app.state.store
    sessions: SessionManager = request.app.state.sessions
    form = {
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "role": role,
        "phone": phone,
        "company_id": company_id,
    }

    try:
        body = _RegistrationForm(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role=role,
            phone=phone or None,
            company_id=company_id or None,
        )
    except pydantic.ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        return _register_page(request, f"Please check: {', '.join(fields)}.", form, status_code=400)

    try:
        user = register_tenant_user(
            store,
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            role=body.role,
            phone=body.phone,
            company_id=body.company_id,
        )
    except EmailInUse:
        return _register_page(request, "An account with this email already exists.", form, status_code=409)

    pair = sessions.create_session_for(user)
    return _signed_in_redirect(ROLE_HOMES[user.role], pair)


# ---------------------------------------------------------------------------
# Denied / dashboards
# ---------------------------------------------------------------------------


@router.get("/unauthorized", response_class=HTMLResponse)
def unauthorized(request: Request) -> HTMLResponse:
    identity = _current_identity(request)
    home_url = ROLE_HOMES[identity.role] if identity is not None else "/login"
    return templates.TemplateResponse(
        request,
        "unauthorized.html",
        {"identity": identity, "home_url": home_url},
        status_code=403,
    )


def _dashboard(request: Request, area: str) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {"identity": try_get_identity(request), "area": area},
    )


@router.get("/platform/dashboard", response_class=HTMLResponse)
def platform_dashboard(request: Request) -> HTMLResponse:
    return _dashboard(request, "Platform")


@router.get("/company/dashboard", response_class=HTMLResponse)
def company_dashboard(request: Request) -> HTMLResponse:
    return _dashboard(request, "Company")


@router.get("/warehouse/dashboard", response_class=HTMLResponse)
def warehouse_dashboard(request: Request) -> HTMLResponse:
    return _dashboard(request, "Warehouse")


@router.get("/driver/dashboard", response_class=HTMLResponse)
def driver_dashboard(request: Request) -> HTMLResponse:
    return _dashboard(request, "Driver")
