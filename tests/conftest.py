"""
tests/conftest.py -- Shared test fixtures for FreightDesk integration tests.

This module provides:
  - _seed_principals(): one account per role, all with SEED_PASSWORD
  - _patch_lifespan(): wires test objects into app.state, bypassing real startup
  - api_client / web_client: (client, sessions, accounts) tuples

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG and RATE_LIMIT_ENABLED must be set before any app import: DEBUG so
get_settings() generates the two signing secrets instead of raising, and
RATE_LIMIT_ENABLED=false because the suite logs in far more often than
the login limit allows.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.accounts import create_platform_owner, register_tenant_user
from auth.models import Principal, Role
from auth.session import SessionManager
from auth.store import AuthStore
from auth.tokens import build_token_codec
from core.config import get_settings
from helpers import make_store

SEED_PASSWORD = "correct-horse-1"
SEED_COMPANY = "acme-logistics"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _seed_principals(store: AuthStore) -> dict[Role, Principal]:
    """One principal per role. Tenants share SEED_COMPANY except the driver."""
    owner = create_platform_owner(store, email="owner@freightdesk.io", password=SEED_PASSWORD, name="Platform Ops")
    admin = register_tenant_user(
        store,
        email="admin@acme-freight.com",
        password=SEED_PASSWORD,
        first_name="Ada",
        last_name="Admin",
        role=Role.COMPANY_ADMIN,
        company_id=SEED_COMPANY,
    )
    agent = register_tenant_user(
        store,
        email="agent@acme-freight.com",
        password=SEED_PASSWORD,
        first_name="Wes",
        last_name="Agent",
        role=Role.WAREHOUSE_AGENT,
        company_id=SEED_COMPANY,
    )
    driver = register_tenant_user(
        store,
        email="driver@acme-freight.com",
        password=SEED_PASSWORD,
        first_name="Dee",
        last_name="Driver",
        role=Role.DRIVER,
        phone="+15550100",
    )
    return {Role.OWNER: owner, Role.COMPANY_ADMIN: admin, Role.WAREHOUSE_AGENT: agent, Role.DRIVER: driver}


def _patch_lifespan(sessions: SessionManager):
    """Return an async context manager that replaces the real lifespan.

    The cleanup_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = sessions.store
        app.state.codec = sessions.codec
        app.state.sessions = sessions
        app.state.cleanup_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.cleanup_task.cancel()

    return test_lifespan


def _client_fixture(db_suffix: str, **client_kwargs) -> Generator[tuple, None, None]:
    store = make_store(db_suffix)
    accounts = _seed_principals(store)
    sessions = SessionManager(store, build_token_codec(get_settings()))

    app.router.lifespan_context = _patch_lifespan(sessions)

    with TestClient(app, raise_server_exceptions=True, **client_kwargs) as client:
        yield client, sessions, accounts

    store.close()


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, SessionManager, dict[Role, Principal]], None, None]:
    """Yield (client, sessions, accounts) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real middleware and route handlers but use an isolated
    in-memory store. accounts maps each Role to a seeded principal whose
    password is SEED_PASSWORD.
    """
    yield from _client_fixture(f"api_{uuid.uuid4().hex[:8]}")


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, SessionManager, dict[Role, Principal]], None, None]:
    """Yield (client, sessions, accounts) for web route integration tests.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations* (e.g. 302 to /login), which are invisible once
    the client follows the redirect and returns the final 200 response.
    """
    yield from _client_fixture(f"web_{uuid.uuid4().hex[:8]}", follow_redirects=False)


@pytest.fixture
def seed_password() -> str:
    return SEED_PASSWORD
