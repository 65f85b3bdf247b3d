"""
auth/dependencies.py -- FastAPI Depends() helpers for the resolved identity.

AuthorizationMiddleware has already authenticated the request by the time a
route handler runs. These helpers read what it left on request.state; they
never touch cookies or tokens.

try_get_identity() is the soft variant (returns None).
get_identity() raises Unauthenticated, rendered as a 401 envelope.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Unauthenticated
from auth.models import TokenClaims


def try_get_identity(request: Request) -> TokenClaims | None:
    return getattr(request.state, "identity", None)


def get_identity(request: Request) -> TokenClaims:
    """Require a resolved identity.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: TokenClaims = Depends(get_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise Unauthenticated()
    return identity
