"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
session manager do the work; these types only own the shape.

Two disjoint principal kinds share one session concept:
  TenantUser    -- a company-scoped account (users table).
  PlatformOwner -- a platform operator (platform_owners table). Its role is
                   always OWNER and is never persisted.

Principal is the tagged union of the two. owner_kind is the discriminant,
and the refresh_tokens table stores the same discriminant next to a single
owner id.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class Role(str, Enum):
    OWNER = "OWNER"
    COMPANY_ADMIN = "COMPANY_ADMIN"
    WAREHOUSE_AGENT = "WAREHOUSE_AGENT"
    DRIVER = "DRIVER"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class OwnerKind(str, Enum):
    TENANT = "tenant"
    PLATFORM = "platform"

    @classmethod
    def for_role(cls, role: Role) -> "OwnerKind":
        return cls.PLATFORM if role == Role.OWNER else cls.TENANT


@dataclass
class TenantUser:
    """A company-scoped account: admin, warehouse agent or driver.

    company_id is an opaque reference; None means "no company yet".
    Inactive users are refused at login and lose their sessions at the
    next renewal.
    """

    email: str
    hashed_password: str
    first_name: str
    last_name: str
    role: Role
    id: str | None = None
    phone: str | None = None
    company_id: str | None = None
    is_active: bool = True
    created_at: str | None = None

    owner_kind = OwnerKind.TENANT


@dataclass
class PlatformOwner:
    """A platform operator. role is implicit and always OWNER."""

    email: str
    hashed_password: str
    name: str
    id: str | None = None
    created_at: str | None = None

    owner_kind = OwnerKind.PLATFORM

    @property
    def role(self) -> Role:
        return Role.OWNER

    @property
    def company_id(self) -> Optional[str]:
        return None

    @property
    def first_name(self) -> str:
        return self.name

    @property
    def last_name(self) -> str:
        return ""


Principal = Union[TenantUser, PlatformOwner]


@dataclass(frozen=True)
class TokenClaims:
    """Decoded token payload. Also used as the per-request identity."""

    principal_id: str
    email: str
    role: Role
    kind: TokenKind
    exp: int  # epoch seconds
    jti: str
    company_id: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class RefreshTokenRecord:
    """A persisted refresh token.

    token is the lookup key. owner_kind + owner_id name exactly one owner.
    expires_at is epoch seconds and matches the token's own exp claim.
    """

    token: str
    owner_kind: OwnerKind
    owner_id: str
    expires_at: int
    id: int | None = None
    created_at: str | None = None
