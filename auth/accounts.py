"""
auth/accounts.py -- Login, registration and principal lookup.

Lookup order: the tenant table is searched before the platform table. An
email present in both resolves to the tenant account. Registration refuses
any email already present in either table, so new collisions cannot be
created through the API.

Security:
  [C1] authenticate_principal() always runs exactly one bcrypt check, against
       the dummy digest when no account matches, so timing does not reveal
       whether an email is registered.
  An inactive tenant is refused with InactiveAccount before the password is
  checked.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import EmailInUse, InactiveAccount, InvalidCredentials, ValidationError
from auth.models import PlatformOwner, Principal, Role, TenantUser, TokenClaims
from auth.passwords import burn_verification, hash_password, verify_password
from auth.store import AuthStore

logger = logging.getLogger("freightdesk.auth.accounts")

REGISTRABLE_ROLES = frozenset({Role.COMPANY_ADMIN, Role.WAREHOUSE_AGENT, Role.DRIVER})


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def authenticate_principal(store: AuthStore, email: str, password: str) -> Principal:
    """Return the principal for valid credentials.

    Raises InactiveAccount for a disabled tenant user and InvalidCredentials
    for every other failure.
    """
    email = normalize_email(email)

    tenant = store.get_tenant_by_email(email)
    if tenant is not None:
        if not tenant.is_active:
            logger.info("Login refused for inactive account %s", tenant.id)
            raise InactiveAccount()
        if not verify_password(password, tenant.hashed_password):
            raise InvalidCredentials()
        return tenant

    owner = store.get_owner_by_email(email)
    if owner is None:
        burn_verification(password)
        raise InvalidCredentials()
    if not verify_password(password, owner.hashed_password):
        raise InvalidCredentials()
    return owner


def register_tenant_user(
    store: AuthStore,
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: Role,
    phone: str | None = None,
    company_id: str | None = None,
) -> TenantUser:
    """Create an active tenant user. Raises EmailInUse on any email collision."""
    role = Role(role)
    if role not in REGISTRABLE_ROLES:
        raise ValidationError(f"role {role.value} cannot be self-registered")

    email = normalize_email(email)
    if store.email_in_use(email):
        raise EmailInUse()

    user = TenantUser(
        email=email,
        hashed_password=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        phone=phone or None,
        company_id=company_id or None,
    )
    try:
        user.id = store.create_tenant_user(user)
    except IntegrityError as exc:
        # A concurrent registration won the unique index
        raise EmailInUse() from exc
    logger.info("Registered %s account %s", role.value, user.id)
    return user


def create_platform_owner(store: AuthStore, *, email: str, password: str, name: str) -> PlatformOwner:
    """Create a platform owner. Raises EmailInUse on any email collision."""
    email = normalize_email(email)
    if store.email_in_use(email):
        raise EmailInUse()
    owner = PlatformOwner(email=email, hashed_password=hash_password(password), name=name)
    try:
        owner.id = store.create_platform_owner(owner)
    except IntegrityError as exc:
        raise EmailInUse() from exc
    logger.info("Created platform owner %s", owner.id)
    return owner


def load_principal(store: AuthStore, claims: TokenClaims) -> Principal | None:
    """Fetch the principal a token refers to, choosing the table by role."""
    if claims.role == Role.OWNER:
        return store.get_owner_by_id(claims.principal_id)
    return store.get_tenant_by_id(claims.principal_id)


def profile_of(principal: Principal) -> dict:
    """Public view of a principal, as returned by login, register and /me."""
    return {
        "id": principal.id,
        "email": principal.email,
        "role": principal.role.value,
        "companyId": principal.company_id,
        "firstName": principal.first_name,
        "lastName": principal.last_name,
    }
