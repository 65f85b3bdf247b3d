"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository; the _row_to_*
functions are the mappers. Route, middleware and session code never touch
SQL directly.

Tables:
  users            -- tenant principals (company admins, warehouse agents, drivers)
  platform_owners  -- platform principals (implicit role OWNER)
  refresh_tokens   -- issued refresh tokens, one row per live session

Principal ids are random UUID hex strings for both principal tables, so the
two key spaces never overlap.

refresh_tokens carries an owner_kind discriminant plus a single owner_id
instead of two nullable foreign keys. "Exactly one owner" is then a property
of the schema (NOT NULL + CHECK), not a convention callers must honour.

Security:
  All queries use bound parameters. No f-strings in SQL.

Consistency:
  No in-process caching. Every refresh-token lookup re-reads the table.
  rotate_refresh_token() deletes the old row and inserts the new one in a
  single transaction, and only inserts when the delete removed exactly one
  row (compare-and-delete). A token consumed by a concurrent rotation cannot
  be rotated a second time.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import OwnerKind, PlatformOwner, RefreshTokenRecord, Role, TenantUser

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("phone", String(40)),
    Column("role", String(30), nullable=False),
    Column("company_id", String(64)),  # opaque company reference, NULL = none
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    CheckConstraint("role IN ('COMPANY_ADMIN', 'WAREHOUSE_AGENT', 'DRIVER')", name="ck_users_role"),
)

_platform_owners = Table(
    "platform_owners",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", Text, nullable=False, unique=True),
    Column("owner_kind", String(16), nullable=False),
    Column("owner_id", String(32), nullable=False),
    Column("expires_at", Integer, nullable=False, index=True),  # epoch seconds
    Column("created_at", String(32), nullable=False),
    CheckConstraint("owner_kind IN ('tenant', 'platform')", name="ck_refresh_tokens_owner_kind"),
    Index("ix_refresh_tokens_owner", "owner_kind", "owner_id"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block the rotation writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for principals and refresh tokens.

    Usage:
        store = AuthStore("sqlite:///freightdesk_auth.db")
        user_id = store.create_tenant_user(TenantUser(...))
        store.create_refresh_token(RefreshTokenRecord(...))
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Tenant principals
    # ------------------------------------------------------------------

    def create_tenant_user(self, user: TenantUser) -> str:
        """Insert a tenant user and return its new id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        user_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    phone=user.phone,
                    role=Role(user.role).value,
                    company_id=user.company_id,
                    is_active=1 if user.is_active else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_tenant_by_email(self, email: str) -> TenantUser | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_tenant(row) if row is not None else None

    def get_tenant_by_id(self, user_id: str) -> TenantUser | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_tenant(row) if row is not None else None

    def set_tenant_active(self, user_id: str, is_active: bool) -> bool:
        """Activate or deactivate a tenant user. Returns False if the id is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_active=1 if is_active else 0)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Platform principals
    # ------------------------------------------------------------------

    def create_platform_owner(self, owner: PlatformOwner) -> str:
        """Insert a platform owner and return its new id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        owner_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _platform_owners.insert().values(
                    id=owner_id,
                    email=owner.email,
                    hashed_password=owner.hashed_password,
                    name=owner.name,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return owner_id

    def get_owner_by_email(self, email: str) -> PlatformOwner | None:
        with self.engine.connect() as conn:
            row = conn.execute(_platform_owners.select().where(_platform_owners.c.email == email)).fetchone()
        return _row_to_owner(row) if row is not None else None

    def get_owner_by_id(self, owner_id: str) -> PlatformOwner | None:
        with self.engine.connect() as conn:
            row = conn.execute(_platform_owners.select().where(_platform_owners.c.id == owner_id)).fetchone()
        return _row_to_owner(row) if row is not None else None

    def has_owners(self) -> bool:
        """Return True if at least one platform owner exists."""
        with self.engine.connect() as conn:
            row = conn.execute(select(func.count()).select_from(_platform_owners)).scalar()
        return bool(row)

    def email_in_use(self, email: str) -> bool:
        """True if either principal table already holds this email."""
        return self.get_tenant_by_email(email) is not None or self.get_owner_by_email(email) is not None

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, record: RefreshTokenRecord) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.insert().values(**_record_values(record)))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_refresh_token(self, token: str) -> RefreshTokenRecord | None:
        """Look up a refresh token by exact value. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_refresh_tokens(self, owner_kind: OwnerKind, owner_id: str) -> list[RefreshTokenRecord]:
        """Return every refresh token held by one principal, oldest first.

        Backs the `list-sessions` admin command in main.py.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(
                    (_refresh_tokens.c.owner_kind == OwnerKind(owner_kind).value)
                    & (_refresh_tokens.c.owner_id == owner_id)
                )
                .order_by(_refresh_tokens.c.id)
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def delete_refresh_token(self, token: str) -> bool:
        """Delete a refresh token by value. Returns False if no row matched."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def delete_expired_refresh_tokens(self, now: int) -> int:
        """Delete every row whose expiry is at or before `now` (epoch seconds).

        Returns the number of rows removed.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= now))
            conn.commit()
        return result.rowcount

    def rotate_refresh_token(self, old_token: str, new_record: RefreshTokenRecord) -> bool:
        """Atomically replace old_token with new_record.

        Returns False, with nothing written, when old_token no longer exists
        (already rotated, revoked or swept). If the insert fails the whole
        transaction rolls back and the old row survives.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == old_token)).rowcount
            if deleted != 1:
                return False
            conn.execute(_refresh_tokens.insert().values(**_record_values(new_record)))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _record_values(record: RefreshTokenRecord) -> dict:
    return {
        "token": record.token,
        "owner_kind": OwnerKind(record.owner_kind).value,
        "owner_id": record.owner_id,
        "expires_at": int(record.expires_at),
        "created_at": record.created_at or _now_iso(),
    }


def _row_to_tenant(row) -> TenantUser:
    return TenantUser(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        role=Role(row.role),
        company_id=row.company_id,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _row_to_owner(row) -> PlatformOwner:
    return PlatformOwner(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        name=row.name,
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        token=row.token,
        owner_kind=OwnerKind(row.owner_kind),
        owner_id=row.owner_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
