"""
auth/session.py -- Session lifecycle: create, rotate, destroy, sweep.

A session is one refresh-token row plus the access token issued alongside
it. Refresh tokens are single-use: every successful renewal replaces the row
with a new token value, and the old value is dead from then on.

Renewal outcome:
  refresh_session() returns a new TokenPair, or None meaning "expired, log
  in again". Signature failures, wrong kind, true expiry, unknown or already
  rotated tokens and dead owners all collapse into None. Callers never learn
  which one happened.

Rotation race:
  Two requests carrying the same refresh token (duplicate tabs) may renew at
  the same time. The store's compare-and-delete transaction lets exactly one
  of them consume the old row. The loser gets None, or a storage error if
  SQLite reports the database as locked. It never gets a second valid pair.
  There is no grace window for the old token.

Storage errors (sqlalchemy.exc.SQLAlchemyError) are not caught here. They
propagate to the caller, which decides between a 500 and a silent no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from auth.models import (
    OwnerKind,
    Principal,
    RefreshTokenRecord,
    Role,
    TenantUser,
    TokenKind,
    TokenPair,
)
from auth.store import AuthStore
from auth.tokens import TokenCodec, TokenError, TokenExpired

logger = logging.getLogger("freightdesk.auth.session")


class SessionManager:
    """Issues, rotates and revokes sessions for both principal kinds.

    Usage:
        sessions = SessionManager(store, codec)
        pair = sessions.create_session(user.id, user.email, user.role, user.company_id)
        renewed = sessions.refresh_session(pair.refresh_token)   # TokenPair | None
        sessions.destroy_session(renewed.refresh_token)
    """

    def __init__(self, store: AuthStore, codec: TokenCodec, clock: Callable[[], datetime] | None = None) -> None:
        self.store = store
        self.codec = codec
        self.clock = clock or codec.clock

    def _now_ts(self) -> int:
        return int(self.clock().astimezone(timezone.utc).timestamp())

    def _issue_pair(
        self, principal_id: str, email: str, role: Role, company_id: str | None
    ) -> tuple[TokenPair, RefreshTokenRecord]:
        access = self.codec.issue(TokenKind.ACCESS, principal_id, email, role, company_id)
        refresh = self.codec.issue(TokenKind.REFRESH, principal_id, email, role, company_id)
        record = RefreshTokenRecord(
            token=refresh,
            owner_kind=OwnerKind.for_role(Role(role)),
            owner_id=principal_id,
            expires_at=self._now_ts() + int(self.codec.ttl_for(TokenKind.REFRESH).total_seconds()),
        )
        return TokenPair(access_token=access, refresh_token=refresh), record

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_session(self, principal_id: str, email: str, role: Role, company_id: str | None = None) -> TokenPair:
        """Issue an access/refresh pair and persist the refresh token.

        The owner is recorded as a platform owner when role is OWNER, as a
        tenant user otherwise.
        """
        pair, record = self._issue_pair(principal_id, email, role, company_id)
        self.store.create_refresh_token(record)
        logger.info("Session created for %s %s", record.owner_kind.value, principal_id)
        return pair

    def create_session_for(self, principal: Principal) -> TokenPair:
        return self.create_session(principal.id, principal.email, principal.role, principal.company_id)

    # ------------------------------------------------------------------
    # Rotate
    # ------------------------------------------------------------------

    def refresh_session(self, refresh_token: str) -> TokenPair | None:
        """Exchange a refresh token for a new pair. Returns None when the session is over."""
        try:
            self.codec.verify(refresh_token, TokenKind.REFRESH)
        except TokenExpired:
            self.store.delete_refresh_token(refresh_token)
            logger.info("Refresh refused: token expired")
            return None
        except TokenError as exc:
            logger.info("Refresh refused: %s", type(exc).__name__)
            return None

        record = self.store.get_refresh_token(refresh_token)
        if record is None or record.expires_at <= self._now_ts():
            self.store.delete_refresh_token(refresh_token)
            logger.info("Refresh refused: no live record")
            return None

        principal = self._resolve_owner(record)
        if principal is None:
            self.store.delete_refresh_token(refresh_token)
            logger.info("Refresh refused: owner %s %s is gone or inactive", record.owner_kind.value, record.owner_id)
            return None

        # Claims come from the database row, not from the presented token,
        # so a role or company change takes effect at the next renewal.
        pair, new_record = self._issue_pair(principal.id, principal.email, principal.role, principal.company_id)
        if not self.store.rotate_refresh_token(refresh_token, new_record):
            logger.warning(
                "Refresh refused: token for %s %s was consumed concurrently",
                record.owner_kind.value,
                record.owner_id,
            )
            return None

        logger.info("Session rotated for %s %s", record.owner_kind.value, principal.id)
        return pair

    def _resolve_owner(self, record: RefreshTokenRecord) -> Principal | None:
        if record.owner_kind == OwnerKind.PLATFORM:
            return self.store.get_owner_by_id(record.owner_id)
        user = self.store.get_tenant_by_id(record.owner_id)
        if isinstance(user, TenantUser) and not user.is_active:
            return None
        return user

    # ------------------------------------------------------------------
    # Destroy / sweep
    # ------------------------------------------------------------------

    def destroy_session(self, refresh_token: str | None) -> None:
        """Revoke a refresh token. Unknown or missing tokens are a no-op."""
        if not refresh_token:
            return
        if self.store.delete_refresh_token(refresh_token):
            logger.info("Session destroyed")

    def cleanup_expired_tokens(self) -> int:
        """Delete every refresh token whose expiry has passed. Returns the count."""
        removed = self.store.delete_expired_refresh_tokens(self._now_ts())
        if removed:
            logger.info("Swept %d expired refresh token(s)", removed)
        return removed
