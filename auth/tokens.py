"""
auth/tokens.py -- Token codec: signed, expiring access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Access tokens and refresh tokens are signed
       with two different secrets [S1], so a token of one kind never verifies
       against the other kind's key. The payload also carries a "type" claim;
       verify() rejects a kind mismatch even if both secrets were configured
       identically.

  Expiry: checked by the codec itself against an injectable clock, not by
       jose. A token whose exp equals "now" is already expired. jose's own
       check would accept it and would also ignore the injected clock.

  jti: every token carries a random id, so two tokens issued in the same
       second for the same principal are still distinct strings. Refresh
       token values are unique keys in the store.

  decode_unverified() skips the signature. It exists for reading back a token
  the codec just issued, never for trust decisions on client input.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import Role, TokenClaims, TokenKind

if TYPE_CHECKING:
    from core.config import Settings

_ALGORITHM = "HS256"

ACCESS_TOKEN_TTL = timedelta(minutes=15)
REFRESH_TOKEN_TTL = timedelta(days=7)


class TokenError(Exception):
    """Base class for every verification failure."""


class InvalidSignature(TokenError):
    """Signature does not match the expected kind's secret, or the token is not a JWT."""


class TokenExpired(TokenError):
    pass


class WrongKind(TokenError):
    pass


class MalformedToken(TokenError):
    """Signature is valid but required claims are missing or unreadable."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Issues and verifies access / refresh tokens.

    Usage:
        codec = TokenCodec(access_secret, refresh_secret)
        token = codec.issue(TokenKind.ACCESS, user.id, user.email, user.role, user.company_id)
        claims = codec.verify(token, TokenKind.ACCESS)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = ACCESS_TOKEN_TTL,
        refresh_ttl: timedelta = REFRESH_TOKEN_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secrets = {TokenKind.ACCESS: access_secret, TokenKind.REFRESH: refresh_secret}
        self._ttls = {TokenKind.ACCESS: access_ttl, TokenKind.REFRESH: refresh_ttl}
        self.clock = clock

    def ttl_for(self, kind: TokenKind) -> timedelta:
        return self._ttls[kind]

    def issue(
        self,
        kind: TokenKind,
        principal_id: str,
        email: str,
        role: Role,
        company_id: str | None = None,
    ) -> str:
        """Encode and sign a token of the given kind."""
        now = self.clock()
        payload = {
            "sub": principal_id,
            "email": email,
            "role": Role(role).value,
            "type": kind.value,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttls[kind]).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        if company_id:
            payload["company_id"] = company_id
        return jwt.encode(payload, self._secrets[kind], algorithm=_ALGORITHM)

    def verify(self, token: str, expected_kind: TokenKind) -> TokenClaims:
        """Verify signature, expiry and kind. Returns the claims or raises TokenError."""
        try:
            payload = jwt.decode(
                token,
                self._secrets[expected_kind],
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidSignature(str(exc)) from exc

        claims = _claims_from_payload(payload)
        if int(self.clock().timestamp()) >= claims.exp:
            raise TokenExpired(f"token expired at {claims.exp}")
        if claims.kind != expected_kind:
            raise WrongKind(f"expected {expected_kind.value} token, got {claims.kind.value}")
        return claims

    def decode_unverified(self, token: str) -> TokenClaims | None:
        """Parse a token without checking its signature. Returns None if unreadable."""
        try:
            return _claims_from_payload(jwt.get_unverified_claims(token))
        except (JWTError, MalformedToken):
            return None


def _claims_from_payload(payload: dict) -> TokenClaims:
    try:
        return TokenClaims(
            principal_id=str(payload["sub"]),
            email=str(payload["email"]),
            role=Role(payload["role"]),
            kind=TokenKind(payload["type"]),
            exp=int(payload["exp"]),
            jti=str(payload["jti"]),
            company_id=payload.get("company_id") or None,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedToken(f"unreadable claims: {exc}") from exc


def build_token_codec(settings: Settings, clock: Callable[[], datetime] = _utcnow) -> TokenCodec:
    """Build the codec from validated application settings."""
    return TokenCodec(
        access_secret=settings.jwt_secret,
        refresh_secret=settings.jwt_refresh_secret,
        access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
        refresh_ttl=timedelta(seconds=settings.refresh_token_expire_seconds),
        clock=clock,
    )
