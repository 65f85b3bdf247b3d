"""
auth/passwords.py -- Password hashing and verification (bcrypt).

Using bcrypt directly rather than passlib[bcrypt]: passlib's internal
wrap-bug detection feeds bcrypt a password longer than 72 bytes, which
bcrypt 4.x rejects. Direct usage has no compatibility shim.

bcrypt only reads the first 72 bytes of its input and newer releases raise
on longer values, so both hash and verify truncate the UTF-8 encoding at
72 bytes. The truncation is identical on both sides.

_DUMMY_HASH enables timing equalization: the login path always runs one
bcrypt check, even for unknown emails, so response time does not reveal
whether an account exists [C1].
"""

from __future__ import annotations

import bcrypt

_ROUNDS = 12
_MAX_BYTES = 72

PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt digest of the given plaintext password."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt digest."""
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed digest (bad salt / wrong prefix)
        return False


# Computed once at import so the first failed login is not measurably slower
# than later ones.
_DUMMY_HASH: str = hash_password("freightdesk_timing_dummy")


def burn_verification(plain: str) -> None:
    """Run one bcrypt check against the dummy digest and discard the result."""
    verify_password(plain, _DUMMY_HASH)
