"""
auth/errors.py -- Error taxonomy for the authentication core.

Every error carries the HTTP status and machine code the API layer returns,
so route handlers raise and api/main.py renders one uniform envelope:
    {"error": {"code": ..., "message": ..., "detail": ...}}

Messages are fixed strings. InvalidCredentials in particular never says
whether the email exists or the password was wrong.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(self.message)
        self.detail = detail

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.detail is not None:
            body["detail"] = self.detail
        return body


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    message = "Request validation failed."


class InvalidCredentials(AuthError):
    status_code = 401
    code = "bad_credentials"
    message = "Invalid email or password."


class InactiveAccount(AuthError):
    status_code = 403
    code = "account_disabled"
    message = "This account has been disabled."


class EmailInUse(AuthError):
    status_code = 409
    code = "email_in_use"
    message = "This email is already in use."


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    message = "You do not have access to this resource."


class Unexpected(AuthError):
    pass
