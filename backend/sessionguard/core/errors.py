"""Failure kinds surfaced by the auth core. Each carries a stable machine code and a user-facing message."""

from __future__ import annotations


class AuthError(Exception):
    code = "UNEXPECTED_ERROR"
    message = "An error occurred"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentialsError(AuthError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"
    status_code = 401


class InvalidTokenError(AuthError):
    code = "INVALID_TOKEN"
    message = "Invalid or revoked token"
    status_code = 401


class TokenExpiredError(AuthError):
    code = "REFRESH_TOKEN_EXPIRED"
    message = "Refresh token has expired"
    status_code = 401


class AccessTokenExpiredError(AuthError):
    code = "ACCESS_TOKEN_EXPIRED"
    message = "Access token has expired"
    status_code = 401


class ConflictError(AuthError):
    code = "CONFLICT"
    message = "User with this email already exists"
    status_code = 409


class ServiceUnavailableError(AuthError):
    code = "SERVICE_UNAVAILABLE"
    message = "Service temporarily unavailable, try again"
    status_code = 503


class TokenVerificationError(Exception):
    """Raised by the token codec. `reason` is internal ("expired" or "invalid") and never shown to clients."""

    EXPIRED = "expired"
    INVALID = "invalid"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)

    @property
    def expired(self) -> bool:
        return self.reason == self.EXPIRED
