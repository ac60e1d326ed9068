"""Auth error taxonomy. Each error carries an HTTP status and a stable machine-readable code."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Signing secret or key pair missing/inconsistent. Fatal at startup."""


class AuthError(Exception):
    """Expected, user-facing failure (4xx). Never rendered as a server error."""

    status_code: int = 401
    code: str = "UNAUTHORIZED"
    message: str = "Unauthorized"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class MissingToken(AuthError):
    code = "TOKEN_MISSING"
    message = "Access token required"


class TokenExpired(AuthError):
    code = "TOKEN_EXPIRED"
    message = "Access token expired"


class TokenMalformed(AuthError):
    code = "INVALID_TOKEN"
    message = "Invalid token"


class WrongTokenType(AuthError):
    code = "INVALID_TOKEN_TYPE"
    message = "Invalid token type"


class PrincipalUnavailable(AuthError):
    code = "PRINCIPAL_UNAVAILABLE"
    message = "User not found or inactive"


class InvalidOrExpiredToken(AuthError):
    code = "INVALID_REFRESH_TOKEN"
    message = "Invalid or expired refresh token"


class AuthenticationRequired(AuthError):
    code = "AUTHENTICATION_REQUIRED"
    message = "Authentication required"


class InsufficientPermissions(AuthError):
    status_code = 403
    code = "INSUFFICIENT_PERMISSIONS"
    message = "Insufficient permissions"


class NotFound(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class ValidationFailed(AuthError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request"


class InvalidCurrentPassword(ValidationFailed):
    code = "INVALID_CURRENT_PASSWORD"
    message = "Current password is incorrect"


class Conflict(ValidationFailed):
    code = "CONFLICT"
    message = "User with this username or email already exists"
