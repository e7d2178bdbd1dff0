"""
Exception taxonomy shared by the auth layer, the stores and the routes.
"""

from __future__ import annotations


class AcademyError(Exception):
    """Base class for errors raised by this service."""

    status_code: int = 500
    detail: str = "server error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class ConfigurationError(AcademyError):
    """A required secret is missing; the service must not start."""

    detail = "configuration error"


class AuthError(AcademyError):
    status_code = 401
    detail = "authentication failed"


class Unauthenticated(AuthError):
    """No session token was presented."""

    detail = "login required"


class InvalidToken(AuthError):
    detail = "Invalid or expired token"


class InvalidCredentials(AuthError):
    detail = "invalid credentials"


class Forbidden(AuthError):
    status_code = 403
    detail = "Forbidden"


class TransportError(AcademyError):
    """An outbound email or push delivery failed."""

    status_code = 502
    detail = "notification transport failed"
