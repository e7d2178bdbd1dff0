"""
Admin authentication: a single bcrypt-hashed password, HS256 session tokens
and the guard that checks them on every admin request.

There is no server-side session state. A token stays valid until it expires,
even after logout clears the cookie.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import Settings
from errors import ConfigurationError, Forbidden, InvalidCredentials, InvalidToken, Unauthenticated

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)


class AdminPrincipal(BaseModel):
    role: str
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


class SessionIssuer:
    """Checks the admin password and mints signed session tokens."""

    def __init__(self, settings: Settings):
        settings.ensure_required()
        if pwd_context.identify(settings.admin_password_hash) is None:
            raise ConfigurationError("ADMIN_PASSWORD_HASH is not a bcrypt hash")
        self._secret = settings.jwt_secret
        self._password_hash = settings.admin_password_hash
        self._algorithm = settings.jwt_algorithm
        self.ttl = timedelta(seconds=settings.jwt_expires_in)

    def create_access_token(self, data: Optional[dict] = None, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = dict(data or {"role": ADMIN_ROLE})
        now = datetime.now(timezone.utc)
        to_encode.update({"iat": int(now.timestamp()), "exp": now + (expires_delta or self.ttl)})
        return jwt.encode(to_encode, self._secret, algorithm=self._algorithm)

    def issue(self, password: str) -> str:
        if not password or not verify_password(password, self._password_hash):
            raise InvalidCredentials()
        return self.create_access_token()


class AccessGuard:
    """Stateless verification of admin session tokens."""

    def __init__(self, settings: Settings):
        settings.ensure_required()
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self.cookie_name = settings.cookie_name

    def authorize(self, token: Optional[str]) -> AdminPrincipal:
        if not token:
            raise Unauthenticated()
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError:
            raise InvalidToken()
        if payload.get("role") != ADMIN_ROLE:
            raise Forbidden()
        return AdminPrincipal(
            role=payload["role"],
            issued_at=_from_timestamp(payload.get("iat")),
            expires_at=_from_timestamp(payload.get("exp")),
        )


def _from_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def extract_token(request: Request, cookie_name: str) -> Optional[str]:
    """Session cookie first, then an `Authorization: Bearer <token>` header."""
    token = request.cookies.get(cookie_name)
    if token:
        return token
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme and credentials.strip():
        return credentials.strip()
    return None


async def require_admin(request: Request) -> AdminPrincipal:
    """FastAPI dependency for admin-only routes."""
    guard: AccessGuard = request.app.state.access_guard
    principal = guard.authorize(extract_token(request, guard.cookie_name))
    request.state.admin = principal
    return principal
