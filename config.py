"""
Environment-backed configuration for the academy admin service.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from errors import ConfigurationError

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Process-wide settings, read once at startup and never mutated."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    # Auth
    jwt_secret: Optional[str] = None
    admin_password_hash: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_expires_in: int = 3600
    cookie_name: str = "admin_token"
    cookie_secure: bool = False

    # Document store (MongoDB)
    database_url: Optional[str] = None
    database_name: str = "playmaker"
    use_in_memory_backends: bool = False

    # Public site the lead forms return to
    redirect_url: str = "http://localhost:5500/"

    # Web push (VAPID)
    vapid_public_key: Optional[str] = None
    vapid_private_key: Optional[str] = None
    vapid_claims_email: str = "mailto:admin@example.com"
    push_timeout_seconds: float = 10.0

    # Email
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    notify_email_from: Optional[str] = None
    notify_email_to: Optional[str] = None

    log_level: str = "INFO"

    @property
    def push_configured(self) -> bool:
        return bool(self.vapid_public_key and self.vapid_private_key)

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_host and self.notify_email_to)

    def ensure_required(self) -> None:
        """Raise ConfigurationError if a required secret is absent."""
        missing = [
            name.upper()
            for name in ("jwt_secret", "admin_password_hash")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(f"Missing {' or '.join(missing)} in environment")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
