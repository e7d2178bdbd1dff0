"""Shared fixtures for the academy admin test suite."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from auth import get_password_hash  # noqa: E402
from config import Settings  # noqa: E402
from database import InMemoryDbClient  # noqa: E402
from main import create_app  # noqa: E402

ADMIN_PASSWORD = "secret123"
# Hashed once; bcrypt at cost 12 is slow.
ADMIN_PASSWORD_HASH = get_password_hash(ADMIN_PASSWORD)
REDIRECT_URL = "http://localhost:5500/"


class RecordingNotifier:
    def __init__(self):
        self.payloads = []

    async def send(self, payload):
        self.payloads.append(payload)


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_secret": "test-secret",
        "admin_password_hash": ADMIN_PASSWORD_HASH,
        "redirect_url": REDIRECT_URL,
        "vapid_public_key": None,
        "vapid_private_key": None,
        "database_url": None,
        "use_in_memory_backends": False,
        "smtp_host": None,
        "notify_email_to": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture()
def settings():
    return make_settings()


@pytest.fixture()
def db():
    return InMemoryDbClient()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def app(settings, db, notifier):
    return create_app(settings, db=db, notifier=notifier)


@pytest.fixture()
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture()
def admin_client(client, app, settings):
    token = app.state.session_issuer.create_access_token()
    client.cookies.set(settings.cookie_name, token)
    return client


@pytest.fixture()
def settings_factory():
    return make_settings


@pytest.fixture()
def admin_password():
    return ADMIN_PASSWORD
