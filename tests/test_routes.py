from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from database import CONTACT_DETAILS, TRIAL_STUDENTS
from main import create_app
from notifications import Broadcaster, PushNotifier
from schemas import WebsiteSetting

TRIAL_FORM = {
    "PlayerName": "Arjun Mehta",
    "PhoneNumber": "9810012345",
    "SelectedCenter": "Sector 56",
    "DateOfBirth": "2014-03-09",
    "SchoolName": "DPS Gurgaon",
}

CONTACT_FORM = {
    "ContactName": "Priya",
    "ContactPhone": "9899012345",
    "ContactEmail": "priya@example.com",
    "ContactSubject": "Summer camp",
    "ContactMessage": "Do you run a camp in June?",
}

SUBSCRIPTION = {
    "endpoint": "https://fcm.googleapis.com/fcm/send/abc",
    "expirationTime": None,
    "keys": {"p256dh": "BNcRd", "auth": "tBHI"},
}


# Access guard
def test_admin_page_without_session_redirects_to_login(client):
    response = client.get("/admin/dashboard")

    assert response.status_code == 303
    assert response.headers["location"] == "/login"


def test_invalid_token_is_401(client, settings):
    client.cookies.set(settings.cookie_name, "forged")

    response = client.get("/admin/dashboard")

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid or expired token"}


def test_non_admin_token_is_403(client, app, settings):
    client.cookies.set(settings.cookie_name, app.state.session_issuer.create_access_token({"role": "coach"}))

    response = client.get("/admin")

    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden"}


def test_bearer_header_is_accepted(client, app):
    token = app.state.session_issuer.create_access_token()

    response = client.get("/admin", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "role": "admin"}


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/admin/trialStudents"),
        ("get", "/admin/contactDetails"),
        ("get", "/admin/settings"),
        ("get", "/admin/getSetting"),
        ("get", "/admin/getVapidPublicKey"),
        ("post", "/admin/resetSubscriptions"),
        ("post", "/admin/testNotification"),
    ],
)
def test_admin_routes_require_session(client, method, path):
    response = getattr(client, method)(path)

    assert response.status_code == 303
    assert response.headers["location"] == "/login"


# Login / logout
def test_login_page_renders(client):
    response = client.get("/login")

    assert response.status_code == 200
    assert 'name="password"' in response.text


def test_login_sets_session_cookie(client, settings, admin_password):
    response = client.post("/login", data={"password": admin_password})

    assert response.status_code == 303
    assert response.headers["location"] == "/admin/dashboard"
    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"{settings.cookie_name}=")
    assert "HttpOnly" in cookie
    assert "Max-Age=3600" in cookie
    assert "samesite=lax" in cookie.lower()

    assert client.get("/admin/dashboard").status_code == 200


def test_login_with_wrong_password(client):
    response = client.post("/login", data={"password": "guess"})

    assert response.status_code == 401
    assert response.json() == {"error": "invalid credentials"}
    assert "set-cookie" not in response.headers


def test_login_without_password(client):
    response = client.post("/login", data={})

    assert response.status_code == 400
    assert response.json() == {"error": "password required"}


def test_logout_clears_cookie(admin_client, settings):
    response = admin_client.get("/logout")

    assert response.status_code == 303
    assert response.headers["location"] == "/login"
    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f'{settings.cookie_name}=""') or "Max-Age=0" in cookie


# Public forms
def test_trial_registration_end_to_end(admin_client, client, db, notifier):
    before = client.get("/admin/dashboard")
    assert 'id="trial-count">0<' in before.text

    response = client.post("/api/v1/saveTrialStudents", data=TRIAL_FORM)

    assert response.status_code == 303
    assert response.headers["location"] == "http://localhost:5500/"
    assert len(db.leads[TRIAL_STUDENTS]) == 1
    after = client.get("/admin/dashboard")
    assert 'id="trial-count">1<' in after.text
    assert len(notifier.payloads) == 1
    assert "Arjun Mehta" in notifier.payloads[0].body


def test_trial_registration_missing_field(client, db, notifier):
    form = {k: v for k, v in TRIAL_FORM.items() if k != "DateOfBirth"}

    response = client.post("/api/v1/saveTrialStudents", data=form)

    assert response.status_code == 400
    assert response.json()["error"] == "validation failed"
    assert db.leads[TRIAL_STUDENTS] == {}
    assert notifier.payloads == []


def test_contact_message_is_saved(client, db, notifier):
    response = client.post("/api/v1/saveContactDetails", data=CONTACT_FORM)

    assert response.status_code == 303
    assert len(db.leads[CONTACT_DETAILS]) == 1
    assert notifier.payloads[0].title == "New contact message"


def test_contact_message_with_bad_email(client, db):
    response = client.post("/api/v1/saveContactDetails", data={**CONTACT_FORM, "ContactEmail": "priya"})

    assert response.status_code == 400
    assert db.leads[CONTACT_DETAILS] == {}


# Lead admin
def test_trial_list_and_delete(admin_client, db):
    admin_client.post("/api/v1/saveTrialStudents", data=TRIAL_FORM)
    lead_id = str(next(iter(db.leads[TRIAL_STUDENTS])))

    listing = admin_client.get("/admin/trialStudents")
    assert listing.status_code == 200
    assert "Arjun Mehta" in listing.text
    assert f"/admin/trialStudents/delete/{lead_id}" in listing.text

    deleted = admin_client.get(f"/admin/trialStudents/delete/{lead_id}")
    assert deleted.status_code == 303
    assert deleted.headers["location"] == "/admin/trialStudents"
    assert db.leads[TRIAL_STUDENTS] == {}

    missing = admin_client.get(f"/admin/trialStudents/delete/{lead_id}")
    assert missing.status_code == 303
    assert missing.headers["location"] == "/admin/dashboard"


def test_contact_list_and_delete(admin_client, db):
    admin_client.post("/api/v1/saveContactDetails", data=CONTACT_FORM)
    lead_id = str(next(iter(db.leads[CONTACT_DETAILS])))

    listing = admin_client.get("/admin/contactDetails")
    assert "Summer camp" in listing.text

    deleted = admin_client.get(f"/admin/contactDetails/delete/{lead_id}")
    assert deleted.headers["location"] == "/admin/contactDetails"

    garbage = admin_client.get("/admin/contactDetails/delete/not-an-id")
    assert garbage.status_code == 303
    assert garbage.headers["location"] == "/admin/dashboard"


# Settings
def test_settings_page_creates_defaults(admin_client, db):
    response = admin_client.get("/admin/settings")

    assert response.status_code == 200
    assert "PLAYMAKER FOOTBALL ACADEMY" in response.text
    assert 'name="WebsiteDesciption"' in response.text
    assert db.settings is not None


def test_settings_update_round_trip(admin_client, db):
    response = admin_client.post("/admin/settings", data={"WebsiteName": "X", "WebsiteNumber": "+91 1"})

    assert response.status_code == 303
    assert response.headers["location"] == "/admin/settings"
    data = admin_client.get("/admin/getSetting").json()
    assert data["WebsiteName"] == "X"
    assert data["WebsiteNumber"] == "+91 1"
    assert data["WebsiteEmail"] == WebsiteSetting().WebsiteEmail
    assert "WebsiteDesciption" in data


# Push subscriptions
def test_save_subscription_upserts(admin_client, db):
    first = admin_client.post("/admin/saveSubscription", json=SUBSCRIPTION)
    second = admin_client.post(
        "/admin/saveSubscription", json={**SUBSCRIPTION, "keys": {"p256dh": "new", "auth": "new"}}
    )

    assert first.status_code == 201
    assert second.status_code == 201
    assert list(db.subscriptions) == [SUBSCRIPTION["endpoint"]]
    assert db.subscriptions[SUBSCRIPTION["endpoint"]]["keys"] == {"p256dh": "new", "auth": "new"}


def test_save_subscription_without_keys(admin_client, db):
    response = admin_client.post("/admin/saveSubscription", json={"endpoint": "https://push.example.com/x"})

    assert response.status_code == 400
    assert db.subscriptions == {}


def test_remove_and_reset_subscriptions(admin_client, db):
    admin_client.post("/admin/saveSubscription", json=SUBSCRIPTION)
    admin_client.post("/admin/saveSubscription", json={**SUBSCRIPTION, "endpoint": "https://push.example.com/2"})

    removed = admin_client.post("/admin/removeSubscription", json={"endpoint": SUBSCRIPTION["endpoint"]})
    assert removed.json() == {"ok": True, "removed": True}
    again = admin_client.post("/admin/removeSubscription", json={"endpoint": SUBSCRIPTION["endpoint"]})
    assert again.json() == {"ok": True, "removed": False}

    reset = admin_client.post("/admin/resetSubscriptions")
    assert reset.json() == {"ok": True, "deleted": 1}
    assert db.subscriptions == {}


def test_push_routes_when_push_is_not_configured(admin_client):
    assert admin_client.get("/admin/getVapidPublicKey").status_code == 404
    assert admin_client.post("/admin/testNotification").status_code == 503


class RecordingPushService:
    def __init__(self):
        self.calls = []

    def __call__(self, subscription_info, data, **kwargs):
        self.calls.append((subscription_info["endpoint"], json.loads(data)))


@pytest.fixture()
def push_service():
    return RecordingPushService()


@pytest.fixture()
def push_client(settings_factory, db, push_service):
    settings = settings_factory(vapid_public_key="BPublicKey", vapid_private_key="private")
    broadcaster = Broadcaster(
        db,
        vapid_private_key=settings.vapid_private_key,
        vapid_claims_email=settings.vapid_claims_email,
        transport=push_service,
    )
    app = create_app(settings, db=db, broadcaster=broadcaster)
    assert isinstance(app.state.notifier, PushNotifier)
    client = TestClient(app, follow_redirects=False)
    client.cookies.set(settings.cookie_name, app.state.session_issuer.create_access_token())
    return client


def test_vapid_public_key_is_plain_text(push_client):
    response = push_client.get("/admin/getVapidPublicKey")

    assert response.status_code == 200
    assert response.text == "BPublicKey"


def test_trial_registration_broadcasts_once(push_client, push_service):
    push_client.post("/admin/saveSubscription", json=SUBSCRIPTION)

    push_client.post("/api/v1/saveTrialStudents", data=TRIAL_FORM)

    assert len(push_service.calls) == 1
    endpoint, payload = push_service.calls[0]
    assert endpoint == SUBSCRIPTION["endpoint"]
    assert "Arjun Mehta" in payload["body"]
    assert payload["url"] == "/admin/trialStudents"


def test_test_notification_reports_counts(push_client, push_service):
    push_client.post("/admin/saveSubscription", json=SUBSCRIPTION)

    response = push_client.post("/admin/testNotification")

    assert response.status_code == 200
    assert response.json() == {"sent": 1, "removed": 0, "failed": 0}
    assert push_service.calls[0][1]["title"] == "Test notification"


def test_health_check_reports_store(client):
    response = client.get("/test")

    assert response.status_code == 200
    assert response.json()["store"] == "InMemoryDbClient"


def test_dashboard_shows_subscription_controls_when_push_configured(push_client):
    page = push_client.get("/admin/dashboard").text

    assert 'id="notificationToggleBtn"' in page
    assert 'id="notificationResetBtn"' in page
    assert 'id="testNotificationBtn"' in page
    assert '<script src="/js/notifications.js"></script>' in page


def test_dashboard_hides_subscription_controls_without_push(admin_client):
    page = admin_client.get("/admin/dashboard").text

    assert "notificationToggleBtn" not in page
    assert "/js/notifications.js" not in page


@pytest.mark.parametrize(
    "path, marker",
    [
        ("/sw.js", "showNotification"),
        ("/js/notifications.js", "/admin/saveSubscription"),
        ("/js/dashboard.js", "/admin/testNotification"),
    ],
)
def test_client_scripts_are_served_from_site_root(client, path, marker):
    response = client.get(path)

    assert response.status_code == 200
    assert "javascript" in response.headers["content-type"]
    assert marker in response.text


def test_unknown_path_is_404(client):
    assert client.get("/no-such-file.js").status_code == 404
