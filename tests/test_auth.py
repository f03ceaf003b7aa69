"""Registration, email verification, login lockout and password recovery."""
from datetime import datetime, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.armory import create_app
from app.armory.constants import TIER_PROMOTION
from app.armory.db import session_scope
from app.armory.models import AuditEvent, Base, User
from app.armory.modules.promotions.models import Promotion

PASSWORD = "Secret123!"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")
    for k in ("MAILJET_API_KEY", "MAILJET_SECRET_KEY", "STRIPE_SECRET_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add(User(email="owner@example.com", password_hash=generate_password_hash(PASSWORD), verified=True))
        s.add(User(email="pending@example.com", password_hash=generate_password_hash(PASSWORD), verified=False))
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _csrf(client):
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    return "test-token"


def _user(app, email):
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one_or_none()


def test_login_success_redirects_to_armory(client):
    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "Owner@Example.com ", "password": PASSWORD})
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/owner")


def test_login_honours_local_next_only(client):
    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": PASSWORD, "next": "/owner/profile"})
    assert r.headers["Location"].endswith("/owner/profile")
    client.get("/logout")

    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": PASSWORD, "next": "//evil.example.com"})
    assert r.headers["Location"].endswith("/owner")
    client.get("/logout")

    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": PASSWORD, "next": "/\\evil.example.com"})
    assert r.headers["Location"].endswith("/owner")
    assert "evil.example.com" not in r.headers["Location"]


def test_login_wrong_password_records_audit(app, client):
    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": "nope"}, follow_redirects=True)
    assert b"Invalid email or password" in r.data
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.entity_id == "owner@example.com"
    assert _user(app, "owner@example.com").login_attempts == 1


def test_lockout_after_five_failures(app, client):
    for _ in range(5):
        client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": "wrong"})
    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": PASSWORD}, follow_redirects=True)
    assert b"Too many failed login attempts" in r.data
    assert client.get("/owner").status_code == 302


def test_lockout_expires_after_window(app, client):
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "owner@example.com").one()
        u.login_attempts = 5
        u.last_login_attempt = datetime.utcnow() - timedelta(minutes=16)
    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": PASSWORD})
    assert r.headers["Location"].endswith("/owner")
    assert _user(app, "owner@example.com").login_attempts == 0


def test_unverified_user_cannot_log_in(client):
    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "pending@example.com", "password": PASSWORD})
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/verification-sent")
    r = client.get("/verification-sent")
    assert b"pending@example.com" in r.data


def test_register_validation_errors(client):
    token = _csrf(client)
    r = client.post(
        "/register",
        data={"email": "bad", "password": "short", "password_confirm": "other", "csrf_token": token},
    )
    assert r.status_code == 422
    assert b"Invalid email format" in r.data
    assert b"Password must be at least 8 characters long" in r.data
    assert b"Passwords do not match" in r.data


def test_register_duplicate_email(client):
    token = _csrf(client)
    r = client.post(
        "/register",
        data={"email": "owner@example.com", "password": PASSWORD, "password_confirm": PASSWORD, "csrf_token": token},
    )
    assert r.status_code == 422
    assert b"Email already registered" in r.data


def test_register_then_verify_then_login(app, client):
    token = _csrf(client)
    r = client.post(
        "/register",
        data={"email": "New@Example.com", "password": PASSWORD, "password_confirm": PASSWORD, "csrf_token": token},
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/verification-sent")

    user = _user(app, "new@example.com")
    assert user is not None
    assert user.verified is False
    assert user.verification_token

    r = client.get(f"/verify-email?token={user.verification_token}")
    assert r.status_code == 302
    assert "verified=true" in r.headers["Location"]
    assert _user(app, "new@example.com").verified is True

    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "new@example.com", "password": PASSWORD})
    assert r.headers["Location"].endswith("/owner")


def test_register_survives_mail_timeout(app, client, monkeypatch):
    app.config.update(MAILJET_API_KEY="k", MAILJET_SECRET_KEY="s", MAILJET_SENDER_EMAIL="noreply@example.com")
    calls = []

    def timeout(*args, **kwargs):
        calls.append(1)
        raise TimeoutError("timed out")

    monkeypatch.setattr("urllib.request.urlopen", timeout)
    monkeypatch.setattr("app.armory.mail.time.sleep", lambda s: None)

    r = client.post(
        "/register",
        data={"email": "slow@example.com", "password": PASSWORD, "password_confirm": PASSWORD, "csrf_token": _csrf(client)},
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/verification-sent")
    assert len(calls) == 3
    assert _user(app, "slow@example.com") is not None


def test_register_applies_best_active_promotion(app, client):
    now = datetime.utcnow()
    with session_scope(app) as s:
        s.add(Promotion(name="Short", active=True, start_date=now - timedelta(days=1), end_date=now + timedelta(days=5), benefit_days=7))
        s.add(Promotion(name="Long", active=True, start_date=now - timedelta(days=1), end_date=now + timedelta(days=9), benefit_days=30))
        s.add(Promotion(name="Off", active=False, start_date=now - timedelta(days=1), end_date=now + timedelta(days=9), benefit_days=90))

    token = _csrf(client)
    client.post(
        "/register",
        data={"email": "promo@example.com", "password": PASSWORD, "password_confirm": PASSWORD, "csrf_token": token},
    )
    user = _user(app, "promo@example.com")
    assert user.subscription_tier == TIER_PROMOTION
    assert user.subscription_status == "active"
    assert timedelta(days=29) < user.subscription_end_date - now < timedelta(days=31)


def test_register_restores_soft_deleted_account(app, client):
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "owner@example.com").one()
        u.deleted_at = datetime.utcnow()
    token = _csrf(client)
    r = client.post(
        "/register",
        data={"email": "owner@example.com", "password": PASSWORD, "password_confirm": PASSWORD, "csrf_token": token},
        follow_redirects=True,
    )
    assert b"Your previous account has been restored" in r.data
    assert _user(app, "owner@example.com").deleted_at is None


def test_verify_email_rejects_bad_and_expired_tokens(app, client):
    assert client.get("/verify-email?token=nope").status_code == 400
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "pending@example.com").one()
        u.verification_token = "expired-token"
        u.verification_token_expiry = datetime.utcnow() - timedelta(minutes=1)
    r = client.get("/verify-email?token=expired-token")
    assert r.status_code == 400
    assert b"Verification link has expired" in r.data


def test_forgot_password_does_not_reveal_accounts(app, client):
    token = _csrf(client)
    r1 = client.post("/forgot-password", data={"email": "owner@example.com", "csrf_token": token})
    r2 = client.post("/forgot-password", data={"email": "nobody@example.com", "csrf_token": token})
    assert r1.status_code == r2.status_code == 200
    assert b"If your email is registered" in r1.data
    assert b"If your email is registered" in r2.data
    assert _user(app, "owner@example.com").recovery_token


def test_reset_password_flow(app, client):
    token = _csrf(client)
    client.post("/forgot-password", data={"email": "owner@example.com", "csrf_token": token})
    recovery = _user(app, "owner@example.com").recovery_token

    assert client.get(f"/reset-password?token={recovery}").status_code == 200

    r = client.post(
        "/reset-password",
        data={"token": recovery, "password": "weak", "confirm_password": "weak", "csrf_token": token},
    )
    assert r.status_code == 422

    r = client.post(
        "/reset-password",
        data={"token": recovery, "password": "Better456?", "confirm_password": "Better456?", "csrf_token": token},
    )
    assert r.status_code == 302
    assert _user(app, "owner@example.com").recovery_token is None

    r = client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": "Better456?"})
    assert r.headers["Location"].endswith("/owner")


def test_logout_clears_session(client):
    client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": PASSWORD})
    assert client.get("/owner").status_code == 200
    r = client.get("/logout")
    assert r.status_code == 302
    assert client.get("/owner").status_code == 302
