import json
import time
from datetime import datetime

import pytest

from app.armory import create_app
from app.armory.models import Base
from app.armory.modules.payments.stripe_client import compute_signature
from app.armory.ratelimit import LIMITS, BlockStats, reset_limits


def test_block_stats_record_and_reset():
    stats = BlockStats(recent_blocks=2)
    stats.record("login", "1.2.3.4", datetime(2024, 1, 1, 12, 0))
    stats.record("login", "1.2.3.4", datetime(2024, 1, 1, 12, 1))
    stats.record("webhook", "5.6.7.8", datetime(2024, 1, 1, 12, 2))
    body = stats.stats()
    assert body["total_blocked"] == 3
    assert body["blocked_by_bucket"] == {"login": 2, "webhook": 1}
    # newest first, capped
    assert [b["bucket"] for b in body["recent_blocks"]] == ["webhook", "login"]
    assert body["limits"] == LIMITS

    stats.reset()
    body = stats.stats()
    assert body["total_blocked"] == 0
    assert body["blocked_by_bucket"] == {}
    assert body["recent_blocks"] == []


def test_limits():
    assert LIMITS["login"] == "5 per minute"
    assert LIMITS["register"] == "5 per minute"
    assert LIMITS["password_reset"] == "3 per hour"
    assert LIMITS["webhook"] == "10 per minute"


def _csrf(client):
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    return "test-token"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "1")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
    for k in ("MAILJET_API_KEY", "MAILJET_SECRET_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with app.app_context():
        reset_limits()
    return app


def _login(client):
    return client.post("/login", data={"csrf_token": _csrf(client), "email": "nobody@example.com", "password": "wrong"})


def test_login_posts_are_limited(app):
    client = app.test_client()
    for _ in range(5):
        assert _login(client).status_code != 429
    r = _login(client)
    assert r.status_code == 429
    assert b"Too many requests" in r.data
    # GETs are never limited
    assert client.get("/login").status_code == 200
    assert app.extensions["rate_limit_stats"].stats()["blocked_by_bucket"] == {"login": 1}


def test_register_and_resend_share_a_bucket(app):
    client = app.test_client()
    for i in range(3):
        client.post("/register", data={"csrf_token": _csrf(client), "email": f"u{i}@example.com", "password": "x"})
    for _ in range(2):
        assert client.post("/resend-verification", data={"csrf_token": _csrf(client), "email": "u0@example.com"}).status_code != 429
    r = client.post("/register", data={"csrf_token": _csrf(client), "email": "late@example.com", "password": "x"})
    assert r.status_code == 429


def test_webhook_limit_returns_json(app):
    client = app.test_client()
    payload = json.dumps({"type": "ping", "data": {"object": {}}}).encode()
    ts = int(time.time())
    headers = {"Stripe-Signature": f"t={ts},v1={compute_signature(payload, 'whsec_test', ts)}"}
    for _ in range(10):
        assert client.post("/webhook", data=payload, headers=headers).status_code == 200
    r = client.post("/webhook", data=payload, headers=headers)
    assert r.status_code == 429
    assert r.json["error"] == "Too many requests. Please try again later."
    assert app.extensions["rate_limit_stats"].stats()["blocked_by_bucket"] == {"webhook": 1}


def test_reset_clears_counters(app):
    client = app.test_client()
    for _ in range(6):
        _login(client)
    assert _login(client).status_code == 429

    with app.app_context():
        reset_limits()
    assert app.extensions["rate_limit_stats"].stats()["total_blocked"] == 0
    assert _login(client).status_code != 429


def test_disabled_limiter_lets_everything_through(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'off.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    assert app.config["RATELIMIT_ENABLED"] is False

    client = app.test_client()
    for _ in range(8):
        assert _login(client).status_code != 429
