"""Tests for the owner's arsenal (guns)."""
from datetime import date, datetime, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.armory import create_app
from app.armory.constants import STATUS_ACTIVE, TIER_MONTHLY
from app.armory.db import session_scope
from app.armory.models import AuditEvent, Base, User
from app.armory.modules.arsenal.models import Gun
from app.armory.modules.reference.models import Caliber, Manufacturer, WeaponType
from app.armory.modules.reference.seed import seed_reference_data

PASSWORD = "Secret123!"


def _csrf(client):
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    return "test-token"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        seed_reference_data(s)
        s.add(User(email="owner@example.com", password_hash=generate_password_hash(PASSWORD), verified=True))
        s.add(User(email="other@example.com", password_hash=generate_password_hash(PASSWORD), verified=True))
    return app


@pytest.fixture()
def client(app):
    c = app.test_client()
    c.post("/login", data={"csrf_token": _csrf(c), "email": "owner@example.com", "password": PASSWORD})
    with c.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    return c


def _refs(app):
    with session_scope(app) as s:
        return {
            "weapon_type_id": s.query(WeaponType).filter(WeaponType.type == "Pistol").one().id,
            "caliber_id": s.query(Caliber).filter(Caliber.caliber == "9mm Luger").one().id,
            "manufacturer_id": s.query(Manufacturer).filter(Manufacturer.name == "Glock").one().id,
        }


def _gun_form(app, **overrides):
    data = {"name": "Glock 19", "serial_number": "ABC123", "acquired": "2023-04-01", "paid": "$1,250.50", "csrf_token": "test-token"}
    data.update({k: str(v) for k, v in _refs(app).items()})
    data.update(overrides)
    return data


def _add_guns(app, email, n):
    refs = _refs(app)
    with session_scope(app) as s:
        owner = s.query(User).filter(User.email == email).one()
        base = datetime.utcnow() - timedelta(days=n)
        for i in range(n):
            s.add(Gun(name=f"Gun {i + 1}", owner_id=owner.id, created_at=base + timedelta(hours=i), **refs))


def test_arsenal_requires_login(app):
    r = app.test_client().get("/owner/guns/arsenal")
    assert r.status_code == 302
    assert "/login" in r.headers["Location"]


def test_landing_renders_stats(client):
    r = client.get("/owner")
    assert r.status_code == 200
    assert b"My Armory" in r.data


def test_new_gun_form_lists_reference_options(client):
    r = client.get("/owner/guns/new")
    assert r.status_code == 200
    assert b"Glock" in r.data
    assert b"9mm Luger" in r.data


def test_create_gun(app, client):
    r = client.post("/owner/guns", data=_gun_form(app))
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/owner")

    with session_scope(app) as s:
        gun = s.query(Gun).one()
        assert gun.name == "Glock 19"
        assert gun.paid == 1250.50
        assert gun.acquired == date(2023, 4, 1)
        assert s.query(AuditEvent).filter(AuditEvent.action == "gun.create").count() == 1


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"name": ""}, b"Name is required"),
        ({"name": "x" * 101}, b"Name cannot exceed 100 characters"),
        ({"acquired": "04/01/2023"}, b"Invalid date format, use YYYY-MM-DD"),
        ({"acquired": "20230401"}, b"Invalid date format, use YYYY-MM-DD"),
        ({"acquired": "2023-04-01T10:00"}, b"Invalid date format, use YYYY-MM-DD"),
        ({"acquired": (date.today() + timedelta(days=2)).isoformat()}, b"Acquisition date cannot be in the future"),
        ({"paid": "abc"}, b"Invalid amount format"),
        ({"paid": "-5"}, b"Price cannot be negative"),
        ({"caliber_id": "999999"}, b"Valid caliber is required"),
        ({"manufacturer_id": ""}, b"Valid manufacturer is required"),
    ],
)
def test_create_gun_validation(app, client, overrides, message):
    r = client.post("/owner/guns", data=_gun_form(app, **overrides))
    assert r.status_code == 422
    assert message in r.data
    with session_scope(app) as s:
        assert s.query(Gun).count() == 0


def test_free_tier_cannot_add_third_gun(app, client):
    _add_guns(app, "owner@example.com", 2)
    r = client.post("/owner/guns", data=_gun_form(app))
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/pricing")
    with session_scope(app) as s:
        assert s.query(Gun).count() == 2


def test_subscriber_can_add_more(app, client):
    _add_guns(app, "owner@example.com", 2)
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "owner@example.com").one()
        u.subscription_tier = TIER_MONTHLY
        u.subscription_status = STATUS_ACTIVE
        u.subscription_end_date = datetime.utcnow() + timedelta(days=20)
    r = client.post("/owner/guns", data=_gun_form(app))
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/owner")
    with session_scope(app) as s:
        assert s.query(Gun).count() == 3


def test_free_tier_over_limit_only_sees_oldest(app, client):
    # e.g. after a subscription lapsed
    _add_guns(app, "owner@example.com", 3)
    r = client.get("/owner/guns/arsenal")
    assert r.status_code == 200
    assert b"Gun 1" in r.data
    assert b"Gun 2" in r.data
    assert b"Gun 3" not in r.data
    assert b"Free tier only allows 2 guns" in r.data


def test_arsenal_search_and_sort(app, client):
    _add_guns(app, "owner@example.com", 2)
    r = client.get("/owner/guns/arsenal?search=Gun%202")
    assert b"Gun 2" in r.data
    assert b"Gun 1" not in r.data

    r = client.get("/owner/guns/arsenal?sortBy=name&sortOrder=desc")
    assert r.data.index(b"Gun 2") < r.data.index(b"Gun 1")

    # unknown sort fields fall back to the default
    assert client.get("/owner/guns/arsenal?sortBy=password_hash").status_code == 200


def test_show_edit_update_delete(app, client):
    client.post("/owner/guns", data=_gun_form(app))
    with session_scope(app) as s:
        gun_id = s.query(Gun).one().id

    assert b"Glock 19" in client.get(f"/owner/guns/{gun_id}").data
    r = client.get(f"/owner/guns/{gun_id}/edit")
    assert r.status_code == 200
    assert b"ABC123" in r.data

    r = client.post(f"/owner/guns/{gun_id}", data=_gun_form(app, name="Glock 17", paid=""))
    assert r.status_code == 302
    with session_scope(app) as s:
        gun = s.get(Gun, gun_id)
        assert gun.name == "Glock 17"
        assert gun.paid is None

    r = client.post(f"/owner/guns/{gun_id}/delete", data={"csrf_token": "test-token"})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Gun, gun_id).deleted_at is not None
    assert client.get(f"/owner/guns/{gun_id}").status_code == 404


def test_cannot_touch_another_owners_gun(app, client):
    _add_guns(app, "other@example.com", 1)
    with session_scope(app) as s:
        gun_id = s.query(Gun).one().id
    assert client.get(f"/owner/guns/{gun_id}").status_code == 404
    assert client.get(f"/owner/guns/{gun_id}/edit").status_code == 404
    assert client.post(f"/owner/guns/{gun_id}/delete", data={"csrf_token": "test-token"}).status_code == 404


def test_caliber_search_returns_escaped_items(client):
    r = client.get("/api/calibers/search?q=9mm")
    assert r.status_code == 200
    assert b"custom-dropdown-item" in r.data
    assert b"9mm Luger" in r.data
