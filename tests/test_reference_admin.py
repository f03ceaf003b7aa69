import pytest
from werkzeug.security import generate_password_hash

from app.armory import create_app
from app.armory.db import session_scope
from app.armory.models import AuditEvent, Base, Permission, Role, User
from app.armory.modules.reference.models import Caliber, Grain, Manufacturer
from app.armory.modules.reference.service import KINDS, clean_payload, dropdown_options

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
        everything = Permission(key="*", name="Everything")
        read_calibers = Permission(key="calibers.read", name="Calibers: read")
        admin = Role(key="admin", name="Administrator")
        admin.permissions.append(everything)
        viewer = Role(key="viewer", name="Viewer")
        viewer.permissions.append(read_calibers)

        a = User(email="admin@example.com", password_hash=generate_password_hash(PASSWORD), verified=True)
        a.roles.append(admin)
        v = User(email="viewer@example.com", password_hash=generate_password_hash(PASSWORD), verified=True)
        v.roles.append(viewer)
        s.add_all([everything, read_calibers, admin, viewer, a, v])
    return app


def _login(app, email="admin@example.com"):
    client = app.test_client()
    client.post("/login", data={"csrf_token": _csrf(client), "email": email, "password": PASSWORD})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    return client


def _manufacturer(**overrides):
    data = {"name": "Glock", "nickname": "Glock", "country": "Austria", "popularity": "100", "csrf_token": "test-token"}
    data.update(overrides)
    return data


def test_manufacturer_crud(app):
    client = _login(app)

    assert client.get("/admin/manufacturers/new").status_code == 200
    r = client.post("/admin/manufacturers", data=_manufacturer(), follow_redirects=True)
    assert r.status_code == 200
    assert b"Manufacturer created successfully" in r.data
    assert b"Glock" in r.data

    with session_scope(app) as s:
        m = s.query(Manufacturer).one()
        mid = m.id
        assert m.country == "Austria"
        assert m.popularity == 100

    assert client.get(f"/admin/manufacturers/{mid}").status_code == 200
    assert client.get(f"/admin/manufacturers/{mid}/edit").status_code == 200

    r = client.post(f"/admin/manufacturers/{mid}", data=_manufacturer(nickname="G"), follow_redirects=True)
    assert b"Manufacturer updated successfully" in r.data

    r = client.post(f"/admin/manufacturers/{mid}/delete", data={"csrf_token": "test-token"}, follow_redirects=True)
    assert b"Manufacturer deleted successfully" in r.data
    assert client.get(f"/admin/manufacturers/{mid}").status_code == 404

    with session_scope(app) as s:
        m = s.get(Manufacturer, mid)
        assert m.nickname == "G"
        assert m.deleted_at is not None
        actions = {e.action for e in s.query(AuditEvent).all()}
        assert {"manufacturers.create", "manufacturers.edit", "manufacturers.delete"} <= actions


def test_required_fields_and_duplicates(app):
    client = _login(app)

    r = client.post("/admin/manufacturers", data=_manufacturer(country=""))
    assert r.status_code == 422
    assert b"Country is required" in r.data

    client.post("/admin/manufacturers", data=_manufacturer())
    r = client.post("/admin/manufacturers", data=_manufacturer())
    assert r.status_code == 422
    assert b"A manufacturer with that name already exists" in r.data


def test_recreating_a_deleted_record_restores_it(app):
    client = _login(app)
    client.post("/admin/calibers", data={"caliber": "9mm Luger", "nickname": "9mm", "popularity": "50", "csrf_token": "test-token"})
    with session_scope(app) as s:
        cid = s.query(Caliber).one().id
    client.post(f"/admin/calibers/{cid}/delete", data={"csrf_token": "test-token"})

    r = client.post(
        "/admin/calibers",
        data={"caliber": "9mm Luger", "nickname": "9mm Para", "popularity": "90", "csrf_token": "test-token"},
        follow_redirects=True,
    )
    assert b"Caliber created successfully" in r.data
    with session_scope(app) as s:
        rows = s.query(Caliber).all()
        assert len(rows) == 1
        assert rows[0].id == cid
        assert rows[0].deleted_at is None
        assert rows[0].nickname == "9mm Para"
        assert rows[0].popularity == 90


def test_search_filters_on_key(app):
    client = _login(app)
    for name in ("Glock", "Beretta"):
        client.post("/admin/manufacturers", data=_manufacturer(name=name, nickname=name))
    r = client.get("/admin/manufacturers?q=ber")
    assert b"Beretta" in r.data
    assert b"Glock" not in r.data


def test_permissions_are_per_kind_and_action(app):
    client = _login(app, "viewer@example.com")
    assert client.get("/admin/calibers").status_code == 200
    assert client.get("/admin/calibers/new").status_code == 403
    r = client.post("/admin/calibers", data={"caliber": ".45 ACP", "csrf_token": "test-token"})
    assert r.status_code == 403
    assert client.get("/admin/brands").status_code == 403


def test_unknown_kind_is_404(app):
    client = _login(app)
    assert client.get("/admin/widgets/new").status_code == 404


@pytest.mark.parametrize(
    "payload,error",
    [
        ({"weight": ""}, "Weight is required"),
        ({"weight": "abc"}, "Weight must be a whole number"),
        ({"weight": "-5"}, "Weight cannot be negative"),
    ],
)
def test_grain_weight_validation(payload, error):
    _, errors = clean_payload(KINDS["grains"], payload)
    assert error in errors


def test_string_length_limit():
    _, errors = clean_payload(KINDS["casings"], {"type": "x" * 51})
    assert errors == ["Type cannot exceed 50 characters"]


def test_grain_dropdown_orders_by_popularity(app):
    with session_scope(app) as s:
        s.add_all([Grain(weight=147, popularity=10), Grain(weight=115, popularity=100), Grain(weight=124, popularity=10)])
    with session_scope(app) as s:
        weights = [g.weight for g in dropdown_options(s, KINDS["grains"])]
    assert weights == [115, 124, 147]
