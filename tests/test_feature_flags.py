import pytest
from werkzeug.security import generate_password_hash

from app.armory import create_app
from app.armory.db import session_scope
from app.armory.models import Base, Permission, Role, User
from app.armory.modules.feature_flags.models import FeatureFlag, FeatureFlagRole
from app.armory.modules.feature_flags.service import can_access_feature, require_feature

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

    @require_feature("range_log")
    def range_log():
        return "range log"

    app.add_url_rule("/range-log", "range_log", range_log)

    with session_scope(app) as s:
        everything = Permission(key="*", name="Everything")
        admin = Role(key="admin", name="Administrator")
        admin.permissions.append(everything)
        beta = Role(key="beta", name="Beta testers")
        a = User(email="admin@example.com", password_hash=generate_password_hash(PASSWORD), verified=True)
        a.roles.append(admin)
        b = User(email="beta@example.com", password_hash=generate_password_hash(PASSWORD), verified=True)
        b.roles.append(beta)
        o = User(email="owner@example.com", password_hash=generate_password_hash(PASSWORD), verified=True)
        s.add_all([everything, admin, beta, a, b, o])
    return app


def _login(app, email):
    client = app.test_client()
    client.post("/login", data={"csrf_token": _csrf(client), "email": email, "password": PASSWORD})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    return client


def _flag(app, name="range_log", *, enabled=True, public_access=False, roles=()):
    with session_scope(app) as s:
        flag = FeatureFlag(name=name, enabled=enabled, public_access=public_access)
        for role in roles:
            flag.roles.append(FeatureFlagRole(role=role))
        s.add(flag)
        s.flush()
        return flag.id


@pytest.mark.parametrize(
    "enabled,public_access,roles,user_roles,expected",
    [
        (False, True, (), ("beta",), False),
        (True, True, ("beta",), (), True),
        (True, False, (), (), True),
        (True, False, ("beta",), ("beta",), True),
        (True, False, ("beta",), ("viewer",), False),
        (True, False, ("beta",), None, False),
    ],
)
def test_can_access_feature(app, enabled, public_access, roles, user_roles, expected):
    _flag(app, enabled=enabled, public_access=public_access, roles=roles)
    user = None
    if user_roles is not None:
        user = User(email="x@example.com", password_hash="x")
        user.roles = [Role(key=k, name=k) for k in user_roles]
    with session_scope(app) as s:
        assert can_access_feature(s, user, "range_log") is expected


def test_unknown_flag_is_off(app):
    with session_scope(app) as s:
        assert can_access_feature(s, None, "nope") is False


def test_require_feature_gates_route(app):
    _flag(app, roles=("beta",))
    assert _login(app, "beta@example.com").get("/range-log").data == b"range log"
    assert _login(app, "owner@example.com").get("/range-log").status_code == 403
    # admins bypass flags entirely
    assert _login(app, "admin@example.com").get("/range-log").status_code == 200


def test_require_feature_disabled_flag(app):
    _flag(app, enabled=False)
    r = _login(app, "owner@example.com").get("/range-log")
    assert r.status_code == 403
    assert b"feature:range_log" in r.data


def test_flag_crud_and_roles(app):
    client = _login(app, "admin@example.com")
    assert client.get("/admin/permissions/feature-flags/create").status_code == 200

    r = client.post(
        "/admin/permissions/feature-flags/create",
        data={"name": "range_log", "enabled": "on", "description": "Range sessions", "csrf_token": "test-token"},
        follow_redirects=True,
    )
    assert b"Feature flag created successfully" in r.data

    r = client.post(
        "/admin/permissions/feature-flags/create",
        data={"name": "range_log", "csrf_token": "test-token"},
    )
    assert r.status_code == 422
    assert b"A feature flag with that name already exists" in r.data

    with session_scope(app) as s:
        fid = s.query(FeatureFlag).one().id

    r = client.post(f"/admin/permissions/feature-flags/{fid}/roles", data={"role": "beta", "csrf_token": "test-token"}, follow_redirects=True)
    assert b"Role added to feature flag" in r.data
    r = client.post(f"/admin/permissions/feature-flags/{fid}/roles", data={"role": "ghost", "csrf_token": "test-token"}, follow_redirects=True)
    assert b"Role does not exist" in r.data
    with session_scope(app) as s:
        assert s.get(FeatureFlag, fid).role_keys == ["beta"]

    r = client.post(f"/admin/permissions/feature-flags/{fid}/roles/remove", data={"role": "beta", "csrf_token": "test-token"}, follow_redirects=True)
    assert b"Role removed from feature flag" in r.data

    r = client.post(
        f"/admin/permissions/feature-flags/edit/{fid}",
        data={"name": "range_log_v2", "public_access": "on", "csrf_token": "test-token"},
        follow_redirects=True,
    )
    assert b"Feature flag updated successfully" in r.data
    with session_scope(app) as s:
        flag = s.get(FeatureFlag, fid)
        assert flag.name == "range_log_v2"
        assert flag.enabled is False
        assert flag.public_access is True
        assert flag.roles == []

    r = client.post(f"/admin/permissions/feature-flags/delete/{fid}", data={"csrf_token": "test-token"}, follow_redirects=True)
    assert b"Feature flag deleted successfully" in r.data
    with session_scope(app) as s:
        assert s.query(FeatureFlag).count() == 0


def test_flag_admin_requires_permission(app):
    client = _login(app, "beta@example.com")
    assert client.get("/admin/permissions/feature-flags").status_code == 403
