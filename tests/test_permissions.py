import pytest
from werkzeug.security import generate_password_hash

from app.armory import create_app
from app.armory.db import session_scope
from app.armory.models import Base, Permission, Role, User
from app.armory.modules.permissions.service import (
    DEFAULT_POLICIES,
    all_permission_keys,
    import_default_policies,
    parse_permission_inputs,
)
from app.armory.rbac import user_has_permission

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
        p = Permission(key="*", name="Everything")
        r = Role(key="admin", name="Administrator")
        r.permissions.append(p)
        a = User(email="admin@example.com", password_hash=generate_password_hash(PASSWORD), verified=True)
        a.roles.append(r)
        o = User(email="owner@example.com", password_hash=generate_password_hash(PASSWORD), verified=True)
        s.add_all([p, r, a, o])
    return app


@pytest.fixture()
def client(app):
    client = app.test_client()
    client.post("/login", data={"csrf_token": _csrf(client), "email": "admin@example.com", "password": PASSWORD})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    return client


def _user(app, email):
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one()


def test_index_lists_roles(client):
    r = client.get("/admin/permissions")
    assert r.status_code == 200
    assert b"admin" in r.data


def test_create_and_update_role(app, client):
    assert client.get("/admin/permissions/roles/new").status_code == 200
    r = client.post(
        "/admin/permissions/roles",
        data={
            "key": "Editor",
            "name": "Content editor",
            "permissions[]": ["calibers:read", "calibers:update", "calibers:read"],
            "csrf_token": "test-token",
        },
        follow_redirects=True,
    )
    assert b"Role editor created" in r.data

    with session_scope(app) as s:
        role = s.query(Role).filter(Role.key == "editor").one()
        assert sorted(p.key for p in role.permissions) == ["calibers.read", "calibers.update"]

    r = client.post("/admin/permissions/roles", data={"key": "editor", "csrf_token": "test-token"})
    assert r.status_code == 422
    assert b"Role already exists" in r.data

    assert client.get("/admin/permissions/roles/editor/edit").status_code == 200
    r = client.post(
        "/admin/permissions/roles/editor",
        data={"name": "Editor", "permissions[]": ["brands:*"], "csrf_token": "test-token"},
        follow_redirects=True,
    )
    assert b"Role editor updated" in r.data
    with session_scope(app) as s:
        role = s.query(Role).filter(Role.key == "editor").one()
        assert [p.key for p in role.permissions] == ["brands.*"]


def test_assign_and_remove_role(app, client):
    client.post("/admin/permissions/roles", data={"key": "viewer", "permissions[]": ["calibers:read"], "csrf_token": "test-token"})
    owner_id = _user(app, "owner@example.com").id

    assert client.get("/admin/permissions/assign-role").status_code == 200
    r = client.post(
        "/admin/permissions/assign-role",
        data={"user_id": str(owner_id), "role": "viewer", "csrf_token": "test-token"},
        follow_redirects=True,
    )
    assert b"Role assigned to owner@example.com" in r.data
    assert user_has_permission(_user(app, "owner@example.com"), "calibers.read")

    r = client.post(
        "/admin/permissions/assign-role",
        data={"user_id": str(owner_id), "role": "viewer", "csrf_token": "test-token"},
        follow_redirects=True,
    )
    assert b"User already has this role" in r.data

    r = client.post(
        "/admin/permissions/remove-user-role",
        data={"user_id": str(owner_id), "role": "viewer", "csrf_token": "test-token"},
        follow_redirects=True,
    )
    assert b"Role removed from owner@example.com" in r.data
    assert _user(app, "owner@example.com").role_keys == []


@pytest.mark.parametrize(
    "data,message",
    [
        ({"user_id": "", "role": "viewer"}, b"User and role are required"),
        ({"user_id": "9999", "role": "admin"}, b"User not found"),
        ({"user_id": "abc", "role": "admin"}, b"User not found"),
    ],
)
def test_assign_role_errors(client, data, message):
    r = client.post("/admin/permissions/assign-role", data={**data, "csrf_token": "test-token"}, follow_redirects=True)
    assert message in r.data


def test_assign_unknown_role(app, client):
    owner_id = _user(app, "owner@example.com").id
    r = client.post(
        "/admin/permissions/assign-role",
        data={"user_id": str(owner_id), "role": "ghost", "csrf_token": "test-token"},
        follow_redirects=True,
    )
    assert b"Role does not exist" in r.data


def test_admin_role_cannot_be_deleted(app, client):
    r = client.post("/admin/permissions/roles/admin/delete", data={"csrf_token": "test-token"}, follow_redirects=True)
    assert b"The admin role cannot be deleted" in r.data
    with session_scope(app) as s:
        assert s.query(Role).filter(Role.key == "admin").one_or_none() is not None


def test_delete_role(app, client):
    client.post("/admin/permissions/roles", data={"key": "temp", "csrf_token": "test-token"})
    r = client.post("/admin/permissions/roles/temp/delete", data={"csrf_token": "test-token"}, follow_redirects=True)
    assert b"Role temp deleted" in r.data
    assert client.post("/admin/permissions/roles/temp/delete", data={"csrf_token": "test-token"}).status_code == 404


def test_import_defaults(app, client):
    r = client.post("/admin/permissions/import-defaults", data={"csrf_token": "test-token"}, follow_redirects=True)
    assert b"Default policies imported for: editor, viewer" in r.data

    with session_scope(app) as s:
        keys = {r.key for r in s.query(Role).all()}
        assert keys == set(DEFAULT_POLICIES)
        # idempotent
        assert import_default_policies(s) == []

    r = client.post("/admin/permissions/import-defaults", data={"csrf_token": "test-token"}, follow_redirects=True)
    assert b"Default policies are already in place" in r.data


def test_non_admin_is_forbidden(app):
    client = app.test_client()
    client.post("/login", data={"csrf_token": _csrf(client), "email": "owner@example.com", "password": PASSWORD})
    r = client.get("/admin/permissions")
    assert r.status_code == 403
    assert b"permissions.manage" in r.data


def test_parse_permission_inputs():
    assert parse_permission_inputs(["calibers:read", "", "*", "calibers:read", "users:manage"]) == [
        "calibers.read",
        "*",
        "users.manage",
    ]


def test_permission_catalog_covers_reference_kinds():
    keys = all_permission_keys()
    assert "*" in keys
    for key in ("calibers.read", "grains.delete", "casings.*", "feature_flags.update", "admin.view"):
        assert key in keys
