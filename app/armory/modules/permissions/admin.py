from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.armory.db import db_session
from app.armory.models import Role, User
from app.armory.modules.permissions.service import (
    PERMISSION_CATALOG,
    PermissionsError,
    assign_role,
    create_role,
    delete_role,
    get_role,
    import_default_policies,
    parse_permission_inputs,
    remove_user_role,
    update_role,
)
from app.armory.rbac import require_permission

bp = Blueprint("permissions", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _role_form(role: Role | None, values: dict, selected: list[str], errors: list[str]):
    return render_template(
        "admin/permissions/role_form.html",
        role=role,
        values=values,
        selected=selected,
        catalog=PERMISSION_CATALOG,
        errors=errors,
    )


@bp.get("")
@require_permission("permissions.manage")
def index():
    s = db_session()
    roles = s.query(Role).order_by(Role.key.asc()).all()
    return render_template("admin/permissions/index.html", roles=roles)


@bp.get("/roles/new")
@require_permission("permissions.manage")
def role_new():
    return _role_form(None, {}, [], [])


@bp.post("/roles")
@require_permission("permissions.manage")
def role_create():
    s = db_session()
    values = {"key": request.form.get("key") or "", "name": request.form.get("name") or ""}
    selected = parse_permission_inputs(request.form.getlist("permissions[]") or request.form.getlist("permissions"))
    try:
        role = create_role(s, values["key"], values["name"], selected, _current_user())
    except PermissionsError as e:
        s.rollback()
        return _role_form(None, values, selected, [str(e)]), 422
    s.commit()
    flash(f"Role {role.key} created", "success")
    return redirect(url_for("permissions.index"))


@bp.get("/roles/<role_key>/edit")
@require_permission("permissions.manage")
def role_edit(role_key: str):
    s = db_session()
    role = get_role(s, role_key)
    if role is None:
        abort(404)
    return _role_form(role, {"key": role.key, "name": role.name}, [p.key for p in role.permissions], [])


@bp.post("/roles/<role_key>")
@require_permission("permissions.manage")
def role_update(role_key: str):
    s = db_session()
    role = get_role(s, role_key)
    if role is None:
        abort(404)
    selected = parse_permission_inputs(request.form.getlist("permissions[]") or request.form.getlist("permissions"))
    update_role(s, role, request.form.get("name") or "", selected, _current_user())
    s.commit()
    flash(f"Role {role.key} updated", "success")
    return redirect(url_for("permissions.index"))


@bp.post("/roles/<role_key>/delete")
@require_permission("permissions.manage")
def role_delete(role_key: str):
    s = db_session()
    role = get_role(s, role_key)
    if role is None:
        abort(404)
    try:
        delete_role(s, role, _current_user())
    except PermissionsError as e:
        flash(str(e), "danger")
        return redirect(url_for("permissions.index"))
    s.commit()
    flash(f"Role {role_key} deleted", "success")
    return redirect(url_for("permissions.index"))


@bp.get("/assign-role")
@require_permission("permissions.manage")
def assign_role_get():
    s = db_session()
    users = s.query(User).filter(User.deleted_at.is_(None)).order_by(User.email.asc()).all()
    roles = s.query(Role).order_by(Role.key.asc()).all()
    return render_template("admin/permissions/assign_role.html", users=users, roles=roles)


@bp.post("/assign-role")
@require_permission("permissions.manage")
def assign_role_post():
    s = db_session()
    try:
        user = assign_role(s, request.form.get("user_id"), request.form.get("role"), _current_user())
    except PermissionsError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("permissions.assign_role_get"))
    s.commit()
    flash(f"Role assigned to {user.email}", "success")
    return redirect(url_for("permissions.index"))


@bp.post("/remove-user-role")
@require_permission("permissions.manage")
def remove_user_role_post():
    s = db_session()
    try:
        user = remove_user_role(s, request.form.get("user_id"), request.form.get("role"), _current_user())
    except PermissionsError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("permissions.index"))
    s.commit()
    flash(f"Role removed from {user.email}", "success")
    return redirect(url_for("permissions.index"))


@bp.post("/import-defaults")
@require_permission("permissions.manage")
def import_defaults():
    s = db_session()
    touched = import_default_policies(s, _current_user())
    s.commit()
    if touched:
        flash(f"Default policies imported for: {', '.join(touched)}", "success")
    else:
        flash("Default policies are already in place", "info")
    return redirect(url_for("permissions.index"))
