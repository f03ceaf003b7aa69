from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.armory.db import db_session
from app.armory.models import Role, User
from app.armory.modules.feature_flags.models import FeatureFlag
from app.armory.modules.feature_flags.service import (
    FeatureFlagError,
    add_role,
    create_flag,
    delete_flag,
    remove_role,
    update_flag,
    validate_flag_payload,
)
from app.armory.rbac import require_permission

bp = Blueprint("feature_flags", __name__)

FLAG_FIELDS = ("name", "enabled", "public_access", "description")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get(s, flag_id: int) -> FeatureFlag:
    flag = s.get(FeatureFlag, flag_id)
    if not flag:
        abort(404)
    return flag


@bp.get("/permissions/feature-flags")
@require_permission("feature_flags.read")
def index():
    s = db_session()
    flags = s.query(FeatureFlag).order_by(FeatureFlag.name.asc()).all()
    roles = s.query(Role).order_by(Role.key.asc()).all()
    return render_template("admin/feature_flags/index.html", flags=flags, roles=roles)


@bp.get("/permissions/feature-flags/create")
@require_permission("feature_flags.create")
def create_get():
    return render_template("admin/feature_flags/form.html", flag=None, values={}, errors=[])


@bp.post("/permissions/feature-flags/create")
@require_permission("feature_flags.create")
def create_post():
    s = db_session()
    payload = {k: request.form.get(k) for k in FLAG_FIELDS}
    errors = validate_flag_payload(payload)
    if not errors:
        try:
            create_flag(s, payload, _current_user())
        except FeatureFlagError as e:
            errors.append(str(e))
    if errors:
        s.rollback()
        return render_template("admin/feature_flags/form.html", flag=None, values=payload, errors=errors), 422
    s.commit()
    flash("Feature flag created successfully", "success")
    return redirect(url_for("feature_flags.index"))


@bp.get("/permissions/feature-flags/edit/<int:flag_id>")
@require_permission("feature_flags.update")
def edit_get(flag_id: int):
    s = db_session()
    flag = _get(s, flag_id)
    values = {
        "name": flag.name,
        "enabled": "on" if flag.enabled else "",
        "public_access": "on" if flag.public_access else "",
        "description": flag.description or "",
    }
    roles = s.query(Role).order_by(Role.key.asc()).all()
    return render_template("admin/feature_flags/form.html", flag=flag, values=values, errors=[], roles=roles)


@bp.post("/permissions/feature-flags/edit/<int:flag_id>")
@require_permission("feature_flags.update")
def edit_post(flag_id: int):
    s = db_session()
    flag = _get(s, flag_id)
    payload = {k: request.form.get(k) for k in FLAG_FIELDS}
    errors = validate_flag_payload(payload)
    if not errors:
        try:
            update_flag(s, flag, payload, _current_user())
        except FeatureFlagError as e:
            errors.append(str(e))
    if errors:
        s.rollback()
        return render_template("admin/feature_flags/form.html", flag=flag, values=payload, errors=errors), 422
    s.commit()
    flash("Feature flag updated successfully", "success")
    return redirect(url_for("feature_flags.index"))


@bp.post("/permissions/feature-flags/delete/<int:flag_id>")
@require_permission("feature_flags.delete")
def delete(flag_id: int):
    s = db_session()
    flag = _get(s, flag_id)
    delete_flag(s, flag, _current_user())
    s.commit()
    flash("Feature flag deleted successfully", "success")
    return redirect(url_for("feature_flags.index"))


@bp.post("/permissions/feature-flags/<int:flag_id>/roles")
@require_permission("feature_flags.update")
def roles_add(flag_id: int):
    s = db_session()
    flag = _get(s, flag_id)
    try:
        added = add_role(s, flag, request.form.get("role") or "", _current_user())
    except FeatureFlagError as e:
        flash(str(e), "danger")
        return redirect(url_for("feature_flags.edit_get", flag_id=flag.id))
    s.commit()
    flash("Role added to feature flag" if added else "Role already assigned to feature flag", "success")
    return redirect(url_for("feature_flags.edit_get", flag_id=flag.id))


@bp.post("/permissions/feature-flags/<int:flag_id>/roles/remove")
@require_permission("feature_flags.update")
def roles_remove(flag_id: int):
    s = db_session()
    flag = _get(s, flag_id)
    removed = remove_role(s, flag, (request.form.get("role") or "").strip(), _current_user())
    s.commit()
    flash("Role removed from feature flag" if removed else "Role was not assigned to feature flag", "success")
    return redirect(url_for("feature_flags.edit_get", flag_id=flag.id))
