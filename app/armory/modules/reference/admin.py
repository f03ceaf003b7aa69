from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.armory.db import db_session
from app.armory.models import User
from app.armory.modules.reference.service import (
    KINDS,
    ReferenceKind,
    create_record,
    delete_record,
    get_kind,
    get_record,
    list_records,
    update_record,
)
from app.armory.rbac import require_permission

bp = Blueprint("reference", __name__)

_KIND = "<any(" + ", ".join(sorted(KINDS)) + "):kind>"


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _require_kind(action: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Resolve the <kind> slug and check `<kind>.<action>` before running the view."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(kind: str, *args: Any, **kwargs: Any):
            ref = get_kind(kind)
            if ref is None:
                abort(404)
            return require_permission(f"{ref.slug}.{action}")(fn)(ref, *args, **kwargs)

        return wrapped

    return decorator


def _payload(ref: ReferenceKind) -> dict:
    return {f.name: request.form.get(f.name) for f in ref.fields}


# ---------- List ----------
@bp.get(f"/{_KIND}")
@_require_kind("read")
def index(ref: ReferenceKind):
    s = db_session()
    search = (request.args.get("q") or "").strip()
    records = list_records(s, ref, search)
    return render_template("admin/reference/index.html", ref=ref, records=records, search=search)


# ---------- New ----------
@bp.get(f"/{_KIND}/new")
@_require_kind("create")
def new(ref: ReferenceKind):
    return render_template("admin/reference/form.html", ref=ref, record=None, values={}, errors=[])


@bp.post(f"/{_KIND}")
@_require_kind("create")
def create(ref: ReferenceKind):
    s = db_session()
    payload = _payload(ref)
    record, errors = create_record(s, ref, payload, _current_user())
    if errors:
        s.rollback()
        return render_template("admin/reference/form.html", ref=ref, record=None, values=payload, errors=errors), 422
    s.commit()
    flash(f"{ref.singular} created successfully", "success")
    return redirect(url_for("reference.index", kind=ref.slug))


# ---------- Detail ----------
@bp.get(f"/{_KIND}/<int:record_id>")
@_require_kind("read")
def show(ref: ReferenceKind, record_id: int):
    s = db_session()
    record = get_record(s, ref, record_id)
    if not record:
        abort(404)
    return render_template("admin/reference/show.html", ref=ref, record=record)


# ---------- Edit ----------
@bp.get(f"/{_KIND}/<int:record_id>/edit")
@_require_kind("update")
def edit(ref: ReferenceKind, record_id: int):
    s = db_session()
    record = get_record(s, ref, record_id)
    if not record:
        abort(404)
    values = {f.name: getattr(record, f.name) for f in ref.fields}
    return render_template("admin/reference/form.html", ref=ref, record=record, values=values, errors=[])


@bp.post(f"/{_KIND}/<int:record_id>")
@_require_kind("update")
def update(ref: ReferenceKind, record_id: int):
    s = db_session()
    record = get_record(s, ref, record_id)
    if not record:
        abort(404)
    payload = _payload(ref)
    errors = update_record(s, ref, record, payload, _current_user())
    if errors:
        s.rollback()
        return render_template("admin/reference/form.html", ref=ref, record=record, values=payload, errors=errors), 422
    s.commit()
    flash(f"{ref.singular} updated successfully", "success")
    return redirect(url_for("reference.show", kind=ref.slug, record_id=record.id))


# ---------- Delete ----------
@bp.post(f"/{_KIND}/<int:record_id>/delete")
@_require_kind("delete")
def delete(ref: ReferenceKind, record_id: int):
    s = db_session()
    record = get_record(s, ref, record_id)
    if not record:
        abort(404)
    delete_record(s, ref, record, _current_user())
    s.commit()
    flash(f"{ref.singular} deleted successfully", "success")
    return redirect(url_for("reference.index", kind=ref.slug))
