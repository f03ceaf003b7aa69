from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for
from markupsafe import escape

from app.armory import accounts
from app.armory.constants import FREE_TIER_AMMO_LIMIT, FREE_TIER_GUN_LIMIT
from app.armory.db import db_session
from app.armory.models import User
from app.armory.modules.arsenal.service import (
    GUN_SORT_FIELDS,
    count_guns,
    create_gun,
    delete_gun,
    get_owned_gun,
    gun_page,
    total_paid,
    update_gun,
    validate_gun_payload,
    visible_gun_ids,
)
from app.armory.modules.munitions.service import ammo_totals
from app.armory.modules.reference.service import KINDS, dropdown_options, search_calibers
from app.armory.rbac import login_required
from app.armory.utils import parse_list_params

bp = Blueprint("arsenal", __name__)

GUN_FIELDS = (
    "name",
    "serial_number",
    "purpose",
    "finish",
    "acquired",
    "paid",
    "weapon_type_id",
    "caliber_id",
    "manufacturer_id",
)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _form_options(s) -> dict:
    return {
        "weapon_types": dropdown_options(s, KINDS["weapon_types"]),
        "calibers": dropdown_options(s, KINDS["calibers"]),
        "manufacturers": dropdown_options(s, KINDS["manufacturers"]),
    }


def _free_tier_gun_view(s, user: User) -> tuple[list[int] | None, str | None, str | None]:
    """Visible ids plus (error, note) banners when a free account exceeds its cap."""
    if accounts.has_active_subscription(user):
        return None, None, None
    total = count_guns(s, user.id)
    if total <= FREE_TIER_GUN_LIMIT:
        return None, None, None
    error = (
        f"Free tier only allows {FREE_TIER_GUN_LIMIT} guns. You have {total} in your arsenal. "
        "Subscribe to see more."
    )
    return visible_gun_ids(s, user.id), error, "To see your remaining firearms please subscribe."


# ---------- Landing ----------
@bp.get("/owner")
@login_required
def landing():
    s = db_session()
    user = _current_user()
    if accounts.check_expired_promotion_subscription(user):
        s.commit()
        flash("Your promotional subscription has ended. Subscribe to keep full access.", "warning")

    params = parse_list_params(
        request.args,
        allowed_sorts=GUN_SORT_FIELDS,
        default_sort="created_at",
        default_order="desc",
        default_per_page=10,
    )
    only_ids, limit_error, limit_note = _free_tier_gun_view(s, user)
    page = gun_page(s, user.id, params, only_ids=only_ids)

    ammo = ammo_totals(s, user.id)
    stats = {
        "total_guns": count_guns(s, user.id),
        "total_paid_guns": total_paid(s, user.id),
        "ammo_items": ammo["items"],
        "total_rounds": ammo["rounds"],
        "total_expended": ammo["expended"],
        "total_paid_ammo": ammo["paid"],
    }
    ammo_limit_note = None
    if not accounts.has_active_subscription(user) and ammo["items"] > FREE_TIER_AMMO_LIMIT:
        ammo_limit_note = f"Free tier only shows {FREE_TIER_AMMO_LIMIT} ammunition entries. Subscribe to see more."

    return render_template(
        "owner/landing.html",
        page=page,
        params=params,
        stats=stats,
        limit_error=limit_error,
        limit_note=limit_note,
        ammo_limit_note=ammo_limit_note,
        subscribed=accounts.has_active_subscription(user),
    )


@bp.get("/owner/guns/arsenal")
@login_required
def arsenal():
    s = db_session()
    user = _current_user()
    params = parse_list_params(
        request.args,
        allowed_sorts=GUN_SORT_FIELDS,
        default_sort="name",
        default_order="asc",
        default_per_page=50,
    )
    only_ids, limit_error, limit_note = _free_tier_gun_view(s, user)
    page = gun_page(s, user.id, params, only_ids=only_ids)
    return render_template(
        "owner/guns/arsenal.html",
        page=page,
        params=params,
        limit_error=limit_error,
        limit_note=limit_note,
    )


# ---------- New ----------
@bp.get("/owner/guns/new")
@login_required
def new_gun():
    s = db_session()
    return render_template("owner/guns/form.html", gun=None, values={}, errors=[], **_form_options(s))


@bp.post("/owner/guns")
@login_required
def create():
    s = db_session()
    user = _current_user()

    if not accounts.has_active_subscription(user) and count_guns(s, user.id) >= FREE_TIER_GUN_LIMIT:
        flash("You must be subscribed to add more to your arsenal", "warning")
        return redirect(url_for("payments.pricing"))

    payload = {k: request.form.get(k) for k in GUN_FIELDS}
    values, errors = validate_gun_payload(s, payload)
    if errors:
        return render_template("owner/guns/form.html", gun=None, values=payload, errors=errors, **_form_options(s)), 422

    create_gun(s, values, user)
    s.commit()
    flash("Weapon added to your arsenal", "success")
    return redirect(url_for("arsenal.landing"))


# ---------- Detail ----------
@bp.get("/owner/guns/<int:gun_id>")
@login_required
def show(gun_id: int):
    s = db_session()
    gun = get_owned_gun(s, _current_user(), gun_id)
    if not gun:
        abort(404)
    return render_template("owner/guns/show.html", gun=gun)


# ---------- Edit ----------
@bp.get("/owner/guns/<int:gun_id>/edit")
@login_required
def edit(gun_id: int):
    s = db_session()
    gun = get_owned_gun(s, _current_user(), gun_id)
    if not gun:
        abort(404)
    values = {k: getattr(gun, k) for k in GUN_FIELDS}
    return render_template("owner/guns/form.html", gun=gun, values=values, errors=[], **_form_options(s))


@bp.post("/owner/guns/<int:gun_id>")
@login_required
def update(gun_id: int):
    s = db_session()
    user = _current_user()
    gun = get_owned_gun(s, user, gun_id)
    if not gun:
        abort(404)

    payload = {k: request.form.get(k) for k in GUN_FIELDS}
    values, errors = validate_gun_payload(s, payload)
    if errors:
        return render_template("owner/guns/form.html", gun=gun, values=payload, errors=errors, **_form_options(s)), 422

    update_gun(s, gun, values, user)
    s.commit()
    flash("Your gun has been updated.", "success")
    return redirect(url_for("arsenal.show", gun_id=gun.id))


# ---------- Delete ----------
@bp.post("/owner/guns/<int:gun_id>/delete")
@login_required
def delete(gun_id: int):
    s = db_session()
    user = _current_user()
    gun = get_owned_gun(s, user, gun_id)
    if not gun:
        abort(404)
    delete_gun(s, gun, user)
    s.commit()
    flash("Your gun has been deleted.", "success")
    return redirect(url_for("arsenal.landing"))


# ---------- Caliber search (dropdown) ----------
@bp.get("/api/calibers/search")
@login_required
def caliber_search():
    s = db_session()
    term = (request.args.get("q") or "").strip()
    items = [
        f'<div class="custom-dropdown-item" data-id="{c.id}">{escape(c.caliber)}</div>'
        for c in search_calibers(s, term)
    ]
    return "".join(items), 200, {"Content-Type": "text/html; charset=utf-8"}
