from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.armory import accounts
from app.armory.constants import FREE_TIER_AMMO_LIMIT
from app.armory.db import db_session
from app.armory.models import User
from app.armory.modules.munitions.service import (
    AMMO_SORT_FIELDS,
    ammo_page,
    count_ammo,
    create_ammo,
    delete_ammo,
    get_owned_ammo,
    update_ammo,
    validate_ammo_payload,
    visible_ammo_ids,
)
from app.armory.modules.reference.service import KINDS, dropdown_options
from app.armory.rbac import login_required
from app.armory.utils import parse_list_params

bp = Blueprint("munitions", __name__)

AMMO_FIELDS = (
    "name",
    "acquired",
    "paid",
    "count",
    "expended",
    "brand_id",
    "caliber_id",
    "bullet_style_id",
    "grain_id",
    "casing_id",
)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _form_options(s) -> dict:
    return {
        slug: dropdown_options(s, KINDS[slug])
        for slug in ("brands", "calibers", "bullet_styles", "grains", "casings")
    }


@bp.get("/owner/munitions")
@login_required
def index():
    s = db_session()
    user = _current_user()
    params = parse_list_params(
        request.args,
        allowed_sorts=AMMO_SORT_FIELDS,
        default_sort="created_at",
        default_order="desc",
        default_per_page=10,
    )

    only_ids = None
    limit_error = None
    if not accounts.has_active_subscription(user):
        total = count_ammo(s, user.id)
        if total > FREE_TIER_AMMO_LIMIT:
            only_ids = visible_ammo_ids(s, user.id)
            limit_error = (
                f"Free tier only allows {FREE_TIER_AMMO_LIMIT} ammunition entries. "
                f"You have {total} in your munitions depot. Subscribe to see more."
            )
    page = ammo_page(s, user.id, params, only_ids=only_ids)
    return render_template("owner/munitions/index.html", page=page, params=params, limit_error=limit_error)


@bp.get("/owner/munitions/new")
@login_required
def new():
    s = db_session()
    return render_template("owner/munitions/form.html", ammo=None, values={}, errors=[], **_form_options(s))


@bp.post("/owner/munitions")
@login_required
def create():
    s = db_session()
    user = _current_user()

    if not accounts.has_active_subscription(user) and count_ammo(s, user.id) >= FREE_TIER_AMMO_LIMIT:
        flash("You must be subscribed to add more to your munitions depot", "warning")
        return redirect(url_for("payments.pricing"))

    payload = {k: request.form.get(k) for k in AMMO_FIELDS}
    values, errors = validate_ammo_payload(s, payload)
    if errors:
        return render_template("owner/munitions/form.html", ammo=None, values=payload, errors=errors, **_form_options(s)), 422

    create_ammo(s, values, user)
    s.commit()
    flash("Ammunition added successfully", "success")
    return redirect(url_for("munitions.index"))


@bp.get("/owner/munitions/<int:ammo_id>")
@login_required
def show(ammo_id: int):
    s = db_session()
    ammo = get_owned_ammo(s, _current_user(), ammo_id)
    if not ammo:
        abort(404)
    return render_template("owner/munitions/show.html", ammo=ammo)


@bp.get("/owner/munitions/<int:ammo_id>/edit")
@login_required
def edit(ammo_id: int):
    s = db_session()
    ammo = get_owned_ammo(s, _current_user(), ammo_id)
    if not ammo:
        abort(404)
    values = {k: getattr(ammo, k) for k in AMMO_FIELDS}
    return render_template("owner/munitions/form.html", ammo=ammo, values=values, errors=[], **_form_options(s))


@bp.post("/owner/munitions/<int:ammo_id>")
@login_required
def update(ammo_id: int):
    s = db_session()
    user = _current_user()
    ammo = get_owned_ammo(s, user, ammo_id)
    if not ammo:
        abort(404)

    payload = {k: request.form.get(k) for k in AMMO_FIELDS}
    values, errors = validate_ammo_payload(s, payload)
    if errors:
        return render_template("owner/munitions/form.html", ammo=ammo, values=payload, errors=errors, **_form_options(s)), 422

    update_ammo(s, ammo, values, user)
    s.commit()
    flash("Ammunition updated successfully", "success")
    return redirect(url_for("munitions.show", ammo_id=ammo.id))


@bp.post("/owner/munitions/<int:ammo_id>/delete")
@login_required
def delete(ammo_id: int):
    s = db_session()
    user = _current_user()
    ammo = get_owned_ammo(s, user, ammo_id)
    if not ammo:
        abort(404)
    delete_ammo(s, ammo, user)
    s.commit()
    flash("Ammunition deleted successfully", "success")
    return redirect(url_for("munitions.index"))
