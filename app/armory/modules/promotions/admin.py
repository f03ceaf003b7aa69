from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.armory.db import db_session
from app.armory.models import User
from app.armory.modules.promotions.models import Promotion
from app.armory.modules.promotions.service import (
    PROMOTION_TYPES,
    create_promotion,
    delete_promotion,
    update_promotion,
    validate_promotion_payload,
)
from app.armory.rbac import require_permission

bp = Blueprint("promotions", __name__)

PROMOTION_FIELDS = (
    "name",
    "type",
    "active",
    "start_date",
    "end_date",
    "benefit_days",
    "display_on_home",
    "description",
    "banner",
)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get(s, promotion_id: int) -> Promotion:
    promo = s.get(Promotion, promotion_id)
    if not promo or promo.deleted_at is not None:
        abort(404)
    return promo


def _form(promo: Promotion | None, values: dict, errors: list[str]):
    return render_template(
        "admin/promotions/form.html",
        promotion=promo,
        values=values,
        errors=errors,
        types=PROMOTION_TYPES,
    )


@bp.get("/promotions")
@require_permission("promotions.read")
def index():
    s = db_session()
    promotions = (
        s.query(Promotion)
        .filter(Promotion.deleted_at.is_(None))
        .order_by(Promotion.start_date.desc())
        .all()
    )
    return render_template("admin/promotions/index.html", promotions=promotions)


@bp.get("/promotions/new")
@require_permission("promotions.create")
def new():
    return _form(None, {"active": "on", "type": "free_trial", "benefit_days": "30"}, [])


@bp.post("/promotions")
@require_permission("promotions.create")
def create():
    s = db_session()
    payload = {k: request.form.get(k) for k in PROMOTION_FIELDS}
    errors = validate_promotion_payload(payload)
    if errors:
        return _form(None, payload, errors), 422
    promo = create_promotion(s, payload, _current_user())
    s.commit()
    flash("Promotion created successfully", "success")
    return redirect(url_for("promotions.show", promotion_id=promo.id))


@bp.get("/promotions/<int:promotion_id>")
@require_permission("promotions.read")
def show(promotion_id: int):
    s = db_session()
    return render_template("admin/promotions/show.html", promotion=_get(s, promotion_id))


@bp.get("/promotions/<int:promotion_id>/edit")
@require_permission("promotions.update")
def edit(promotion_id: int):
    s = db_session()
    promo = _get(s, promotion_id)
    values = {
        "name": promo.name,
        "type": promo.type,
        "active": "on" if promo.active else "",
        "start_date": promo.start_date.strftime("%Y-%m-%dT%H:%M"),
        "end_date": promo.end_date.strftime("%Y-%m-%dT%H:%M"),
        "benefit_days": str(promo.benefit_days),
        "display_on_home": "on" if promo.display_on_home else "",
        "description": promo.description or "",
        "banner": promo.banner or "",
    }
    return _form(promo, values, [])


@bp.post("/promotions/<int:promotion_id>")
@require_permission("promotions.update")
def update(promotion_id: int):
    s = db_session()
    promo = _get(s, promotion_id)
    payload = {k: request.form.get(k) for k in PROMOTION_FIELDS}
    errors = validate_promotion_payload(payload)
    if errors:
        return _form(promo, payload, errors), 422
    update_promotion(s, promo, payload, _current_user())
    s.commit()
    flash("Promotion updated successfully", "success")
    return redirect(url_for("promotions.show", promotion_id=promo.id))


@bp.post("/promotions/<int:promotion_id>/delete")
@require_permission("promotions.delete")
def delete(promotion_id: int):
    s = db_session()
    promo = _get(s, promotion_id)
    delete_promotion(s, promo, _current_user())
    s.commit()
    flash("Promotion deleted successfully", "success")
    return redirect(url_for("promotions.index"))
