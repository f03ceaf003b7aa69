from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.armory import accounts, mail
from app.armory.audit import record_event
from app.armory.constants import TIER_LABELS
from app.armory.db import db_session
from app.armory.models import User
from app.armory.modules.payments.service import user_payments
from app.armory.rbac import login_required
from app.armory.validation import is_valid_email

bp = Blueprint("profile", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/owner/profile")
@login_required
def show():
    user = _current_user()
    return render_template(
        "owner/profile/show.html",
        user=user,
        tier_label=TIER_LABELS.get(user.subscription_tier, user.subscription_tier),
    )


@bp.get("/owner/profile/edit")
@login_required
def edit():
    user = _current_user()
    return render_template("owner/profile/edit.html", user=user, email=user.email, errors=[])


@bp.post("/owner/profile/update")
@login_required
def update():
    s = db_session()
    user = _current_user()
    email = accounts.normalize_email(request.form.get("email"))

    if not is_valid_email(email):
        return render_template("owner/profile/edit.html", user=user, email=email, errors=["Invalid email format"]), 422

    if email == user.email:
        user.updated_at = datetime.utcnow()
        s.commit()
        flash("Your profile has been updated.", "success")
        return redirect(url_for("profile.show"))

    if accounts.find_user_by_email(s, email, include_deleted=True):
        return render_template("owner/profile/edit.html", user=user, email=email, errors=["Email already registered"]), 422

    user.pending_email = email
    token = accounts.issue_verification_token(user)
    record_event(
        s,
        actor=user,
        action="user.email_change_requested",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"old": user.email, "new": email},
    )
    s.commit()
    current_app.logger.info("Email change requested (user_id=%s)", user.id)

    mail.deliver(mail.send_email_change_verification, email, token)
    session.pop("user_id", None)
    session["verification_email"] = email
    flash("Please check your new email address to verify the change.", "info")
    return redirect(url_for("auth.verification_sent"))


@bp.get("/owner/profile/delete")
@login_required
def delete_confirm():
    return render_template("owner/profile/delete.html", user=_current_user())


@bp.post("/owner/profile/delete")
@login_required
def delete():
    if (request.form.get("confirm") or "").strip() != "true":
        return redirect(url_for("profile.show"))

    s = db_session()
    user = _current_user()
    accounts.soft_delete_user(s, user, user)
    s.commit()
    session.clear()
    flash("Your account has been deleted. Please come back any time!", "success")
    return redirect(url_for("routes.index"))


@bp.get("/owner/profile/subscription")
@login_required
def subscription():
    user = _current_user()
    return render_template(
        "owner/profile/subscription.html",
        user=user,
        tier_label=TIER_LABELS.get(user.subscription_tier, user.subscription_tier),
        active=accounts.has_active_subscription(user),
    )


@bp.get("/owner/payment-history")
@login_required
def payment_history():
    s = db_session()
    return render_template("owner/payment_history.html", payments=user_payments(s, _current_user()))
