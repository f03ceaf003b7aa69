from __future__ import annotations

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from app.armory import accounts
from app.armory.constants import PAID_TIERS
from app.armory.db import db_session
from app.armory.models import User
from app.armory.modules.payments.service import (
    PaymentsNotConfigured,
    cancel_subscription,
    client_from_config,
    handle_event,
    pricing_tiers,
    start_checkout,
)
from app.armory.modules.payments.stripe_client import StripeError, StripeSignatureError, construct_event
from app.armory.ratelimit import rate_limited
from app.armory.rbac import login_required

bp = Blueprint("payments", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/pricing")
def pricing():
    user = getattr(g, "current_user", None)
    return render_template("payments/pricing.html", tiers=pricing_tiers(user))


@bp.post("/checkout")
@login_required
def checkout():
    s = db_session()
    user = _current_user()
    tier = (request.form.get("tier") or "").strip()
    if tier not in PAID_TIERS:
        flash("Invalid subscription tier", "danger")
        return redirect(url_for("payments.pricing"))
    if not accounts.can_subscribe_to_tier(user, tier):
        flash("You cannot subscribe to this tier", "danger")
        return redirect(url_for("payments.pricing"))

    try:
        client = client_from_config(current_app.config)
        url = start_checkout(s, user, tier, client, current_app.config)
    except StripeError as e:
        s.rollback()
        current_app.logger.exception("Checkout failed (user_id=%s tier=%s): %s", user.id, tier, e)
        flash("We could not start checkout right now. Please try again later.", "danger")
        return redirect(url_for("payments.pricing"))
    return redirect(url, code=303)


@bp.get("/payment/success")
@login_required
def success():
    current_app.logger.info(
        "Checkout returned success (user_id=%s session_id=%s)",
        _current_user().id,
        request.args.get("session_id"),
    )
    flash("Payment successful! Your subscription is now active.", "success")
    return redirect(url_for("arsenal.landing"))


@bp.get("/payment/cancel")
def cancel():
    flash("Payment cancelled", "warning")
    return redirect(url_for("payments.pricing"))


@bp.post("/webhook")
@rate_limited("webhook")
def webhook():
    monitor = current_app.extensions["webhook_monitor"]
    payload = request.get_data()
    try:
        event = construct_event(
            payload,
            request.headers.get("Stripe-Signature"),
            current_app.config.get("STRIPE_WEBHOOK_SECRET") or "",
        )
    except StripeSignatureError as e:
        current_app.logger.warning("Rejected Stripe webhook: %s", e)
        monitor.record(event_type=None, outcome="failed", error=str(e))
        return {"error": "Invalid signature"}, 400

    s = db_session()
    event_type = event.get("type")
    try:
        client = client_from_config(current_app.config)
    except PaymentsNotConfigured:
        client = None
    try:
        outcome = handle_event(s, event, client)
        s.commit()
    except Exception as e:
        s.rollback()
        current_app.logger.exception("Stripe webhook %s failed: %s", event_type, e)
        monitor.record(event_type=event_type, outcome="failed", error=str(e))
        return {"error": "Webhook processing failed"}, 500

    monitor.record(event_type=event_type, outcome=outcome)
    return {"received": True, "outcome": outcome}, 200


@bp.get("/subscription/cancel/confirm")
@login_required
def cancel_confirm():
    return render_template("payments/cancel_confirm.html", user=_current_user())


@bp.post("/subscription/cancel")
@login_required
def cancel_subscription_post():
    s = db_session()
    user = _current_user()
    if not accounts.has_active_subscription(user) or user.is_lifetime:
        flash("You do not have an active subscription to cancel", "danger")
        return redirect(url_for("profile.subscription"))

    client = None
    if user.stripe_subscription_id:
        try:
            client = client_from_config(current_app.config)
        except PaymentsNotConfigured:
            current_app.logger.error("Cannot cancel Stripe subscription %s: Stripe not configured", user.stripe_subscription_id)
    try:
        end = cancel_subscription(s, user, client)
        s.commit()
    except StripeError as e:
        s.rollback()
        current_app.logger.exception("Subscription cancel failed (user_id=%s): %s", user.id, e)
        flash("We could not cancel your subscription right now. Please try again later.", "danger")
        return redirect(url_for("profile.subscription"))

    end_text = end.strftime("%B %d, %Y") if end else "the end of your current period"
    flash(f"Your subscription will be canceled at the end of the billing period ({end_text})", "success")
    return redirect(url_for("profile.subscription"))
