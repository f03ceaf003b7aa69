from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy import or_

from app.armory import accounts
from app.armory.audit import record_event
from app.armory.constants import GRANTABLE_TIERS, STATUS_ACTIVE, TIER_ADMIN_GRANT, TIER_FREE, TIER_LABELS
from app.armory.db import db_session, ping
from app.armory.models import User
from app.armory.modules.arsenal.models import Gun
from app.armory.modules.munitions.models import Ammo
from app.armory.modules.payments.models import Payment
from app.armory.ratelimit import get_block_stats, reset_limits
from app.armory.rbac import require_permission
from app.armory.utils import paginate, parse_list_params
from app.armory.validation import is_valid_email

bp = Blueprint("admin", __name__)

USER_SORT_FIELDS = ("email", "created_at", "last_login", "subscription_tier", "subscription_status")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _month_starts(now: datetime) -> tuple[datetime, datetime]:
    this_month = datetime(now.year, now.month, 1)
    if now.month == 1:
        last_month = datetime(now.year - 1, 12, 1)
    else:
        last_month = datetime(now.year, now.month - 1, 1)
    return this_month, last_month


def calculate_growth_rate(current: int, previous: int) -> float:
    """Percent change from previous to current, truncated to one decimal. 100.0 when previous is 0."""
    if previous == 0:
        return 100.0
    change = (current - previous) / previous * 100.0
    return int(change * 10) / 10


def _get_user(s, user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        abort(404)
    return user


def _users_query(s, search: str, *, include_deleted: bool = False):
    q = s.query(User)
    if not include_deleted:
        q = q.filter(User.deleted_at.is_(None))
    if search:
        q = q.filter(User.email.ilike(f"%{search}%"))
    return q


def _ordered(q, params):
    col = getattr(User, params.sort_by)
    return q.order_by(col.desc() if params.sort_order == "desc" else col.asc(), User.id.asc())


@bp.get("/")
@require_permission("admin.view")
def index():
    return redirect(url_for("admin.dashboard"))


@bp.get("/dashboard")
@require_permission("admin.view")
def dashboard():
    s = db_session()
    now = datetime.utcnow()
    this_month, last_month = _month_starts(now)
    active = s.query(User).filter(User.deleted_at.is_(None))

    total_users = active.count()
    subscribers = active.filter(
        User.subscription_status == STATUS_ACTIVE,
        User.is_admin_granted.is_(False),
        User.subscription_tier != TIER_FREE,
    )
    subscribed_users = subscribers.count()
    new_users = active.filter(User.created_at >= this_month).count()
    new_users_last = active.filter(User.created_at >= last_month, User.created_at < this_month).count()
    new_subs = subscribers.filter(User.updated_at >= this_month).count()
    new_subs_last = subscribers.filter(User.updated_at >= last_month, User.updated_at < this_month).count()

    stats = {
        "total_users": total_users,
        "subscribed_users": subscribed_users,
        "new_registrations": new_users,
        "new_subscriptions": new_subs,
        "user_growth_rate": calculate_growth_rate(total_users, total_users - new_users),
        "subscribed_growth_rate": calculate_growth_rate(subscribed_users, subscribed_users - new_subs),
        "new_registrations_growth_rate": calculate_growth_rate(new_users, new_users_last),
        "new_subscriptions_growth_rate": calculate_growth_rate(new_subs, new_subs_last),
    }

    params = parse_list_params(request.args, allowed_sorts=USER_SORT_FIELDS, default_sort="created_at", default_order="desc")
    page = paginate(_ordered(_users_query(s, params.search), params), params)
    return render_template("admin/dashboard.html", stats=stats, page=page, params=params, tier_labels=TIER_LABELS)


# ---------- Users ----------
@bp.get("/users")
@require_permission("users.manage")
def users_index():
    s = db_session()
    show_deleted = (request.args.get("show_deleted") or "").strip() in ("1", "true", "on")
    params = parse_list_params(request.args, allowed_sorts=USER_SORT_FIELDS, default_sort="created_at", default_order="desc")
    page = paginate(_ordered(_users_query(s, params.search, include_deleted=show_deleted), params), params)
    return render_template(
        "admin/users/index.html",
        page=page,
        params=params,
        show_deleted=show_deleted,
        tier_labels=TIER_LABELS,
    )


@bp.get("/users/<int:user_id>")
@require_permission("users.manage")
def users_show(user_id: int):
    s = db_session()
    user = _get_user(s, user_id)
    granted_by = s.get(User, user.granted_by_id) if user.granted_by_id else None
    return render_template(
        "admin/users/show.html",
        user=user,
        granted_by=granted_by,
        tier_label=TIER_LABELS.get(user.subscription_tier, user.subscription_tier),
        gun_count=s.query(Gun).filter(Gun.owner_id == user.id, Gun.deleted_at.is_(None)).count(),
        ammo_count=s.query(Ammo).filter(Ammo.owner_id == user.id, Ammo.deleted_at.is_(None)).count(),
    )


@bp.get("/users/<int:user_id>/edit")
@require_permission("users.manage")
def users_edit(user_id: int):
    s = db_session()
    return render_template("admin/users/edit.html", user=_get_user(s, user_id), tier_labels=TIER_LABELS, errors=[])


@bp.post("/users/<int:user_id>")
@require_permission("users.manage")
def users_update(user_id: int):
    s = db_session()
    user = _get_user(s, user_id)
    email = accounts.normalize_email(request.form.get("email"))
    tier = (request.form.get("subscription_tier") or "").strip() or TIER_FREE
    verified = request.form.get("verified") == "on"

    errors = []
    if not is_valid_email(email):
        errors.append("Invalid email format")
    else:
        clash = accounts.find_user_by_email(s, email, include_deleted=True)
        if clash is not None and clash.id != user.id:
            errors.append("Email already registered")
    if tier not in TIER_LABELS:
        errors.append("Invalid subscription tier")
    if errors:
        return render_template("admin/users/edit.html", user=user, tier_labels=TIER_LABELS, errors=errors), 422

    changes = {}
    for field, new in (("email", email), ("subscription_tier", tier), ("verified", verified)):
        old = getattr(user, field)
        if old != new:
            changes[field] = {"old": old, "new": new}
            setattr(user, field, new)
    user.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=_current_user(),
        action="user.admin_update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"changes": changes},
    )
    s.commit()
    flash("User updated successfully", "success")
    return redirect(url_for("admin.users_show", user_id=user.id))


@bp.post("/users/<int:user_id>/delete")
@require_permission("users.manage")
def users_delete(user_id: int):
    s = db_session()
    user = _get_user(s, user_id)
    if user.id == _current_user().id:
        flash("You cannot delete your own account from the admin panel", "danger")
        return redirect(url_for("admin.users_index"))
    accounts.soft_delete_user(s, user, _current_user())
    s.commit()
    flash("User deleted successfully", "success")
    return redirect(url_for("admin.users_index"))


@bp.post("/users/<int:user_id>/restore")
@require_permission("users.manage")
def users_restore(user_id: int):
    s = db_session()
    user = _get_user(s, user_id)
    accounts.restore_user(s, user, _current_user())
    s.commit()
    flash("User restored successfully", "success")
    return redirect(url_for("admin.users_index"))


def _grant_form(user: User, errors: list[str], status: int = 200):
    return (
        render_template(
            "admin/users/grant_subscription.html",
            user=user,
            tiers=GRANTABLE_TIERS,
            tier_labels=TIER_LABELS,
            errors=errors,
        ),
        status,
    )


@bp.get("/users/<int:user_id>/grant-subscription")
@require_permission("users.manage")
def users_grant_get(user_id: int):
    s = db_session()
    return _grant_form(_get_user(s, user_id), [])


@bp.post("/users/<int:user_id>/grant-subscription")
@require_permission("users.manage")
def users_grant_post(user_id: int):
    s = db_session()
    user = _get_user(s, user_id)
    subscription_type = (request.form.get("subscription_type") or "").strip()
    grant_reason = (request.form.get("grant_reason") or "").strip()
    is_lifetime = request.form.get("is_lifetime") == "on"

    if not subscription_type:
        return _grant_form(user, ["Subscription type is required"], 400)
    if subscription_type not in GRANTABLE_TIERS:
        return _grant_form(user, ["Invalid subscription tier"], 400)

    duration_days = None
    if subscription_type == TIER_ADMIN_GRANT and not is_lifetime:
        try:
            duration_days = int((request.form.get("duration_days") or "").strip())
        except ValueError:
            duration_days = None
        if duration_days is None or duration_days <= 0:
            return _grant_form(user, ["Please enter a valid number of days"], 400)

    accounts.grant_subscription(
        s,
        user,
        _current_user(),
        subscription_type=subscription_type,
        grant_reason=grant_reason,
        duration_days=duration_days,
        is_lifetime=is_lifetime,
    )
    s.commit()
    current_app.logger.info(
        "Subscription granted (user_id=%s tier=%s by=%s)", user.id, subscription_type, _current_user().id
    )
    flash("Subscription granted successfully", "success")
    return redirect(url_for("admin.users_show", user_id=user.id))


# ---------- Inventory overview ----------
@bp.get("/guns")
@require_permission("admin.view")
def guns_index():
    s = db_session()
    params = parse_list_params(request.args, allowed_sorts=("name", "created_at", "email"), default_sort="created_at", default_order="desc")
    q = s.query(Gun, User.email).join(User, Gun.owner_id == User.id).filter(Gun.deleted_at.is_(None))
    if params.search:
        like = f"%{params.search}%"
        q = q.filter(or_(Gun.name.ilike(like), User.email.ilike(like)))
    col = User.email if params.sort_by == "email" else getattr(Gun, params.sort_by)
    q = q.order_by(col.desc() if params.sort_order == "desc" else col.asc(), Gun.id.asc())
    return render_template("admin/guns/index.html", page=paginate(q, params), params=params)


@bp.get("/munitions")
@require_permission("admin.view")
def munitions_index():
    s = db_session()
    params = parse_list_params(
        request.args, allowed_sorts=("name", "created_at", "count", "email"), default_sort="created_at", default_order="desc"
    )
    q = s.query(Ammo, User.email).join(User, Ammo.owner_id == User.id).filter(Ammo.deleted_at.is_(None))
    if params.search:
        like = f"%{params.search}%"
        q = q.filter(or_(Ammo.name.ilike(like), User.email.ilike(like)))
    col = User.email if params.sort_by == "email" else getattr(Ammo, params.sort_by)
    q = q.order_by(col.desc() if params.sort_order == "desc" else col.asc(), Ammo.id.asc())
    return render_template("admin/munitions/index.html", page=paginate(q, params), params=params)


@bp.get("/munitions/<int:ammo_id>")
@require_permission("admin.view")
def munitions_show(ammo_id: int):
    s = db_session()
    ammo = s.get(Ammo, ammo_id)
    if not ammo or ammo.deleted_at is not None:
        abort(404)
    return render_template("admin/munitions/show.html", ammo=ammo, owner=s.get(User, ammo.owner_id))


@bp.get("/payments-history")
@require_permission("payments.read")
def payments_history():
    s = db_session()
    params = parse_list_params(request.args, allowed_sorts=("created_at", "amount", "status"), default_sort="created_at", default_order="desc")
    q = s.query(Payment, User.email).join(User, Payment.user_id == User.id)
    if params.search:
        like = f"%{params.search}%"
        q = q.filter(or_(User.email.ilike(like), Payment.description.ilike(like), Payment.stripe_id.ilike(like)))
    col = getattr(Payment, params.sort_by)
    q = q.order_by(col.desc() if params.sort_order == "desc" else col.asc(), Payment.id.desc())
    return render_template("admin/payments_history.html", page=paginate(q, params), params=params)


@bp.get("/detailed-health")
@require_permission("admin.view")
def detailed_health():
    db_ok, db_error = ping(current_app)
    health = {
        "env": current_app.config.get("ENV"),
        "db_connected": db_ok,
        "db_error": db_error,
        "rate_limit": get_block_stats().stats(),
        "rate_limit_enabled": bool(current_app.config.get("RATELIMIT_ENABLED")),
        "webhooks": current_app.extensions["webhook_monitor"].stats(),
        "stripe_configured": bool(current_app.config.get("STRIPE_SECRET_KEY")),
        "mailjet_configured": bool(current_app.config.get("MAILJET_API_KEY") and current_app.config.get("MAILJET_SECRET_KEY")),
    }
    if (request.args.get("format") or "") == "json":
        return health
    return render_template("admin/detailed_health.html", health=health)


@bp.get("/rate-limits")
@require_permission("admin.view")
def rate_limits():
    return get_block_stats().stats()


@bp.post("/rate-limits/reset")
@require_permission("admin.view")
def rate_limits_reset():
    reset_limits()
    s = db_session()
    record_event(s, actor=_current_user(), action="admin.rate_limits_reset", entity_type="Limiter")
    s.commit()
    current_app.logger.info("Rate limit counters reset by user %s", _current_user().id)
    flash("Rate limit counters and statistics reset", "success")
    return redirect(url_for("admin.detailed_health"))


@bp.get("/webhook-health")
@require_permission("admin.view")
def webhook_health():
    return current_app.extensions["webhook_monitor"].stats()


@bp.post("/webhook-health/reset")
@require_permission("admin.view")
def webhook_health_reset():
    current_app.extensions["webhook_monitor"].reset()
    s = db_session()
    record_event(s, actor=_current_user(), action="admin.webhook_stats_reset", entity_type="WebhookMonitor")
    s.commit()
    flash("Webhook statistics reset", "success")
    return redirect(url_for("admin.detailed_health"))
