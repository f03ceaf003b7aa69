"""
User account rules: tokens, lockout, subscription state and soft delete.
"""
from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from werkzeug.security import check_password_hash, generate_password_hash

from app.armory.audit import record_event
from app.armory.constants import (
    LIFETIME_TIERS,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    TIER_ADMIN_GRANT,
    TIER_FREE,
    TIER_LIFETIME,
    TIER_MONTHLY,
    TIER_PREMIUM_LIFETIME,
    TIER_PROMOTION,
    TIER_YEARLY,
)
from app.armory.models import User
from app.armory.security import generate_token

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.armory.modules.promotions.models import Promotion


TOKEN_TTL = timedelta(hours=1)
MAX_LOGIN_ATTEMPTS = 5
LOCKOUT_WINDOW = timedelta(minutes=15)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


# ---------- Lookup ----------
def find_user_by_email(s: "Session", email: str, *, include_deleted: bool = False) -> User | None:
    q = s.query(User).filter(User.email == normalize_email(email))
    if not include_deleted:
        q = q.filter(User.deleted_at.is_(None))
    return q.one_or_none()


def find_user_by_verification_token(s: "Session", token: str) -> User | None:
    if not token:
        return None
    return (
        s.query(User)
        .filter(User.verification_token == token)
        .filter(User.deleted_at.is_(None))
        .one_or_none()
    )


def find_user_by_recovery_token(s: "Session", token: str) -> User | None:
    if not token:
        return None
    return (
        s.query(User)
        .filter(User.recovery_token == token)
        .filter(User.deleted_at.is_(None))
        .one_or_none()
    )


# ---------- Creation / credentials ----------
def create_user(s: "Session", email: str, password: str) -> User:
    now = datetime.utcnow()
    user = User(
        email=normalize_email(email),
        password_hash=generate_password_hash(password),
        verified=False,
        subscription_tier=TIER_FREE,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="user.register", entity_type="User", entity_id=str(user.id))
    return user


def check_password(user: User, password: str) -> bool:
    return check_password_hash(user.password_hash, password or "")


def set_password(user: User, password: str) -> None:
    user.password_hash = generate_password_hash(password)
    user.updated_at = datetime.utcnow()


# ---------- Tokens ----------
def issue_verification_token(user: User, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    token = generate_token()
    user.verification_token = token
    user.verification_token_expiry = now + TOKEN_TTL
    user.verification_sent_at = now
    return token


def issue_recovery_token(user: User, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    token = generate_token()
    user.recovery_token = token
    user.recovery_token_expiry = now + TOKEN_TTL
    user.recovery_sent_at = now
    return token


def token_expired(expiry: datetime | None, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    return expiry is None or now > expiry


def verify_email(user: User) -> None:
    """Mark verified; a pending email change becomes the login email."""
    if user.pending_email:
        user.email = user.pending_email
        user.pending_email = None
    user.verified = True
    user.verification_token = None
    user.verification_token_expiry = None
    user.updated_at = datetime.utcnow()


def clear_recovery_token(user: User) -> None:
    user.recovery_token = None
    user.recovery_token_expiry = None


# ---------- Lockout ----------
def is_locked_out(user: User, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    if user.login_attempts < MAX_LOGIN_ATTEMPTS or user.last_login_attempt is None:
        return False
    return now - user.last_login_attempt < LOCKOUT_WINDOW


def record_failed_login(user: User, now: datetime | None = None) -> None:
    now = now or datetime.utcnow()
    # Attempts older than the window do not count toward the lockout.
    if user.last_login_attempt is not None and now - user.last_login_attempt >= LOCKOUT_WINDOW:
        user.login_attempts = 0
    user.login_attempts = (user.login_attempts or 0) + 1
    user.last_login_attempt = now


def record_successful_login(user: User, now: datetime | None = None) -> None:
    now = now or datetime.utcnow()
    user.login_attempts = 0
    user.last_login_attempt = None
    user.last_login = now


# ---------- Subscription ----------
def has_active_subscription(user: User, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    tier = user.subscription_tier or TIER_FREE
    if tier == TIER_FREE:
        return False
    if tier in LIFETIME_TIERS:
        return True
    if user.subscription_status != STATUS_ACTIVE:
        return False
    return user.subscription_end_date is None or user.subscription_end_date > now


def can_subscribe_to_tier(user: User, tier: str) -> bool:
    current = user.subscription_tier or TIER_FREE
    if current == TIER_FREE:
        return True
    if current == TIER_MONTHLY:
        return tier != TIER_MONTHLY
    if current == TIER_YEARLY:
        return tier not in (TIER_MONTHLY, TIER_YEARLY)
    if current == TIER_LIFETIME:
        return tier == TIER_PREMIUM_LIFETIME
    if current == TIER_PREMIUM_LIFETIME:
        return False
    return True


def check_expired_promotion_subscription(user: User, now: datetime | None = None) -> bool:
    """Downgrade a lapsed time-boxed subscription to free. Returns True when the user changed."""
    now = now or datetime.utcnow()
    tier = user.subscription_tier or TIER_FREE
    if tier == TIER_FREE or user.subscription_status == STATUS_EXPIRED:
        return False
    if user.subscription_end_date is None or user.subscription_end_date > now:
        return False
    user.subscription_status = STATUS_EXPIRED
    user.subscription_tier = TIER_FREE
    user.subscription_end_date = None
    user.updated_at = now
    return True


def apply_promotion(user: User, promotion: "Promotion", now: datetime | None = None) -> None:
    now = now or datetime.utcnow()
    user.subscription_tier = TIER_PROMOTION
    user.subscription_status = STATUS_ACTIVE
    user.subscription_end_date = now + timedelta(days=promotion.benefit_days)
    user.promotion_id = promotion.id


def grant_subscription(
    s: "Session",
    user: User,
    admin: User,
    *,
    subscription_type: str,
    grant_reason: str | None,
    duration_days: int | None,
    is_lifetime: bool,
    now: datetime | None = None,
) -> None:
    now = now or datetime.utcnow()
    user.subscription_tier = subscription_type
    user.subscription_status = STATUS_ACTIVE
    user.is_admin_granted = True
    user.granted_by_id = admin.id
    user.grant_reason = grant_reason or None
    user.is_lifetime = False

    if subscription_type == TIER_ADMIN_GRANT:
        if is_lifetime:
            user.is_lifetime = True
            user.subscription_end_date = None
        else:
            user.subscription_end_date = now + timedelta(days=duration_days or 0)
    elif subscription_type == TIER_MONTHLY:
        user.subscription_end_date = add_months(now, 1)
    elif subscription_type == TIER_YEARLY:
        user.subscription_end_date = add_months(now, 12)
    elif subscription_type in LIFETIME_TIERS:
        user.is_lifetime = True
        user.subscription_end_date = None
    user.updated_at = now

    record_event(
        s,
        actor=admin,
        action="user.grant_subscription",
        entity_type="User",
        entity_id=str(user.id),
        reason=grant_reason,
        metadata={
            "tier": subscription_type,
            "duration_days": duration_days,
            "is_lifetime": user.is_lifetime,
        },
    )


# ---------- Soft delete ----------
def soft_delete_user(s: "Session", user: User, actor: User | None) -> None:
    user.deleted_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.delete", entity_type="User", entity_id=str(user.id))


def restore_user(s: "Session", user: User, actor: User | None) -> None:
    user.deleted_at = None
    user.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.restore", entity_type="User", entity_id=str(user.id))
