from __future__ import annotations

import uuid

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.armory import accounts, mail
from app.armory.audit import record_event
from app.armory.db import db_session
from app.armory.models import User
from app.armory.modules.promotions.service import best_active_promotion
from app.armory.ratelimit import rate_limited
from app.armory.security import is_safe_next
from app.armory.validation import is_valid_email, password_error

bp = Blueprint("auth", __name__)

FORGOT_PASSWORD_MESSAGE = "If your email is registered, you will receive a password reset link valid for 60 minutes"


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


# ---------- Login ----------
@bp.get("/login")
def login_get():
    if getattr(g, "current_user", None):
        return redirect(url_for("routes.index"))
    nxt = (request.args.get("next") or "").strip()
    verified = request.args.get("verified") == "true"
    return render_template("auth/login.html", next=nxt, verified=verified)


@bp.post("/login")
@rate_limited("login")
def login_post():
    if getattr(g, "current_user", None):
        return redirect(url_for("routes.index"))

    email = accounts.normalize_email(request.form.get("email"))
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()

    s = db_session()
    user = accounts.find_user_by_email(s, email)

    if user and accounts.is_locked_out(user):
        flash("Too many failed login attempts. Please try again later.", "danger")
        return redirect(url_for("auth.login_get"))

    if not user or not accounts.check_password(user, password):
        if user:
            accounts.record_failed_login(user)
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        flash("Invalid email or password", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    if not user.verified:
        session["verification_email"] = user.email
        flash("Please verify your email before logging in", "warning")
        return redirect(url_for("auth.verification_sent"))

    accounts.record_successful_login(user)
    session.clear()
    session["user_id"] = user.id
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    current_app.logger.info("User logged in (user_id=%s request_id=%s)", user.id, getattr(g, "request_id", None))

    flash("Enjoy adding to your armory!", "success")
    if is_safe_next(nxt):
        return redirect(nxt)
    return redirect(url_for("arsenal.landing"))


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    flash("Come back soon!", "success")
    return redirect(url_for("routes.index"))


# ---------- Registration ----------
@bp.get("/register")
def register_get():
    if getattr(g, "current_user", None):
        return redirect(url_for("routes.index"))
    return render_template("auth/register.html", errors=[], email="")


@bp.post("/register")
@rate_limited("register")
def register_post():
    email = accounts.normalize_email(request.form.get("email"))
    password = request.form.get("password") or ""
    password_confirm = request.form.get("password_confirm") or ""

    errors = []
    if not is_valid_email(email):
        errors.append("Invalid email format")
    pw_err = password_error(password)
    if pw_err:
        errors.append(pw_err)
    if password != password_confirm:
        errors.append("Passwords do not match")
    if errors:
        return render_template("auth/register.html", errors=errors, email=email), 422

    s = db_session()
    existing = accounts.find_user_by_email(s, email, include_deleted=True)
    if existing and existing.deleted_at is None:
        return render_template("auth/register.html", errors=["Email already registered"], email=email), 422
    if existing:
        accounts.restore_user(s, existing, existing)
        s.commit()
        flash("Your previous account has been restored with all your data. Please log in.", "success")
        return redirect(url_for("auth.login_get"))

    user = accounts.create_user(s, email, password)
    promo = best_active_promotion(s)
    if promo:
        accounts.apply_promotion(user, promo)
        current_app.logger.info("Applied promotion %s to new user %s", promo.id, user.id)
    token = accounts.issue_verification_token(user)
    s.commit()

    mail.deliver(mail.send_verification_email, user.email, token)
    session["verification_email"] = user.email
    return redirect(url_for("auth.verification_sent"))


@bp.get("/verification-sent")
def verification_sent():
    email = session.get("verification_email") or ""
    return render_template("auth/verification_sent.html", email=email)


@bp.post("/resend-verification")
@rate_limited("register")
def resend_verification():
    email = accounts.normalize_email(request.form.get("email") or session.get("verification_email"))
    s = db_session()
    user = accounts.find_user_by_email(s, email) if email else None
    if user is None and email:
        user = s.query(User).filter(User.pending_email == email).filter(User.deleted_at.is_(None)).one_or_none()

    if user and (not user.verified or user.pending_email):
        token = accounts.issue_verification_token(user)
        s.commit()
        if user.pending_email:
            mail.deliver(mail.send_email_change_verification, user.pending_email, token)
        else:
            mail.deliver(mail.send_verification_email, user.email, token)
    session["verification_email"] = email
    flash("A new verification email has been sent.", "success")
    return redirect(url_for("auth.verification_sent"))


@bp.get("/verify-email")
def verify_email():
    token = (request.args.get("token") or "").strip()
    s = db_session()
    user = accounts.find_user_by_verification_token(s, token)
    if not user:
        return render_template("errors/400.html", message="Invalid verification token"), 400
    if accounts.token_expired(user.verification_token_expiry):
        return render_template("errors/400.html", message="Verification link has expired"), 400

    if user.pending_email and accounts.find_user_by_email(s, user.pending_email, include_deleted=True):
        user.pending_email = None
        s.commit()
        return render_template("errors/400.html", message="Email already registered"), 400

    accounts.verify_email(user)
    record_event(s, actor=user, action="user.verify_email", entity_type="User", entity_id=str(user.id))
    s.commit()
    session.pop("verification_email", None)
    return redirect(url_for("auth.login_get", verified="true"))


# ---------- Password recovery ----------
@bp.get("/forgot-password")
def forgot_password_get():
    return render_template("auth/forgot_password.html", message=None)


@bp.post("/forgot-password")
@rate_limited("password_reset")
def forgot_password_post():
    email = accounts.normalize_email(request.form.get("email"))
    s = db_session()
    user = accounts.find_user_by_email(s, email) if is_valid_email(email) else None
    if user:
        token = accounts.issue_recovery_token(user)
        record_event(s, actor=user, action="auth.password_reset_requested", entity_type="User", entity_id=str(user.id))
        s.commit()
        mail.deliver(mail.send_password_reset_email, user.email, token)
    return render_template("auth/forgot_password.html", message=FORGOT_PASSWORD_MESSAGE)


@bp.get("/reset-password")
def reset_password_get():
    token = (request.args.get("token") or "").strip()
    s = db_session()
    user = accounts.find_user_by_recovery_token(s, token)
    if not user:
        return render_template("errors/400.html", message="Invalid recovery token"), 400
    if accounts.token_expired(user.recovery_token_expiry):
        return render_template("errors/400.html", message="Recovery link has expired"), 400
    return render_template("auth/reset_password.html", token=token, errors=[])


@bp.post("/reset-password")
@rate_limited("password_reset")
def reset_password_post():
    token = (request.form.get("token") or "").strip()
    password = request.form.get("password") or ""
    confirm = request.form.get("confirm_password") or ""

    s = db_session()
    user = accounts.find_user_by_recovery_token(s, token)
    if not user:
        return render_template("errors/400.html", message="Invalid recovery token"), 400
    if accounts.token_expired(user.recovery_token_expiry):
        return render_template("errors/400.html", message="Recovery link has expired"), 400

    errors = []
    pw_err = password_error(password)
    if pw_err:
        errors.append(pw_err)
    if password != confirm:
        errors.append("Passwords do not match")
    if errors:
        return render_template("auth/reset_password.html", token=token, errors=errors), 422

    accounts.set_password(user, password)
    accounts.clear_recovery_token(user)
    user.login_attempts = 0
    user.last_login_attempt = None
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=str(user.id))
    s.commit()

    flash("Your password has been reset. Please log in.", "success")
    return redirect(url_for("auth.login_get"))
