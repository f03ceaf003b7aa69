import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, render_template, request, session

from app.armory.admin import bp as admin_bp
from app.armory.auth import bp as auth_bp, load_current_user
from app.armory.config import load_config
from app.armory.db import db_session, init_db, teardown_db_session
from app.armory.modules.arsenal.routes import bp as arsenal_bp
from app.armory.modules.feature_flags.admin import bp as feature_flags_bp
from app.armory.modules.munitions.routes import bp as munitions_bp
from app.armory.modules.payments.routes import bp as payments_bp
from app.armory.modules.payments.service import WebhookMonitor
from app.armory.modules.permissions.admin import bp as permissions_bp
from app.armory.modules.profile.routes import bp as profile_bp
from app.armory.modules.promotions.admin import bp as promotions_bp
from app.armory.modules.reference.admin import bp as reference_bp
from app.armory.ratelimit import init_rate_limiting
from app.armory.routes import bp as routes_bp
from app.armory.security import ensure_csrf_token, validate_csrf

logger = logging.getLogger(__name__)

# Stripe signs webhooks itself; everything else needs the session token
CSRF_EXEMPT_ENDPOINTS = ("payments.webhook",)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=7)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.armory.modules.feature_flags.service import can_access_feature
        from app.armory.rbac import is_admin, user_has_permission

        user = getattr(g, "current_user", None)

        def has_perm(key: str) -> bool:
            return user_has_permission(user, key)

        def feature_enabled(name: str) -> bool:
            return is_admin(user) or can_access_feature(db_session(), user, name)

        return {
            "current_user": user,
            "has_perm": has_perm,
            "is_admin": is_admin(user),
            "feature_enabled": feature_enabled,
        }

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("money")
    def _money_filter(value) -> str:
        return f"${(value or 0):,.2f}"

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if (request.endpoint or "") in CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("STRIPE_WEBHOOK_SECRET"):
            app.logger.error("STRIPE_WEBHOOK_SECRET is not set; every webhook will be rejected")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    init_rate_limiting(app)
    app.extensions["webhook_monitor"] = WebhookMonitor()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(arsenal_bp)
    app.register_blueprint(munitions_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(reference_bp, url_prefix="/admin")
    app.register_blueprint(promotions_bp, url_prefix="/admin")
    app.register_blueprint(feature_flags_bp, url_prefix="/admin")
    app.register_blueprint(permissions_bp, url_prefix="/admin/permissions")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(401)
    def _err_401(e):  # type: ignore[no-redef]
        return render_template("errors/401.html"), 401

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    logger.info("create_app() complete; app ready to serve")

    return app
