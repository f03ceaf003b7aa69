import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    app_base_url: str

    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_price_monthly: str
    stripe_price_yearly: str
    stripe_price_lifetime: str
    stripe_price_premium_lifetime: str

    mailjet_api_key: str
    mailjet_secret_key: str
    mailjet_sender_email: str
    mailjet_sender_name: str
    admin_email: str

    rate_limit_enabled: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///armory.db"),
        app_base_url=_getenv("APP_BASE_URL", "http://localhost:8080").rstrip("/"),
        stripe_secret_key=_getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=_getenv("STRIPE_WEBHOOK_SECRET", ""),
        stripe_price_monthly=_getenv("STRIPE_PRICE_MONTHLY", ""),
        stripe_price_yearly=_getenv("STRIPE_PRICE_YEARLY", ""),
        stripe_price_lifetime=_getenv("STRIPE_PRICE_LIFETIME", ""),
        stripe_price_premium_lifetime=_getenv("STRIPE_PRICE_PREMIUM_LIFETIME", ""),
        mailjet_api_key=_getenv("MAILJET_API_KEY", ""),
        mailjet_secret_key=_getenv("MAILJET_SECRET_KEY", ""),
        mailjet_sender_email=_getenv("MAILJET_SENDER_EMAIL", ""),
        mailjet_sender_name=_getenv("MAILJET_SENDER_NAME", "The Virtual Armory"),
        admin_email=_getenv("ADMIN_EMAIL", ""),
        rate_limit_enabled=_getenv("RATE_LIMIT_ENABLED", "1") not in ("0", "false", "no"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "APP_BASE_URL": s.app_base_url,
        "STRIPE_SECRET_KEY": s.stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": s.stripe_webhook_secret,
        # product ids per paid tier
        "STRIPE_PRODUCTS": {
            "monthly": s.stripe_price_monthly,
            "yearly": s.stripe_price_yearly,
            "lifetime": s.stripe_price_lifetime,
            "premium_lifetime": s.stripe_price_premium_lifetime,
        },
        "MAILJET_API_KEY": s.mailjet_api_key,
        "MAILJET_SECRET_KEY": s.mailjet_secret_key,
        "MAILJET_SENDER_EMAIL": s.mailjet_sender_email,
        "MAILJET_SENDER_NAME": s.mailjet_sender_name,
        "ADMIN_EMAIL": s.admin_email,
        "RATE_LIMIT_ENABLED": s.rate_limit_enabled,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
