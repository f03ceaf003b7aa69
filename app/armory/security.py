import base64
import secrets
from urllib.parse import urlsplit

from flask import session, Request


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from form, header, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")

    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        token = json_data.get("csrf_token")

    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


def generate_token() -> str:
    """32 random bytes, URL-safe base64 (used for verification and recovery links)."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("ascii")


def is_safe_next(nxt: str | None) -> bool:
    """Only allow local paths to avoid open redirects."""
    if not nxt:
        return False
    # browsers treat a backslash as a slash, so "/\host" is protocol-relative
    parts = urlsplit(nxt.replace("\\", "/"))
    return not parts.scheme and not parts.netloc and parts.path.startswith("/")
