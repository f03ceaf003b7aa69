from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, flash, g, redirect, request, url_for

from app.armory.models import User

LOGIN_REQUIRED_MESSAGE = "You must be logged in to access this page"


def permission_matches(granted: str, wanted: str) -> bool:
    """`*` grants everything; `calibers.*` grants every calibers action."""
    if granted == "*" or granted == wanted:
        return True
    if granted.endswith(".*"):
        return wanted.split(".", 1)[0] == granted[:-2]
    return False


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if permission_matches(perm.key, permission_key):
                return True
    return False


def is_admin(user: User | None) -> bool:
    if not user or not user.is_active:
        return False
    return "admin" in user.role_keys or user_has_permission(user, "*")


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    flash(LOGIN_REQUIRED_MESSAGE, "danger")
    return redirect(url_for("auth.login_get", next=nxt))


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login
            if not user or not user.is_active:
                return _login_redirect()
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
