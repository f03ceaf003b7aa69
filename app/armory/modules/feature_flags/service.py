from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from functools import wraps
from typing import TYPE_CHECKING, Any

from flask import abort, g

from app.armory.audit import record_event
from app.armory.db import db_session
from app.armory.models import Role
from app.armory.modules.feature_flags.models import FeatureFlag, FeatureFlagRole
from app.armory.rbac import is_admin

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.armory.models import User


class FeatureFlagError(ValueError):
    pass


def get_flag_by_name(s: "Session", name: str) -> FeatureFlag | None:
    return s.query(FeatureFlag).filter(FeatureFlag.name == name).one_or_none()


def can_access_feature(s: "Session", user: "User | None", name: str) -> bool:
    flag = get_flag_by_name(s, name)
    if flag is None or not flag.enabled:
        return False
    if flag.public_access:
        return True
    if not flag.roles:
        return True
    if user is None or not user.is_active:
        return False
    held = set(user.role_keys)
    return any(r.role in held for r in flag.roles)


def require_feature(name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Gate a view on a feature flag; admins always pass."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = getattr(g, "current_user", None)
            if is_admin(user):
                return fn(*args, **kwargs)
            if not can_access_feature(db_session(), user, name):
                g.missing_permission = f"feature:{name}"
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def validate_flag_payload(payload: dict) -> list[str]:
    errors = []
    name = (payload.get("name") or "").strip()
    if not name:
        errors.append("Feature flag name is required")
    elif len(name) > 128:
        errors.append("Feature flag name cannot exceed 128 characters")
    return errors


def _flag(payload: dict, key: str) -> bool:
    return (payload.get(key) or "").strip().lower() in ("1", "true", "on", "yes")


def create_flag(s: "Session", payload: dict, user: "User") -> FeatureFlag:
    name = (payload.get("name") or "").strip()
    if get_flag_by_name(s, name):
        raise FeatureFlagError("A feature flag with that name already exists")
    now = datetime.utcnow()
    flag = FeatureFlag(
        name=name,
        enabled=_flag(payload, "enabled"),
        public_access=_flag(payload, "public_access"),
        description=(payload.get("description") or "").strip() or None,
        created_at=now,
        updated_at=now,
    )
    s.add(flag)
    s.flush()
    record_event(
        s,
        actor=user,
        action="feature_flag.create",
        entity_type="FeatureFlag",
        entity_id=str(flag.id),
        metadata={"name": flag.name, "enabled": flag.enabled},
    )
    return flag


def update_flag(s: "Session", flag: FeatureFlag, payload: dict, user: "User") -> FeatureFlag:
    name = (payload.get("name") or "").strip()
    clash = get_flag_by_name(s, name)
    if clash is not None and clash.id != flag.id:
        raise FeatureFlagError("A feature flag with that name already exists")
    changes = {}
    for field, new in (
        ("name", name),
        ("enabled", _flag(payload, "enabled")),
        ("public_access", _flag(payload, "public_access")),
        ("description", (payload.get("description") or "").strip() or None),
    ):
        old = getattr(flag, field)
        if old != new:
            changes[field] = {"old": old, "new": new}
            setattr(flag, field, new)
    flag.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="feature_flag.edit",
        entity_type="FeatureFlag",
        entity_id=str(flag.id),
        metadata={"name": flag.name, "changes": changes},
    )
    return flag


def delete_flag(s: "Session", flag: FeatureFlag, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="feature_flag.delete",
        entity_type="FeatureFlag",
        entity_id=str(flag.id),
        metadata={"name": flag.name},
    )
    s.delete(flag)


def add_role(s: "Session", flag: FeatureFlag, role_key: str, user: "User") -> bool:
    """Attach a role to the flag. Returns False when it was already attached."""
    role_key = (role_key or "").strip()
    if not role_key or s.query(Role).filter(Role.key == role_key).one_or_none() is None:
        raise FeatureFlagError("Role does not exist")
    if role_key in flag.role_keys:
        return False
    flag.roles.append(FeatureFlagRole(role=role_key))
    flag.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="feature_flag.add_role",
        entity_type="FeatureFlag",
        entity_id=str(flag.id),
        metadata={"role": role_key},
    )
    return True


def remove_role(s: "Session", flag: FeatureFlag, role_key: str, user: "User") -> bool:
    for assoc in list(flag.roles):
        if assoc.role == role_key:
            flag.roles.remove(assoc)
            flag.updated_at = datetime.utcnow()
            record_event(
                s,
                actor=user,
                action="feature_flag.remove_role",
                entity_type="FeatureFlag",
                entity_id=str(flag.id),
                metadata={"role": role_key},
            )
            return True
    return False
