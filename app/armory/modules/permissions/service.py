from __future__ import annotations

from typing import TYPE_CHECKING

from app.armory.audit import record_event
from app.armory.models import Permission, Role, User
from app.armory.modules.reference.service import KINDS

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

CRUD_ACTIONS = ("read", "create", "update", "delete")

# resource -> actions that views check for
PERMISSION_CATALOG: dict[str, tuple[str, ...]] = {
    "admin": ("view",),
    "users": ("manage",),
    "payments": ("read",),
    "permissions": ("manage",),
    "promotions": CRUD_ACTIONS,
    "feature_flags": CRUD_ACTIONS,
    **{slug: CRUD_ACTIONS for slug in KINDS},
}

DEFAULT_POLICIES: dict[str, tuple[str, list[str]]] = {
    "admin": ("Administrator", ["*"]),
    "editor": (
        "Editor",
        [
            "manufacturers.read",
            "manufacturers.create",
            "manufacturers.update",
            "calibers.read",
            "calibers.create",
            "calibers.update",
            "weapon_types.read",
            "weapon_types.create",
            "weapon_types.update",
            "promotions.read",
            "feature_flags.read",
            "feature_flags.update",
        ],
    ),
    "viewer": (
        "Viewer",
        [
            "manufacturers.read",
            "calibers.read",
            "weapon_types.read",
            "feature_flags.read",
        ],
    ),
}

PROTECTED_ROLES = ("admin",)


class PermissionsError(ValueError):
    pass


def all_permission_keys() -> list[str]:
    keys = ["*"]
    for resource, actions in PERMISSION_CATALOG.items():
        keys.append(f"{resource}.*")
        keys.extend(f"{resource}.{a}" for a in actions)
    return keys


def parse_permission_inputs(raw: list[str]) -> list[str]:
    """Form values arrive as `resource:action`; stored keys are `resource.action`."""
    keys: list[str] = []
    for item in raw:
        item = (item or "").strip()
        if not item:
            continue
        key = "*" if item == "*" else item.replace(":", ".", 1)
        if key not in keys:
            keys.append(key)
    return keys


def ensure_perm(s: "Session", key: str, name: str | None = None) -> Permission:
    perm = s.query(Permission).filter(Permission.key == key).one_or_none()
    if perm:
        return perm
    perm = Permission(key=key, name=name or key)
    s.add(perm)
    s.flush()
    return perm


def get_role(s: "Session", key: str) -> Role | None:
    return s.query(Role).filter(Role.key == key).one_or_none()


def _set_permissions(s: "Session", role: Role, keys: list[str]) -> None:
    role.permissions = [ensure_perm(s, k) for k in keys]


def create_role(s: "Session", key: str, name: str, permission_keys: list[str], actor: User) -> Role:
    key = (key or "").strip().lower()
    name = (name or "").strip() or key
    if not key:
        raise PermissionsError("Role name is required")
    if get_role(s, key):
        raise PermissionsError("Role already exists")
    role = Role(key=key, name=name)
    s.add(role)
    s.flush()
    _set_permissions(s, role, permission_keys)
    record_event(
        s,
        actor=actor,
        action="role.create",
        entity_type="Role",
        entity_id=role.key,
        metadata={"permissions": permission_keys},
    )
    return role


def update_role(s: "Session", role: Role, name: str, permission_keys: list[str], actor: User) -> Role:
    before = sorted(p.key for p in role.permissions)
    role.name = (name or "").strip() or role.name
    _set_permissions(s, role, permission_keys)
    record_event(
        s,
        actor=actor,
        action="role.update",
        entity_type="Role",
        entity_id=role.key,
        metadata={"permissions": {"old": before, "new": sorted(permission_keys)}},
    )
    return role


def delete_role(s: "Session", role: Role, actor: User) -> None:
    if role.key in PROTECTED_ROLES:
        raise PermissionsError("The admin role cannot be deleted")
    record_event(s, actor=actor, action="role.delete", entity_type="Role", entity_id=role.key)
    s.delete(role)


def assign_role(s: "Session", user_id: str | int | None, role_key: str | None, actor: User) -> User:
    role_key = (role_key or "").strip()
    if not user_id or not role_key:
        raise PermissionsError("User and role are required")
    try:
        user = s.get(User, int(user_id))
    except (TypeError, ValueError):
        user = None
    if user is None or not user.is_active:
        raise PermissionsError("User not found")
    role = get_role(s, role_key)
    if role is None:
        raise PermissionsError("Role does not exist")
    if role in user.roles:
        raise PermissionsError("User already has this role")
    user.roles.append(role)
    record_event(
        s,
        actor=actor,
        action="user.assign_role",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"role": role.key},
    )
    return user


def remove_user_role(s: "Session", user_id: str | int | None, role_key: str | None, actor: User) -> User:
    role_key = (role_key or "").strip()
    if not user_id or not role_key:
        raise PermissionsError("User and role are required")
    try:
        user = s.get(User, int(user_id))
    except (TypeError, ValueError):
        user = None
    if user is None:
        raise PermissionsError("User not found")
    role = get_role(s, role_key)
    if role is None or role not in user.roles:
        raise PermissionsError("User does not have this role")
    user.roles.remove(role)
    record_event(
        s,
        actor=actor,
        action="user.remove_role",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"role": role.key},
    )
    return user


def import_default_policies(s: "Session", actor: User | None = None) -> list[str]:
    """Create missing default roles and merge in their default permissions. Returns keys touched."""
    touched: list[str] = []
    for key, (name, perm_keys) in DEFAULT_POLICIES.items():
        role = get_role(s, key)
        if role is None:
            role = Role(key=key, name=name)
            s.add(role)
            s.flush()
        have = {p.key for p in role.permissions}
        missing = [k for k in perm_keys if k not in have]
        for k in missing:
            role.permissions.append(ensure_perm(s, k))
        if missing:
            touched.append(key)
    if actor is not None:
        record_event(
            s,
            actor=actor,
            action="permissions.import_defaults",
            entity_type="Role",
            metadata={"roles": touched},
        )
    return touched
