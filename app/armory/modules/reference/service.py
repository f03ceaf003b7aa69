"""
Reference data shared by every owner: manufacturers, calibers, weapon types,
brands, bullet styles, grains and casings.

Each kind is described by a `ReferenceKind`; the admin screens and the owner
dropdowns are driven from that description rather than per-kind code.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.armory.audit import record_event
from app.armory.modules.reference.models import (
    Brand,
    BulletStyle,
    Caliber,
    Casing,
    Grain,
    Manufacturer,
    WeaponType,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.armory.models import User


@dataclass(frozen=True)
class FieldSpec:
    name: str
    label: str
    kind: str = "str"  # str | int
    required: bool = False
    max_len: int | None = None


@dataclass(frozen=True)
class ReferenceKind:
    slug: str
    model: Any
    singular: str
    plural: str
    key_field: str
    fields: tuple[FieldSpec, ...]

    @property
    def key_label(self) -> str:
        for f in self.fields:
            if f.name == self.key_field:
                return f.label
        return self.key_field

    @property
    def entity_type(self) -> str:
        return self.model.__name__


_POPULARITY = FieldSpec("popularity", "Popularity", kind="int")

KINDS: dict[str, ReferenceKind] = {
    k.slug: k
    for k in (
        ReferenceKind(
            slug="manufacturers",
            model=Manufacturer,
            singular="Manufacturer",
            plural="Manufacturers",
            key_field="name",
            fields=(
                FieldSpec("name", "Name", required=True, max_len=100),
                FieldSpec("nickname", "Nickname", max_len=50),
                FieldSpec("country", "Country", required=True, max_len=100),
                _POPULARITY,
            ),
        ),
        ReferenceKind(
            slug="calibers",
            model=Caliber,
            singular="Caliber",
            plural="Calibers",
            key_field="caliber",
            fields=(
                FieldSpec("caliber", "Caliber", required=True, max_len=100),
                FieldSpec("nickname", "Nickname", max_len=50),
                _POPULARITY,
            ),
        ),
        ReferenceKind(
            slug="weapon_types",
            model=WeaponType,
            singular="Weapon Type",
            plural="Weapon Types",
            key_field="type",
            fields=(
                FieldSpec("type", "Type", required=True, max_len=100),
                FieldSpec("nickname", "Nickname", max_len=50),
                _POPULARITY,
            ),
        ),
        ReferenceKind(
            slug="brands",
            model=Brand,
            singular="Brand",
            plural="Brands",
            key_field="name",
            fields=(
                FieldSpec("name", "Name", required=True, max_len=100),
                FieldSpec("nickname", "Nickname", max_len=50),
                _POPULARITY,
            ),
        ),
        ReferenceKind(
            slug="bullet_styles",
            model=BulletStyle,
            singular="Bullet Style",
            plural="Bullet Styles",
            key_field="type",
            fields=(
                FieldSpec("type", "Type", required=True, max_len=100),
                FieldSpec("nickname", "Nickname", max_len=50),
                _POPULARITY,
            ),
        ),
        ReferenceKind(
            slug="grains",
            model=Grain,
            singular="Grain",
            plural="Grains",
            key_field="weight",
            fields=(
                FieldSpec("weight", "Weight", kind="int", required=True),
                _POPULARITY,
            ),
        ),
        ReferenceKind(
            slug="casings",
            model=Casing,
            singular="Casing",
            plural="Casings",
            key_field="type",
            fields=(
                FieldSpec("type", "Type", required=True, max_len=50),
                _POPULARITY,
            ),
        ),
    )
}


def get_kind(slug: str) -> ReferenceKind | None:
    return KINDS.get(slug)


def _active(s: "Session", kind: ReferenceKind):
    return s.query(kind.model).filter(kind.model.deleted_at.is_(None))


def dropdown_options(s: "Session", kind: ReferenceKind) -> list:
    """Most popular first, then alphabetical."""
    key_col = getattr(kind.model, kind.key_field)
    return _active(s, kind).order_by(kind.model.popularity.desc(), key_col.asc()).all()


def list_records(s: "Session", kind: ReferenceKind, search: str = "") -> list:
    q = _active(s, kind)
    key_col = getattr(kind.model, kind.key_field)
    if search and kind.fields[0].kind == "str":
        q = q.filter(key_col.ilike(f"%{search}%"))
    return q.order_by(key_col.asc()).all()


def get_record(s: "Session", kind: ReferenceKind, record_id: int):
    return _active(s, kind).filter(kind.model.id == record_id).one_or_none()


def exists_active(s: "Session", kind: ReferenceKind, record_id: int | None) -> bool:
    if not record_id:
        return False
    return get_record(s, kind, record_id) is not None


def clean_payload(kind: ReferenceKind, payload: dict) -> tuple[dict[str, Any], list[str]]:
    """Coerce form strings into column values; returns (values, errors)."""
    values: dict[str, Any] = {}
    errors: list[str] = []
    for f in kind.fields:
        raw = (payload.get(f.name) or "").strip()
        if f.kind == "int":
            if raw == "":
                if f.required:
                    errors.append(f"{f.label} is required")
                values[f.name] = 0
                continue
            try:
                value = int(raw)
            except ValueError:
                errors.append(f"{f.label} must be a whole number")
                continue
            if value < 0:
                errors.append(f"{f.label} cannot be negative")
                continue
            values[f.name] = value
        else:
            if f.required and not raw:
                errors.append(f"{f.label} is required")
                continue
            if f.max_len and len(raw) > f.max_len:
                errors.append(f"{f.label} cannot exceed {f.max_len} characters")
                continue
            values[f.name] = raw or None
    return values, errors


def create_record(s: "Session", kind: ReferenceKind, payload: dict, user: "User") -> tuple[Any, list[str]]:
    """
    Create a record. A soft-deleted record with the same key is restored and
    updated in place instead of violating the unique constraint.
    """
    values, errors = clean_payload(kind, payload)
    if errors:
        return None, errors

    key_col = getattr(kind.model, kind.key_field)
    existing = s.query(kind.model).filter(key_col == values[kind.key_field]).one_or_none()
    now = datetime.utcnow()
    if existing is not None and existing.deleted_at is None:
        return None, [f"A {kind.singular.lower()} with that {kind.key_label.lower()} already exists"]

    if existing is not None:
        for k, v in values.items():
            setattr(existing, k, v)
        existing.deleted_at = None
        existing.updated_at = now
        record = existing
        action = "restore"
    else:
        record = kind.model(**values, created_at=now, updated_at=now)
        s.add(record)
        action = "create"
    s.flush()
    record_event(
        s,
        actor=user,
        action=f"{kind.slug}.{action}",
        entity_type=kind.entity_type,
        entity_id=str(record.id),
        metadata={k: v for k, v in values.items()},
    )
    return record, []


def update_record(s: "Session", kind: ReferenceKind, record, payload: dict, user: "User") -> list[str]:
    values, errors = clean_payload(kind, payload)
    if errors:
        return errors

    key_col = getattr(kind.model, kind.key_field)
    clash = (
        s.query(kind.model)
        .filter(key_col == values[kind.key_field])
        .filter(kind.model.id != record.id)
        .one_or_none()
    )
    if clash is not None:
        return [f"A {kind.singular.lower()} with that {kind.key_label.lower()} already exists"]

    changes = {}
    for k, v in values.items():
        old = getattr(record, k)
        if old != v:
            changes[k] = {"old": old, "new": v}
            setattr(record, k, v)
    record.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action=f"{kind.slug}.edit",
        entity_type=kind.entity_type,
        entity_id=str(record.id),
        metadata={"changes": changes},
    )
    return []


def delete_record(s: "Session", kind: ReferenceKind, record, user: "User") -> None:
    record.deleted_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action=f"{kind.slug}.delete",
        entity_type=kind.entity_type,
        entity_id=str(record.id),
        metadata={"name": record.display_name},
    )


def search_calibers(s: "Session", term: str, limit: int = 20) -> list[Caliber]:
    q = s.query(Caliber).filter(Caliber.deleted_at.is_(None))
    if term:
        like = f"%{term}%"
        q = q.filter(Caliber.caliber.ilike(like) | Caliber.nickname.ilike(like))
    return q.order_by(Caliber.popularity.desc(), Caliber.caliber.asc()).limit(limit).all()
