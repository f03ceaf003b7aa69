from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.armory.audit import record_event
from app.armory.constants import FREE_TIER_GUN_LIMIT
from app.armory.modules.arsenal.models import Gun
from app.armory.modules.reference.models import Caliber, Manufacturer, WeaponType
from app.armory.modules.reference.service import KINDS, exists_active
from app.armory.utils import ListParams, Page, paginate, parse_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.armory.models import User


GUN_SORT_FIELDS = ("name", "created_at", "acquired", "manufacturer", "caliber", "weapon_type")
MAX_TEXT_LEN = 100

INVALID_DATE = "Invalid date format, use YYYY-MM-DD"
FUTURE_DATE = "Acquisition date cannot be in the future"
INVALID_AMOUNT = "Invalid amount format, use numbers only (e.g. 1500.50)"
NEGATIVE_PRICE = "Price cannot be negative"


def parse_acquired(raw: str | None, errors: list[str], today: date | None = None) -> date | None:
    try:
        acquired = parse_date(raw)
    except ValueError:
        errors.append(INVALID_DATE)
        return None
    if acquired and acquired > (today or date.today()):
        errors.append(FUTURE_DATE)
    return acquired


def parse_price(raw: str | None, errors: list[str]) -> float | None:
    raw = (raw or "").strip().replace(",", "").lstrip("$")
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        errors.append(INVALID_AMOUNT)
        return None
    if value < 0:
        errors.append(NEGATIVE_PRICE)
    return value


def parse_fk(raw: str | None) -> int | None:
    try:
        value = int((raw or "").strip())
    except ValueError:
        return None
    return value if value > 0 else None


def _text(payload: dict, key: str, label: str, errors: list[str]) -> str | None:
    value = (payload.get(key) or "").strip()
    if len(value) > MAX_TEXT_LEN:
        errors.append(f"{label} cannot exceed {MAX_TEXT_LEN} characters")
    return value or None


def validate_gun_payload(s: "Session", payload: dict) -> tuple[dict[str, Any], list[str]]:
    """Validate the gun form. Returns (column values, errors)."""
    errors: list[str] = []
    name = (payload.get("name") or "").strip()
    if not name:
        errors.append("Name is required")
    elif len(name) > MAX_TEXT_LEN:
        errors.append(f"Name cannot exceed {MAX_TEXT_LEN} characters")

    values: dict[str, Any] = {
        "name": name,
        "serial_number": _text(payload, "serial_number", "Serial number", errors),
        "purpose": _text(payload, "purpose", "Purpose", errors),
        "finish": _text(payload, "finish", "Finish", errors),
        "acquired": parse_acquired(payload.get("acquired"), errors),
        "paid": parse_price(payload.get("paid"), errors),
    }

    for field, slug, label in (
        ("weapon_type_id", "weapon_types", "weapon type"),
        ("caliber_id", "calibers", "caliber"),
        ("manufacturer_id", "manufacturers", "manufacturer"),
    ):
        fk = parse_fk(payload.get(field))
        if not exists_active(s, KINDS[slug], fk):
            errors.append(f"Valid {label} is required")
        values[field] = fk
    return values, errors


# ---------- Queries ----------
def _owned(s: "Session", owner_id: int):
    return s.query(Gun).filter(Gun.owner_id == owner_id).filter(Gun.deleted_at.is_(None))


def count_guns(s: "Session", owner_id: int) -> int:
    return _owned(s, owner_id).count()


def get_owned_gun(s: "Session", owner: "User", gun_id: int) -> Gun | None:
    return _owned(s, owner.id).filter(Gun.id == gun_id).one_or_none()


def visible_gun_ids(s: "Session", owner_id: int, limit: int = FREE_TIER_GUN_LIMIT) -> list[int]:
    """Free accounts only see their oldest guns."""
    rows = _owned(s, owner_id).with_entities(Gun.id).order_by(Gun.created_at.asc(), Gun.id.asc()).limit(limit).all()
    return [r[0] for r in rows]


def gun_page(s: "Session", owner_id: int, params: ListParams, *, only_ids: list[int] | None = None) -> Page:
    q = _owned(s, owner_id)
    if only_ids is not None:
        q = q.filter(Gun.id.in_(only_ids))
    if params.search:
        q = q.filter(Gun.name.ilike(f"%{params.search}%"))

    if params.sort_by == "manufacturer":
        q = q.join(Manufacturer, Gun.manufacturer_id == Manufacturer.id)
        col = Manufacturer.name
    elif params.sort_by == "caliber":
        q = q.join(Caliber, Gun.caliber_id == Caliber.id)
        col = Caliber.caliber
    elif params.sort_by == "weapon_type":
        q = q.join(WeaponType, Gun.weapon_type_id == WeaponType.id)
        col = WeaponType.type
    else:
        col = getattr(Gun, params.sort_by)
    q = q.order_by(col.desc() if params.sort_order == "desc" else col.asc(), Gun.id.asc())
    return paginate(q, params)


def total_paid(s: "Session", owner_id: int) -> float:
    return float(_owned(s, owner_id).with_entities(func.coalesce(func.sum(Gun.paid), 0)).scalar() or 0)


# ---------- Mutations ----------
def create_gun(s: "Session", values: dict[str, Any], owner: "User") -> Gun:
    now = datetime.utcnow()
    gun = Gun(**values, owner_id=owner.id, created_at=now, updated_at=now)
    s.add(gun)
    s.flush()
    record_event(
        s,
        actor=owner,
        action="gun.create",
        entity_type="Gun",
        entity_id=str(gun.id),
        metadata={"name": gun.name},
    )
    return gun


def update_gun(s: "Session", gun: Gun, values: dict[str, Any], owner: "User") -> Gun:
    changes = {}
    for field, new in values.items():
        old = getattr(gun, field)
        if new != old:
            changes[field] = {"old": str(old), "new": str(new)}
            setattr(gun, field, new)
    gun.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=owner,
        action="gun.edit",
        entity_type="Gun",
        entity_id=str(gun.id),
        metadata={"name": gun.name, "changes": changes},
    )
    return gun


def delete_gun(s: "Session", gun: Gun, owner: "User") -> None:
    gun.deleted_at = datetime.utcnow()
    record_event(s, actor=owner, action="gun.delete", entity_type="Gun", entity_id=str(gun.id), metadata={"name": gun.name})
