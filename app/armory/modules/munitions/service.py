from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.armory.audit import record_event
from app.armory.constants import FREE_TIER_AMMO_LIMIT
from app.armory.modules.arsenal.service import parse_acquired, parse_fk, parse_price
from app.armory.modules.munitions.models import Ammo
from app.armory.modules.reference.models import Brand, Caliber
from app.armory.modules.reference.service import KINDS, exists_active
from app.armory.utils import ListParams, Page, paginate

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.armory.models import User


AMMO_SORT_FIELDS = ("name", "created_at", "acquired", "count", "brand", "caliber")
MAX_NAME_LEN = 100


def _parse_count(raw: str | None, label: str, errors: list[str]) -> int:
    raw = (raw or "").strip()
    if not raw:
        return 0
    try:
        value = int(raw)
    except ValueError:
        errors.append(f"{label} must be a whole number")
        return 0
    if value < 0:
        errors.append(f"{label} cannot be negative")
    return value


def validate_ammo_payload(s: "Session", payload: dict) -> tuple[dict[str, Any], list[str]]:
    errors: list[str] = []
    name = (payload.get("name") or "").strip()
    if not name:
        errors.append("Name is required")
    elif len(name) > MAX_NAME_LEN:
        errors.append(f"Name cannot exceed {MAX_NAME_LEN} characters")

    count = _parse_count(payload.get("count"), "Count", errors)
    expended = _parse_count(payload.get("expended"), "Expended", errors)
    if count >= 0 and expended > count:
        errors.append("Expended cannot exceed count")

    values: dict[str, Any] = {
        "name": name,
        "acquired": parse_acquired(payload.get("acquired"), errors),
        "paid": parse_price(payload.get("paid"), errors),
        "count": count,
        "expended": expended,
    }

    for field, slug, label, required in (
        ("brand_id", "brands", "brand", True),
        ("caliber_id", "calibers", "caliber", True),
        ("bullet_style_id", "bullet_styles", "bullet style", False),
        ("grain_id", "grains", "grain", False),
        ("casing_id", "casings", "casing", False),
    ):
        fk = parse_fk(payload.get(field))
        if fk is None and not required:
            values[field] = None
            continue
        if not exists_active(s, KINDS[slug], fk):
            errors.append(f"Valid {label} is required")
        values[field] = fk
    return values, errors


# ---------- Queries ----------
def _owned(s: "Session", owner_id: int):
    return s.query(Ammo).filter(Ammo.owner_id == owner_id).filter(Ammo.deleted_at.is_(None))


def count_ammo(s: "Session", owner_id: int) -> int:
    return _owned(s, owner_id).count()


def get_owned_ammo(s: "Session", owner: "User", ammo_id: int) -> Ammo | None:
    return _owned(s, owner.id).filter(Ammo.id == ammo_id).one_or_none()


def visible_ammo_ids(s: "Session", owner_id: int, limit: int = FREE_TIER_AMMO_LIMIT) -> list[int]:
    rows = _owned(s, owner_id).with_entities(Ammo.id).order_by(Ammo.created_at.asc(), Ammo.id.asc()).limit(limit).all()
    return [r[0] for r in rows]


def ammo_page(s: "Session", owner_id: int, params: ListParams, *, only_ids: list[int] | None = None) -> Page:
    q = _owned(s, owner_id)
    if only_ids is not None:
        q = q.filter(Ammo.id.in_(only_ids))
    if params.search:
        q = q.filter(Ammo.name.ilike(f"%{params.search}%"))

    if params.sort_by == "brand":
        q = q.join(Brand, Ammo.brand_id == Brand.id)
        col = Brand.name
    elif params.sort_by == "caliber":
        q = q.join(Caliber, Ammo.caliber_id == Caliber.id)
        col = Caliber.caliber
    else:
        col = getattr(Ammo, params.sort_by)
    q = q.order_by(col.desc() if params.sort_order == "desc" else col.asc(), Ammo.id.asc())
    return paginate(q, params)


def ammo_totals(s: "Session", owner_id: int) -> dict[str, float | int]:
    """Item count, rounds on hand, rounds expended and money spent."""
    row = _owned(s, owner_id).with_entities(
        func.count(Ammo.id),
        func.coalesce(func.sum(Ammo.count), 0),
        func.coalesce(func.sum(Ammo.expended), 0),
        func.coalesce(func.sum(Ammo.paid), 0),
    ).one()
    return {
        "items": int(row[0] or 0),
        "rounds": int(row[1] or 0),
        "expended": int(row[2] or 0),
        "paid": float(row[3] or 0),
    }


# ---------- Mutations ----------
def create_ammo(s: "Session", values: dict[str, Any], owner: "User") -> Ammo:
    now = datetime.utcnow()
    ammo = Ammo(**values, owner_id=owner.id, created_at=now, updated_at=now)
    s.add(ammo)
    s.flush()
    record_event(
        s,
        actor=owner,
        action="ammo.create",
        entity_type="Ammo",
        entity_id=str(ammo.id),
        metadata={"name": ammo.name, "count": ammo.count},
    )
    return ammo


def update_ammo(s: "Session", ammo: Ammo, values: dict[str, Any], owner: "User") -> Ammo:
    changes = {}
    for field, new in values.items():
        old = getattr(ammo, field)
        if new != old:
            changes[field] = {"old": str(old), "new": str(new)}
            setattr(ammo, field, new)
    ammo.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=owner,
        action="ammo.edit",
        entity_type="Ammo",
        entity_id=str(ammo.id),
        metadata={"name": ammo.name, "changes": changes},
    )
    return ammo


def delete_ammo(s: "Session", ammo: Ammo, owner: "User") -> None:
    ammo.deleted_at = datetime.utcnow()
    record_event(s, actor=owner, action="ammo.delete", entity_type="Ammo", entity_id=str(ammo.id), metadata={"name": ammo.name})
