from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.armory.audit import record_event
from app.armory.modules.promotions.models import Promotion

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.armory.models import User


PROMOTION_TYPES = ("free_trial", "discount", "extended_trial")


def parse_datetime(s: str | None) -> datetime | None:
    """Parse YYYY-MM-DD or YYYY-MM-DDTHH:MM (HTML date / datetime-local inputs)."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    for fmt in ("%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date: {s!r}")


def _active_query(s: "Session", now: datetime):
    return (
        s.query(Promotion)
        .filter(Promotion.deleted_at.is_(None))
        .filter(Promotion.active.is_(True))
        .filter(Promotion.start_date <= now)
        .filter(Promotion.end_date >= now)
    )


def best_active_promotion(s: "Session", now: datetime | None = None) -> Promotion | None:
    """Highest benefit_days wins; ties go to the promotion that ends first."""
    now = now or datetime.utcnow()
    return (
        _active_query(s, now)
        .order_by(Promotion.benefit_days.desc(), Promotion.end_date.asc())
        .first()
    )


def home_page_promotion(s: "Session", now: datetime | None = None) -> Promotion | None:
    now = now or datetime.utcnow()
    return (
        _active_query(s, now)
        .filter(Promotion.display_on_home.is_(True))
        .order_by(Promotion.benefit_days.desc(), Promotion.end_date.asc())
        .first()
    )


def validate_promotion_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Name is required")
    ptype = (payload.get("type") or "").strip()
    if ptype and ptype not in PROMOTION_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(PROMOTION_TYPES)}")

    start = end = None
    try:
        start = parse_datetime(payload.get("start_date"))
        end = parse_datetime(payload.get("end_date"))
    except ValueError:
        errors.append("Invalid date format, use YYYY-MM-DD")
    else:
        if start is None or end is None:
            errors.append("Start date and end date are required")
        elif end < start:
            errors.append("End date must be after start date")

    raw_days = (payload.get("benefit_days") or "0").strip()
    try:
        if int(raw_days) < 0:
            errors.append("Benefit days cannot be negative")
    except ValueError:
        errors.append("Benefit days must be a whole number")
    return errors


def _flag(payload: dict, key: str) -> bool:
    return (payload.get(key) or "").strip().lower() in ("1", "true", "on", "yes")


def create_promotion(s: "Session", payload: dict, user: "User") -> Promotion:
    now = datetime.utcnow()
    promo = Promotion(
        name=(payload.get("name") or "").strip(),
        type=(payload.get("type") or "free_trial").strip(),
        active=_flag(payload, "active"),
        start_date=parse_datetime(payload.get("start_date")),
        end_date=parse_datetime(payload.get("end_date")),
        benefit_days=int((payload.get("benefit_days") or "0").strip()),
        display_on_home=_flag(payload, "display_on_home"),
        description=(payload.get("description") or "").strip() or None,
        banner=(payload.get("banner") or "").strip() or None,
        created_at=now,
        updated_at=now,
    )
    s.add(promo)
    s.flush()
    record_event(
        s,
        actor=user,
        action="promotion.create",
        entity_type="Promotion",
        entity_id=str(promo.id),
        metadata={"name": promo.name, "benefit_days": promo.benefit_days},
    )
    return promo


def update_promotion(s: "Session", promo: Promotion, payload: dict, user: "User") -> Promotion:
    new_values = {
        "name": (payload.get("name") or "").strip(),
        "type": (payload.get("type") or promo.type).strip(),
        "active": _flag(payload, "active"),
        "start_date": parse_datetime(payload.get("start_date")),
        "end_date": parse_datetime(payload.get("end_date")),
        "benefit_days": int((payload.get("benefit_days") or "0").strip()),
        "display_on_home": _flag(payload, "display_on_home"),
        "description": (payload.get("description") or "").strip() or None,
        "banner": (payload.get("banner") or "").strip() or None,
    }
    changes = {}
    for field, new in new_values.items():
        old = getattr(promo, field)
        if new != old:
            changes[field] = {"old": str(old), "new": str(new)}
            setattr(promo, field, new)
    promo.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="promotion.edit",
        entity_type="Promotion",
        entity_id=str(promo.id),
        metadata={"name": promo.name, "changes": changes},
    )
    return promo


def delete_promotion(s: "Session", promo: Promotion, user: "User") -> None:
    promo.deleted_at = datetime.utcnow()
    record_event(s, actor=user, action="promotion.delete", entity_type="Promotion", entity_id=str(promo.id))
