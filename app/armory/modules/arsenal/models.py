from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.armory.models import Base

if TYPE_CHECKING:
    from app.armory.models import User
    from app.armory.modules.reference.models import Caliber, Manufacturer, WeaponType


class Gun(Base):
    __tablename__ = "guns"
    __table_args__ = (
        Index("idx_guns_owner_id", "owner_id"),
        Index("idx_guns_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    purpose: Mapped[str | None] = mapped_column(String(100), nullable=True)
    finish: Mapped[str | None] = mapped_column(String(100), nullable=True)
    acquired: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid: Mapped[float | None] = mapped_column(Float, nullable=True)

    weapon_type_id: Mapped[int] = mapped_column(ForeignKey("weapon_types.id"), nullable=False)
    caliber_id: Mapped[int] = mapped_column(ForeignKey("calibers.id"), nullable=False)
    manufacturer_id: Mapped[int] = mapped_column(ForeignKey("manufacturers.id"), nullable=False)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    weapon_type: Mapped["WeaponType"] = relationship(lazy="selectin")
    caliber: Mapped["Caliber"] = relationship(lazy="selectin")
    manufacturer: Mapped["Manufacturer"] = relationship(lazy="selectin")
    owner: Mapped["User"] = relationship(lazy="selectin")
