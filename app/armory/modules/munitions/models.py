from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.armory.models import Base

if TYPE_CHECKING:
    from app.armory.models import User
    from app.armory.modules.reference.models import Brand, BulletStyle, Caliber, Casing, Grain


class Ammo(Base):
    __tablename__ = "ammo"
    __table_args__ = (
        Index("idx_ammo_owner_id", "owner_id"),
        Index("idx_ammo_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    acquired: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid: Mapped[float | None] = mapped_column(Float, nullable=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expended: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    brand_id: Mapped[int] = mapped_column(ForeignKey("brands.id"), nullable=False)
    caliber_id: Mapped[int] = mapped_column(ForeignKey("calibers.id"), nullable=False)
    bullet_style_id: Mapped[int | None] = mapped_column(ForeignKey("bullet_styles.id"), nullable=True)
    grain_id: Mapped[int | None] = mapped_column(ForeignKey("grains.id"), nullable=True)
    casing_id: Mapped[int | None] = mapped_column(ForeignKey("casings.id"), nullable=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    brand: Mapped["Brand"] = relationship(lazy="selectin")
    caliber: Mapped["Caliber"] = relationship(lazy="selectin")
    bullet_style: Mapped["BulletStyle | None"] = relationship(lazy="selectin")
    grain: Mapped["Grain | None"] = relationship(lazy="selectin")
    casing: Mapped["Casing | None"] = relationship(lazy="selectin")
    owner: Mapped["User"] = relationship(lazy="selectin")

    @property
    def remaining(self) -> int:
        return max((self.count or 0) - (self.expended or 0), 0)
