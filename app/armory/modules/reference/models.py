from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.armory.models import Base


class Manufacturer(Base):
    __tablename__ = "manufacturers"
    __table_args__ = (Index("idx_manufacturers_popularity", "popularity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    nickname: Mapped[str | None] = mapped_column(String(50), nullable=True)
    country: Mapped[str] = mapped_column(String(100), nullable=False)
    popularity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    @property
    def display_name(self) -> str:
        return self.name


class Caliber(Base):
    __tablename__ = "calibers"
    __table_args__ = (Index("idx_calibers_popularity", "popularity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    caliber: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    nickname: Mapped[str | None] = mapped_column(String(50), nullable=True)
    popularity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    @property
    def display_name(self) -> str:
        return self.caliber


class WeaponType(Base):
    __tablename__ = "weapon_types"
    __table_args__ = (Index("idx_weapon_types_popularity", "popularity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    nickname: Mapped[str | None] = mapped_column(String(50), nullable=True)
    popularity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    @property
    def display_name(self) -> str:
        return self.type


class Brand(Base):
    __tablename__ = "brands"
    __table_args__ = (Index("idx_brands_popularity", "popularity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    nickname: Mapped[str | None] = mapped_column(String(50), nullable=True)
    popularity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    @property
    def display_name(self) -> str:
        return self.name


class BulletStyle(Base):
    __tablename__ = "bullet_styles"
    __table_args__ = (Index("idx_bullet_styles_popularity", "popularity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    nickname: Mapped[str | None] = mapped_column(String(50), nullable=True)
    popularity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    @property
    def display_name(self) -> str:
        return self.type


class Grain(Base):
    __tablename__ = "grains"
    __table_args__ = (Index("idx_grains_popularity", "popularity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)  # 0 means "Other"
    popularity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    @property
    def display_name(self) -> str:
        if self.weight == 0:
            return "Other"
        return f"{self.weight} gr"


class Casing(Base):
    __tablename__ = "casings"
    __table_args__ = (Index("idx_casings_popularity", "popularity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    popularity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    @property
    def display_name(self) -> str:
        return self.type
