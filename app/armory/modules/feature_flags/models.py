from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.armory.models import Base


class FeatureFlag(Base):
    __tablename__ = "feature_flags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    public_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list["FeatureFlagRole"]] = relationship(
        back_populates="feature_flag",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def role_keys(self) -> list[str]:
        return sorted(r.role for r in self.roles)


class FeatureFlagRole(Base):
    __tablename__ = "feature_flag_roles"
    __table_args__ = (UniqueConstraint("feature_flag_id", "role", name="uq_feature_flag_roles_flag_role"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    feature_flag_id: Mapped[int] = mapped_column(ForeignKey("feature_flags.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(64), nullable=False)  # Role.key

    feature_flag: Mapped[FeatureFlag] = relationship(back_populates="roles")
