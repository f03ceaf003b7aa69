from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Email change waits here until the new address is verified
    pending_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    verification_token: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    verification_token_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    verification_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    recovery_token: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    recovery_token_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    recovery_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_login_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Subscription
    stripe_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subscription_tier: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    subscription_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    promotion_id: Mapped[int | None] = mapped_column(ForeignKey("promotions.id", ondelete="SET NULL"), nullable=True)

    # Admin grants
    granted_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    grant_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_admin_granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_lifetime: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    roles: Mapped[list["Role"]] = relationship(
        secondary="user_roles",
        back_populates="users",
        lazy="selectin",
    )

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None

    @property
    def role_keys(self) -> list[str]:
        return [r.key for r in self.roles]


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "admin"
    name: Mapped[str] = mapped_column(String(128), nullable=False)  # display name
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list[User]] = relationship(secondary="user_roles", back_populates="roles", lazy="selectin")
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "calibers.read", "calibers.*", "*"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")


class AuditEvent(Base):
    """
    Append-only audit trail event.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "gun.create"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Gun"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.armory.modules.reference.models import (  # noqa: E402,F401
    Brand,
    BulletStyle,
    Caliber,
    Casing,
    Grain,
    Manufacturer,
    WeaponType,
)
from app.armory.modules.arsenal.models import Gun  # noqa: E402,F401
from app.armory.modules.munitions.models import Ammo  # noqa: E402,F401
from app.armory.modules.payments.models import Payment  # noqa: E402,F401
from app.armory.modules.promotions.models import Promotion  # noqa: E402,F401
from app.armory.modules.feature_flags.models import FeatureFlag, FeatureFlagRole  # noqa: E402,F401
