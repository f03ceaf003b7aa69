from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.armory.models import Base

if TYPE_CHECKING:
    from app.armory.models import User


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_payments_user_id", "user_id"),
        Index("idx_payments_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # cents
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="usd")
    payment_type: Mapped[str] = mapped_column(String(32), nullable=False)  # subscription | one-time
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship(lazy="selectin")

    @property
    def amount_dollars(self) -> float:
        return (self.amount or 0) / 100.0
