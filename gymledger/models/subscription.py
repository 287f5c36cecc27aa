import uuid
from datetime import datetime

from sqlalchemy import String, ForeignKey, Index, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gymledger.core.db import Base, UTCDateTime


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (Index("ix_subscriptions_user_gym_status", "user_id", "gym_id", "status"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    gym_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("gyms.id"), nullable=False, index=True)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("plans.id"), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")  # PENDING/ACTIVE/EXPIRED/CANCELLED
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    access_code: Mapped[str] = mapped_column(String(8), unique=True, nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="APP")  # APP/CONSOLE/WHATSAPP

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user = relationship("User", back_populates="subscriptions")
    gym = relationship("Gym", back_populates="subscriptions")
    plan = relationship("Plan", back_populates="subscriptions")
    payments = relationship("Payment", back_populates="subscription", order_by="Payment.created_at")
