import uuid
from datetime import datetime

from sqlalchemy import String, Boolean, Integer, ForeignKey, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gymledger.core.db import Base, UTCDateTime


class Plan(Base):
    __tablename__ = "plans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    gym_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("gyms.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)

    # whole currency units; the gateway is charged price * 100
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    duration_value: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_unit: Mapped[str] = mapped_column(String(8), nullable=False)  # DAY/WEEK/MONTH/YEAR

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    gym = relationship("Gym", back_populates="plans")
    subscriptions = relationship("Subscription", back_populates="plan")
