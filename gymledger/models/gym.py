import uuid
from datetime import datetime

from sqlalchemy import String, Boolean, ForeignKey, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gymledger.core.db import Base, UTCDateTime


class Gym(Base):
    __tablename__ = "gyms"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    owner = relationship("User", back_populates="gyms")
    plans = relationship("Plan", back_populates="gym")
    subscriptions = relationship("Subscription", back_populates="gym")
    settlements = relationship("Settlement", back_populates="gym")
