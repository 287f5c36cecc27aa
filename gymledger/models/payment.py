import uuid
from datetime import datetime

from sqlalchemy import String, Integer, ForeignKey, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gymledger.core.db import Base, UTCDateTime


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subscriptions.id"), nullable=False, index=True
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")  # PENDING/COMPLETED/FAILED
    method: Mapped[str | None] = mapped_column(String(16), nullable=True)  # ONLINE/MANUAL/CONSOLE

    gateway_order_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    gateway_signature: Mapped[str | None] = mapped_column(String(256), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # set once by the settlement that claims this payment, never reassigned
    settlement_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("settlements.id"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    subscription = relationship("Subscription", back_populates="payments")
    settlement = relationship("Settlement", back_populates="payments")
