from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SettlementCreateIn(BaseModel):
    gym_id: uuid.UUID


class SettlementProcessIn(BaseModel):
    transaction_id: str = Field(min_length=1, max_length=128)
    notes: str | None = None


class SettlementOut(BaseModel):
    id: uuid.UUID
    gym_id: uuid.UUID
    amount: int
    status: str
    transaction_id: str | None
    notes: str | None
    created_at: datetime
    processed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class UnsettledSummaryOut(BaseModel):
    gym_id: uuid.UUID
    gym_name: str
    owner_name: str | None
    amount: int
    count: int

    model_config = ConfigDict(from_attributes=True)


class UnsettledPaymentOut(BaseModel):
    id: uuid.UUID
    subscription_id: uuid.UUID
    amount: int
    method: str | None
    paid_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class UnsettledAmountOut(BaseModel):
    amount: int
    count: int
    payments: list[UnsettledPaymentOut]
