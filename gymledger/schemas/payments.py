from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from gymledger.schemas.common import PageMeta
from gymledger.schemas.subscriptions import SubscriptionOut


class PaymentVerifyIn(BaseModel):
    order_id: str = Field(min_length=1, max_length=64)
    payment_id: str = Field(min_length=1, max_length=64)
    signature: str = Field(min_length=1, max_length=256)
    subscription_id: uuid.UUID | None = None


class WebhookOut(BaseModel):
    status: str
    event: str
    subscription: SubscriptionOut | None = None


class PaymentOut(BaseModel):
    id: uuid.UUID
    subscription_id: uuid.UUID
    amount: int
    currency: str
    status: str
    method: str | None
    gateway_order_id: str | None
    gateway_payment_id: str | None
    failure_reason: str | None
    settlement_id: uuid.UUID | None
    created_at: datetime
    paid_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class PaymentPage(BaseModel):
    data: list[PaymentOut]
    meta: PageMeta
