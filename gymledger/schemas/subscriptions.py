from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from gymledger.models import SubscriptionSource
from gymledger.schemas.common import PageMeta


class SubscriptionCreateIn(BaseModel):
    plan_id: uuid.UUID
    gym_id: uuid.UUID
    source: SubscriptionSource = SubscriptionSource.APP


class ConsoleSubscriptionIn(BaseModel):
    user_id: uuid.UUID
    plan_id: uuid.UUID
    gym_id: uuid.UUID


class CheckInIn(BaseModel):
    gym_id: uuid.UUID
    access_code: str = Field(min_length=1, max_length=16)


class SubscriptionOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    gym_id: uuid.UUID
    plan_id: uuid.UUID
    status: str
    start_date: datetime
    end_date: datetime
    access_code: str
    source: str

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: str
    amount: int
    currency: str
    receipt: str


class SubscriptionCreatedOut(BaseModel):
    subscription: SubscriptionOut
    order: OrderOut


class SubscriptionEnvelope(BaseModel):
    subscription: SubscriptionOut


class SubscriptionList(BaseModel):
    data: list[SubscriptionOut]


class SubscriptionPage(BaseModel):
    data: list[SubscriptionOut]
    meta: PageMeta
