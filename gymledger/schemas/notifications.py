from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from gymledger.schemas.common import PageMeta


class NotificationOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    event: str
    title: str
    message: str
    type: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationPage(BaseModel):
    data: list[NotificationOut]
    meta: PageMeta


class MarkedReadOut(BaseModel):
    updated: int
