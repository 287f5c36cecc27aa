from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from gymledger.schemas.common import PageMeta


class AuditLogOut(BaseModel):
    id: uuid.UUID
    action: str
    entity: str
    entity_id: str
    actor_id: str | None
    gym_id: str | None
    details: dict[str, Any] | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogPage(BaseModel):
    data: list[AuditLogOut]
    meta: PageMeta
