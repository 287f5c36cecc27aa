from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from gymledger.core.db import paginate
from gymledger.models import AuditLog
from gymledger.services import queue as jobs

logger = logging.getLogger(__name__)


def audit_job(
    action: str,
    entity: str,
    entity_id: Any,
    actor_id: Any = None,
    gym_id: Any = None,
    details: Optional[Dict[str, Any]] = None,
) -> tuple[str, Dict[str, Any]]:
    return jobs.AUDIT, {
        "action": action,
        "entity": entity,
        "entity_id": str(entity_id),
        "actor_id": str(actor_id) if actor_id else None,
        "gym_id": str(gym_id) if gym_id else None,
        "details": details or {},
    }


def handle_audit_job(db: Session, job_id: Optional[str], payload: Dict[str, Any], queue: jobs.JobQueue) -> None:
    """Append one audit row. Audit rows are never updated or deleted."""
    if job_id and db.scalar(select(AuditLog.id).where(AuditLog.job_id == job_id)):
        return

    db.add(
        AuditLog(
            action=payload["action"],
            entity=payload["entity"],
            entity_id=payload["entity_id"],
            actor_id=payload.get("actor_id"),
            gym_id=payload.get("gym_id"),
            details=payload.get("details"),
            job_id=job_id,
        )
    )
    db.commit()
    logger.info(
        "audit_logged",
        extra={"extra": {"action": payload["action"], "entity": payload["entity"], "entity_id": payload["entity_id"]}},
    )


def list_audit_logs(
    db: Session,
    gym_id: Any = None,
    actor_id: Any = None,
    entity: Optional[str] = None,
    action: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[AuditLog], int]:
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id)
    if gym_id is not None:
        stmt = stmt.where(AuditLog.gym_id == str(gym_id))
    if actor_id is not None:
        stmt = stmt.where(AuditLog.actor_id == str(actor_id))
    if entity:
        stmt = stmt.where(AuditLog.entity == entity)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    return paginate(db, stmt, page, limit)
