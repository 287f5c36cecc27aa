"""Notification events, their templates, the job handler and the inbox reads."""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gymledger.core.db import paginate
from gymledger.core.errors import NotificationNotFound
from gymledger.models import Notification, NotificationType
from gymledger.services import queue as jobs

logger = logging.getLogger(__name__)


class NotificationEvent(str, enum.Enum):
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
    MEMBER_ADDED = "MEMBER_ADDED"
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    SETTLEMENT_CREATED = "SETTLEMENT_CREATED"
    SETTLEMENT_PROCESSED = "SETTLEMENT_PROCESSED"
    ACCESS_CODE_SENT = "ACCESS_CODE_SENT"


@dataclass(frozen=True)
class Template:
    title: Callable[[Dict[str, Any]], str]
    message: Callable[[Dict[str, Any]], str]
    type: NotificationType


def _suffix(label: str, value: Any) -> str:
    return f" {label}: {value}" if value else ""


TEMPLATES: Dict[NotificationEvent, Template] = {
    NotificationEvent.SUBSCRIPTION_CREATED: Template(
        title=lambda d: "Subscription Created",
        message=lambda d: (
            f'Your subscription to "{d["plan_name"]}" at {d["gym_name"]} has been created. '
            f'Valid until {str(d["end_date"])[:10]}.'
        ),
        type=NotificationType.SUCCESS,
    ),
    NotificationEvent.SUBSCRIPTION_ACTIVATED: Template(
        title=lambda d: "Subscription Activated",
        message=lambda d: (
            f'Your subscription to "{d["plan_name"]}" at {d["gym_name"]} is now active. '
            f'Your access code is {d["access_code"]}.'
        ),
        type=NotificationType.SUCCESS,
    ),
    NotificationEvent.MEMBER_ADDED: Template(
        title=lambda d: "New Member Added",
        message=lambda d: (
            f'New member "{d["member_name"]}" has been added to {d["gym_name"]} with plan "{d["plan_name"]}".'
        ),
        type=NotificationType.SUCCESS,
    ),
    NotificationEvent.PAYMENT_INITIATED: Template(
        title=lambda d: "Payment Initiated",
        message=lambda d: f'Payment of ₹{d["amount"]} for "{d["plan_name"]}" has been initiated.',
        type=NotificationType.INFO,
    ),
    NotificationEvent.PAYMENT_COMPLETED: Template(
        title=lambda d: "Payment Successful",
        message=lambda d: (
            f'Payment of ₹{d["amount"]} for "{d["plan_name"]}" completed successfully.'
            + _suffix("Transaction ID", d.get("transaction_id"))
        ),
        type=NotificationType.SUCCESS,
    ),
    NotificationEvent.PAYMENT_FAILED: Template(
        title=lambda d: "Payment Failed",
        message=lambda d: (
            f'Payment of ₹{d["amount"]} for "{d["plan_name"]}" failed.' + _suffix("Reason", d.get("reason"))
        ),
        type=NotificationType.ERROR,
    ),
    NotificationEvent.SETTLEMENT_CREATED: Template(
        title=lambda d: "Settlement Created",
        message=lambda d: f'Settlement of ₹{d["amount"]} created for {d["gym_name"]}.',
        type=NotificationType.INFO,
    ),
    NotificationEvent.SETTLEMENT_PROCESSED: Template(
        title=lambda d: "Settlement Processed",
        message=lambda d: (
            f'Settlement of ₹{d["amount"]} for {d["gym_name"]} has been processed.'
            + _suffix("Transaction ID", d.get("transaction_id"))
        ),
        type=NotificationType.SUCCESS,
    ),
    NotificationEvent.ACCESS_CODE_SENT: Template(
        title=lambda d: "Your Access Code",
        message=lambda d: (
            f'Show access code {d["access_code"]} at {d["gym_name"]} reception. '
            f'Plan "{d["plan_name"]}" expires {str(d["end_date"])[:10]}.'
        ),
        type=NotificationType.INFO,
    ),
}


def notification_job(user_id: Any, event: NotificationEvent, data: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
    """Build a ``(job_type, payload)`` pair for the dispatch queue."""
    return jobs.NOTIFICATION, {"user_id": str(user_id), "event": event.value, "data": data}


def render(event: NotificationEvent, data: Dict[str, Any]) -> tuple[str, str, NotificationType]:
    template = TEMPLATES[event]
    return template.title(data), template.message(data), template.type


def handle_notification_job(db: Session, job_id: Optional[str], payload: Dict[str, Any], queue: jobs.JobQueue) -> None:
    if job_id:
        seen = db.scalar(select(Notification.id).where(Notification.job_id == job_id))
        if seen:
            logger.info("notification_job_duplicate", extra={"extra": {"job_id": job_id}})
            return

    event = NotificationEvent(payload["event"])
    title, message, type_ = render(event, payload.get("data") or {})

    db.add(
        Notification(
            user_id=uuid.UUID(str(payload["user_id"])),
            event=event.value,
            title=title,
            message=message,
            type=type_.value,
            job_id=job_id,
        )
    )
    db.commit()
    logger.info("notification_created", extra={"extra": {"event": event.value, "user_id": payload["user_id"]}})


def list_notifications(
    db: Session,
    user_id: Optional[uuid.UUID] = None,
    type: Optional[str] = None,
    is_read: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Notification], int]:
    stmt = select(Notification).order_by(Notification.created_at.desc(), Notification.id)
    if user_id is not None:
        stmt = stmt.where(Notification.user_id == user_id)
    if type:
        stmt = stmt.where(Notification.type == type)
    if is_read is not None:
        stmt = stmt.where(Notification.is_read == is_read)
    return paginate(db, stmt, page, limit)


def mark_read(db: Session, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
    # someone else's notification is reported as missing
    notification = db.scalar(
        select(Notification).where(Notification.id == notification_id).where(Notification.user_id == user_id)
    )
    if notification is None:
        raise NotificationNotFound()
    if not notification.is_read:
        notification.is_read = True
        db.commit()
    return notification


def mark_all_read(db: Session, user_id: uuid.UUID) -> int:
    updated = db.execute(
        update(Notification)
        .where(Notification.user_id == user_id)
        .where(Notification.is_read.is_(False))
        .values(is_read=True)
    ).rowcount
    db.commit()
    logger.info("notifications_marked_read", extra={"extra": {"user_id": str(user_id), "count": updated}})
    return updated
